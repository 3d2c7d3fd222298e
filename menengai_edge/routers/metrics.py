"""
Metrics Router - Prometheus Endpoint

Exposes /metrics endpoint for Prometheus scraping
"""
from fastapi import APIRouter, Response

from ..metrics import get_metrics_content_type, get_metrics_text

router = APIRouter(tags=["Observability"])


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint

    Returns routing, guard and backend lookup metrics in Prometheus text format.
    Bypasses tenant routing, so it answers on every host; restrict it at the
    ingress in production.
    """
    return Response(
        content=get_metrics_text(),
        media_type=get_metrics_content_type()
    )
