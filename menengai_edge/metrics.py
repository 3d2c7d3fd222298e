"""
Prometheus metrics for the edge router

Metrics Categories:
- Routing: decisions per table row
- Guard: terminal states per guard mode
- Backend: identity/directory lookup latency and failures
"""
import time
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry (allows multiple app instances in tests)
registry = CollectorRegistry()

# ============================================================
# Routing Metrics
# ============================================================

route_decisions_total = Counter(
    'edge_route_decisions_total',
    'Routing decisions by matching table row',
    ['rule', 'action'],
    registry=registry
)

static_skips_total = Counter(
    'edge_static_skips_total',
    'Static asset requests skipped by the router',
    [],
    registry=registry
)

# ============================================================
# Guard Metrics
# ============================================================

guard_outcomes_total = Counter(
    'edge_guard_outcomes_total',
    'Session guard terminal states',
    ['mode', 'state'],
    registry=registry
)

# ============================================================
# Backend Lookup Metrics
# ============================================================

backend_lookup_duration_seconds = Histogram(
    'edge_backend_lookup_duration_seconds',
    'Identity and directory lookup latency in seconds',
    ['operation'],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=registry
)

backend_lookup_failures_total = Counter(
    'edge_backend_lookup_failures_total',
    'Identity and directory lookups that failed (guard fails closed)',
    ['operation'],
    registry=registry
)

# ============================================================
# Helper Functions
# ============================================================


class MetricsTimer:
    """Context manager for timing backend lookups"""

    def __init__(self, histogram, labels: Optional[dict] = None):
        self.histogram = histogram
        self.labels = labels or {}
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        if self.labels:
            self.histogram.labels(**self.labels).observe(duration)
        else:
            self.histogram.observe(duration)


def time_lookup(operation: str) -> MetricsTimer:
    """Time one backend round-trip"""
    return MetricsTimer(backend_lookup_duration_seconds, {"operation": operation})


def track_route_decision(rule: str, action: str):
    route_decisions_total.labels(rule=rule, action=action).inc()


def track_static_skip():
    static_skips_total.inc()


def track_guard_outcome(mode: str, state: str):
    guard_outcomes_total.labels(mode=mode, state=state).inc()


def track_lookup_failure(operation: str):
    backend_lookup_failures_total.labels(operation=operation).inc()


def get_metrics_text() -> bytes:
    """Get metrics in Prometheus text format"""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Get Prometheus content type"""
    return CONTENT_TYPE_LATEST
