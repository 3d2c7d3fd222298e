"""Health and readiness endpoints"""
import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["System"])


@router.get("/health")
async def health_check(request: Request):
    """Basic health check"""
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "mode": settings.deployment_mode.value,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness probe

    Returns 200 when the session guard is wired and the hosted backend's auth
    API answers; 503 otherwise.
    """
    checks = {}
    ready = True

    checks["guard"] = "ready" if getattr(request.app.state, "guard", None) else "not_initialized"
    if checks["guard"] != "ready":
        ready = False

    http = getattr(request.app.state, "http", None)
    if http is None:
        checks["backend"] = "not_configured"
    else:
        settings = request.app.state.settings
        try:
            response = await http.get(
                f"{settings.supabase_url.rstrip('/')}/auth/v1/health",
                headers={"apikey": settings.supabase_anon_key},
            )
            if response.status_code < 500:
                checks["backend"] = "reachable"
            else:
                checks["backend"] = f"unhealthy: {response.status_code}"
                ready = False
        except httpx.HTTPError as e:
            checks["backend"] = f"unreachable: {type(e).__name__}"
            ready = False

    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
