"""
Request tracing and context propagation middleware

Provides request ID tracking, timing, and context variables
that are accessible throughout the request lifecycle.
"""
import time
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()


# ============================================================================
# Context Variables (request-scoped)
# ============================================================================

# Request ID - unique identifier for each request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Tenant slug - storefront tenant resolved from host or dev override
tenant_slug_var: ContextVar[str] = ContextVar("tenant_slug", default="")


# ============================================================================
# Context Helper Functions
# ============================================================================

def get_request_id() -> str:
    """Get current request ID from context"""
    return request_id_var.get()


def get_tenant_slug() -> Optional[str]:
    """Get current tenant slug from context"""
    return tenant_slug_var.get() or None


def set_tenant_slug(tenant_slug: Optional[str]) -> None:
    """Set tenant slug in context and bind it to the log context"""
    tenant_slug_var.set(tenant_slug or "")
    if tenant_slug:
        structlog.contextvars.bind_contextvars(tenant_slug=tenant_slug)


def set_user_id(user_id: Optional[str]) -> None:
    """Bind the authenticated user ID to the log context"""
    if user_id:
        structlog.contextvars.bind_contextvars(user_id=user_id)


# ============================================================================
# Request Tracing Middleware
# ============================================================================

class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request tracing with context propagation

    Features:
    - Generates or extracts request ID
    - Tracks request timing
    - Adds response headers (X-Request-ID, X-Response-Time)
    - Binds context to structlog for automatic inclusion in logs
    """

    async def dispatch(self, request: Request, call_next):
        """Process request with tracing"""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        tenant_slug_var.set("")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
            )
            structlog.contextvars.clear_contextvars()
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        structlog.contextvars.clear_contextvars()
        return response


# ============================================================================
# Response Headers Middleware
# ============================================================================

def add_security_headers(response: Response) -> Response:
    """Add security headers to response"""
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return add_security_headers(response)
