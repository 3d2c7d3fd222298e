"""
Menengai Edge - Application factory
Tenant resolution, storefront routing and session guard in front of the
platform's route handlers
"""
from contextlib import asynccontextmanager
from typing import Iterable, Optional

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .directory import OrganizationDirectory, SupabaseDirectoryClient
from .exceptions import BackendError, ConfigurationError, EdgeException
from .guard import SessionGuard
from .identity import IdentityProvider, SupabaseIdentityClient
from .logging_config import configure_logging, get_logger
from .middleware import RequestTracingMiddleware, SecurityHeadersMiddleware, get_request_id
from .proxy import TenantRoutingMiddleware, middleware_options
from .routers import health_router, metrics_router
from .secrets import validate_secret_strength

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    identity: Optional[IdentityProvider] = None,
    directory: Optional[OrganizationDirectory] = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """
    Build the edge application

    Args:
        settings: Settings to use (defaults to get_settings())
        identity: Identity service; a Supabase client is built in the lifespan when omitted
        directory: Organization directory; a Supabase client is built in the lifespan when omitted
        routers: Extra routers served behind the edge (storefront, dashboard, ...)

    When both collaborators are supplied the guard is built immediately and
    the application needs no backend connection at all.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.use_json_logs, environment=settings.environment)

    guard = None
    if identity is not None and directory is not None:
        guard = SessionGuard.from_settings(settings, identity, directory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the shared backend client and the session guard; close the client on shutdown"""
        logger.info(
            "edge_starting",
            version=settings.app_version,
            root_domain=settings.root_domain,
            mode=settings.deployment_mode.value,
        )

        if settings.supabase_jwt_secret:
            try:
                validate_secret_strength(settings.supabase_jwt_secret, secret_name="supabase_jwt_secret")
            except ValueError as e:
                raise ConfigurationError(str(e), setting="supabase_jwt_secret") from e
        elif identity is None:
            logger.warning("jwt_secret_missing", detail="access tokens are validated remotely")

        http = None
        if app.state.guard is None:
            http = httpx.AsyncClient(timeout=settings.backend_timeout_seconds)
            app.state.http = http
            app.state.guard = SessionGuard.from_settings(
                settings,
                identity or SupabaseIdentityClient.from_settings(settings, http),
                directory or SupabaseDirectoryClient.from_settings(settings, http),
            )
            logger.info("backend_client_ready", base_url=settings.supabase_url)

        yield

        if http is not None:
            await http.aclose()
            app.state.http = None
        logger.info("edge_stopped")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-tenant tenant resolver, request router and session guard",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.guard = guard
    app.state.http = None

    # Added innermost first: tracing wraps everything, routing runs last
    app.add_middleware(TenantRoutingMiddleware, **middleware_options(settings, guard=guard))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestTracingMiddleware)

    # ============================================================
    # Routers
    # ============================================================

    app.include_router(health_router)
    if settings.prometheus_enabled:
        app.include_router(metrics_router)
    for router in routers:
        app.include_router(router)

    # ============================================================
    # Exception Handlers
    # ============================================================

    @app.exception_handler(EdgeException)
    async def edge_exception_handler(request: Request, exc: EdgeException):
        """Render edge errors raised by downstream handlers"""
        status_code = 502 if isinstance(exc, BackendError) else 500
        logger.error("edge_error", error=exc.error_code, message=exc.message)
        return JSONResponse(status_code=status_code, content={**exc.to_dict(), "request_id": get_request_id()})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error("unhandled_exception", error_type=type(exc).__name__, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred"
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "menengai_edge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
