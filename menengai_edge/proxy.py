"""
Tenant routing middleware

Runs Resolver -> Router -> (Guard | pass-through | rewrite | redirect) once per
request, before any route handler:

- Subdomain hits (acme.menengai.cloud/products) are rewritten internally to
  the storefront (/store/acme/products) without changing the browser URL.
- Path-based storefront URLs on the platform host are redirected (308) to
  their canonical subdomain form; local hosts keep the path form.
- Everything that is not public goes through the session guard, and any
  session cookies the guard refreshed are applied to the final response.
"""
from typing import FrozenSet, Iterable, Optional, Tuple
from urllib.parse import quote, urlencode

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse, Response

from .cookies import ResponseBuilder
from .guard import GuardOutcome, SessionGuard
from .logging_config import get_logger
from .metrics import track_route_decision, track_static_skip
from .middleware import get_tenant_slug, set_tenant_slug, set_user_id
from .models import GuardMode, GuardState, RequestInfo, RouteAction, RouteDecision
from .routing import RequestRouter
from .tenancy import TenantResolver, host_on_domain

logger = get_logger(__name__)

FOUND = 302


class TenantRoutingMiddleware(BaseHTTPMiddleware):
    """
    Edge routing middleware

    Args:
        app: Downstream ASGI app
        resolver: Tenant resolver
        router: Routing table
        guard: Session guard; when omitted it is read from ``app.state.guard``
            (built in the application lifespan)
        static_prefixes: Asset path prefixes skipped entirely
        static_extensions: Asset file extensions skipped entirely
        operational_paths: Health and metrics endpoints, never routed
        login_path: Platform login path (storefront owner redirects)
    """

    def __init__(
        self,
        app,
        resolver: TenantResolver,
        router: RequestRouter,
        guard: Optional[SessionGuard] = None,
        static_prefixes: Iterable[str] = ("/static/", "/favicon.ico"),
        static_extensions: Iterable[str] = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico"),
        operational_paths: Iterable[str] = ("/health", "/health/ready", "/metrics"),
        login_path: str = "/auth/login",
        redirect_param: str = "redirect",
    ):
        super().__init__(app)
        self.resolver = resolver
        self.router = router
        self.guard = guard
        self.static_prefixes: Tuple[str, ...] = tuple(static_prefixes)
        self.static_extensions: Tuple[str, ...] = tuple(ext.lower() for ext in static_extensions)
        self.operational_paths: FrozenSet[str] = frozenset(operational_paths)
        self.login_path = login_path
        self.redirect_param = redirect_param

    async def dispatch(self, request: Request, call_next):
        path = request.scope.get("path", "/")
        if path in self.operational_paths:
            return await call_next(request)
        if self.is_static_asset(path):
            track_static_skip()
            return await call_next(request)

        response = await self._route(request, call_next)
        tenant = get_tenant_slug()
        if tenant:
            response.headers["X-Tenant-Slug"] = tenant
        return response

    async def _route(self, request: Request, call_next) -> Response:
        info = RequestInfo.from_request(request)
        tenant = self.resolver.resolve_request(info)
        request.state.tenant_slug = tenant
        set_tenant_slug(tenant)

        decision = self.router.decide(info, tenant)
        track_route_decision(decision.rule, decision.action.value)
        logger.info(
            "route_decided",
            rule=decision.rule,
            action=decision.action.value,
            tenant_slug=tenant,
            location=decision.location,
        )

        if decision.action is RouteAction.REDIRECT:
            return RedirectResponse(decision.location, status_code=decision.status_code)
        if decision.action is RouteAction.REWRITE:
            self.rewrite(request, decision.location)
            return await call_next(request)
        if decision.action is RouteAction.PASS:
            return await call_next(request)

        return await self._guarded(request, call_next, info, tenant, decision)

    async def _guarded(
        self,
        request: Request,
        call_next,
        info: RequestInfo,
        tenant: Optional[str],
        decision: RouteDecision,
    ) -> Response:
        guard = self.guard or request.app.state.guard
        outcome = await guard.check(info, ResponseBuilder(), decision.guard_mode)

        if outcome.claims:
            request.state.user_id = outcome.claims.sub
            set_user_id(outcome.claims.sub)

        if outcome.is_redirect:
            location, status_code = self._redirect_target(info, tenant, decision, outcome)
            return outcome.response.apply(RedirectResponse(location, status_code=status_code))

        if not outcome.response.is_empty:
            self.forward_cookies(request, outcome.response)
        if decision.location:
            self.rewrite(request, decision.location)

        response = await call_next(request)
        return outcome.response.apply(response)

    def _redirect_target(
        self,
        info: RequestInfo,
        tenant: Optional[str],
        decision: RouteDecision,
        outcome: GuardOutcome,
    ) -> Tuple[str, int]:
        """Owner routes on a real subdomain log in on the platform domain, then come back"""
        if (
            decision.guard_mode is GuardMode.STOREFRONT_OWNER
            and outcome.state is GuardState.REDIRECT_LOGIN
            and tenant
            and host_on_domain(info.host, self.router.root_domain)
        ):
            root = self.router.root_domain
            back = f"https://{tenant}.{root}{info.path_with_query}"
            login = f"{info.proto()}://{root}{self.login_path}?{urlencode({self.redirect_param: back})}"
            return login, FOUND
        return outcome.location, outcome.status_code

    # ========================================================================
    # Request mutation
    # ========================================================================

    def is_static_asset(self, path: str) -> bool:
        if any(path.startswith(prefix) for prefix in self.static_prefixes):
            return True
        return path.lower().endswith(self.static_extensions)

    @staticmethod
    def rewrite(request: Request, path: str) -> None:
        """Serve another internal path; the query string is left untouched"""
        request.scope["path"] = path
        request.scope["raw_path"] = quote(path).encode("ascii")

    @staticmethod
    def forward_cookies(request: Request, response: ResponseBuilder) -> None:
        """Let downstream handlers see refreshed session cookies"""
        headers = [(name, value) for name, value in request.scope["headers"] if name != b"cookie"]
        cookie_header = response.merge_request_cookies(request.cookies)
        if cookie_header:
            headers.append((b"cookie", cookie_header.encode("latin-1")))
        request.scope["headers"] = headers


def middleware_options(settings, guard: Optional[SessionGuard] = None) -> dict:
    """Keyword arguments for app.add_middleware(TenantRoutingMiddleware, ...)"""
    return dict(
        resolver=TenantResolver.from_settings(settings),
        router=RequestRouter.from_settings(settings),
        guard=guard,
        static_prefixes=settings.static_prefixes,
        static_extensions=settings.static_extensions,
        operational_paths=settings.operational_paths,
        login_path=settings.login_path,
        redirect_param=settings.redirect_param,
    )
