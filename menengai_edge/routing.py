"""
Request routing table

Decides the single routing action for a request from its resolved tenant and
path. Rules are evaluated top to bottom and the first match wins:

    storefront_owner_guard         tenant + owner subpath (opt-in)     -> GUARD
    tenant_rewrite                 tenant, path outside storefront     -> REWRITE
    tenant_passthrough             tenant, path inside storefront      -> PASS
    storefront_canonical_redirect  /store/{slug}/... on canonical host -> 308
    storefront_dev_passthrough     /store/{slug}/... on local host     -> PASS
    settings_canonical_redirect    /{slug}/settings/... canonical host -> 308
    auth_flow                      /auth/...                           -> GUARD
    public_path                    public set / public prefixes        -> PASS
    guarded                        everything else                     -> GUARD

The router is pure: it never performs I/O and never reads process state.
"""
import re
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, Optional, Tuple
from urllib.parse import quote

from .models import (
    DeploymentMode,
    GuardMode,
    RequestInfo,
    RouteAction,
    RouteDecision,
    is_valid_slug,
)
from .tenancy import host_on_domain, normalize_host

PERMANENT_REDIRECT = 308

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})


def is_local_host(host: Optional[str]) -> bool:
    """Hosts used for local development, where wildcard subdomains do not exist"""
    raw = (host or "").strip().lower()
    if raw.startswith("["):
        return raw.startswith("[::1]")
    normalized = normalize_host(raw)
    return normalized in LOCAL_HOSTS or normalized.endswith(".localhost")


def path_within(path: str, prefix: str) -> bool:
    """Segment-aware prefix test: /store matches /store and /store/x, not /stores"""
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


@dataclass(frozen=True)
class RouteContext:
    """Everything a routing rule may look at"""
    info: RequestInfo
    tenant: Optional[str]


@dataclass(frozen=True)
class RouteRule:
    """One row of the routing table"""
    name: str
    matches: Callable[[RouteContext], bool]
    decide: Callable[[RouteContext, str], RouteDecision]


class RequestRouter:
    """
    Ordered (predicate, action) routing table

    Args:
        root_domain: Platform root domain (e.g. "menengai.cloud")
        mode: Deployment mode, injected rather than read from the environment
        storefront_prefix: Internal storefront path prefix
        reserved_segments: Top-level segments that never name an organization
        public_paths: Exact paths served without authentication
        public_prefixes: Path prefixes served without authentication
        auth_prefix: Prefix of the login/sign-up flow
        session_endpoints: Auth paths that establish a session (never guarded)
        protect_owner_routes: Guard storefront owner routes on tenant subdomains
        owner_subpaths: Storefront-relative owner paths
    """

    def __init__(
        self,
        root_domain: str,
        mode: DeploymentMode = DeploymentMode.PRODUCTION,
        storefront_prefix: str = "/store",
        reserved_segments: Iterable[str] = ("auth", "store", "api", "dashboard", "static", "_next"),
        public_paths: Iterable[str] = ("/",),
        public_prefixes: Iterable[str] = ("/auth/", "/store/"),
        auth_prefix: str = "/auth",
        session_endpoints: Iterable[str] = ("/auth/callback", "/auth/confirm"),
        protect_owner_routes: bool = False,
        owner_subpaths: Iterable[str] = ("/settings", "/orders", "/products/new", "/dashboard"),
    ):
        self.root_domain = root_domain.lower()
        self.mode = mode
        self.storefront_prefix = storefront_prefix.rstrip("/")
        self.reserved_segments: FrozenSet[str] = frozenset(reserved_segments)
        self.public_paths: FrozenSet[str] = frozenset(public_paths)
        self.public_prefixes: Tuple[str, ...] = tuple(public_prefixes)
        self.auth_prefix = auth_prefix.rstrip("/")
        self.session_endpoints: FrozenSet[str] = frozenset(session_endpoints)
        self.protect_owner_routes = protect_owner_routes
        self.owner_subpaths: Tuple[str, ...] = tuple(owner_subpaths)

        self._storefront_re = re.compile(rf"^{re.escape(self.storefront_prefix)}/([^/]+)(/.*)?$")
        self._settings_re = re.compile(r"^/([^/]+)/settings(/.*)?$")

        rules = []
        if protect_owner_routes:
            rules.append(RouteRule("storefront_owner_guard", self._is_owner_route, self._guard_owner))
        rules.extend([
            RouteRule("tenant_rewrite", self._is_tenant_outside_storefront, self._rewrite),
            RouteRule("tenant_passthrough", self._is_tenant_inside_storefront, self._pass),
            RouteRule("storefront_canonical_redirect", self._is_canonical_storefront, self._redirect_storefront),
            RouteRule("storefront_dev_passthrough", self._is_dev_storefront, self._pass),
            RouteRule("settings_canonical_redirect", self._is_canonical_settings, self._redirect_settings),
            RouteRule("auth_flow", self._is_auth_flow, self._guard_auth_flow),
            RouteRule("public_path", self._is_public, self._pass),
            RouteRule("guarded", lambda ctx: True, self._guard_platform),
        ])
        self.rules: Tuple[RouteRule, ...] = tuple(rules)

    @classmethod
    def from_settings(cls, settings) -> "RequestRouter":
        return cls(
            root_domain=settings.root_domain,
            mode=settings.deployment_mode,
            storefront_prefix=settings.storefront_prefix,
            reserved_segments=settings.reserved_segments,
            public_paths=settings.public_paths,
            public_prefixes=settings.public_prefixes,
            auth_prefix="/" + settings.login_path.strip("/").split("/")[0],
            session_endpoints=settings.session_endpoints,
            protect_owner_routes=settings.protect_storefront_owner_routes,
            owner_subpaths=settings.store_owner_subpaths,
        )

    # ========================================================================
    # Entry point
    # ========================================================================

    def decide(self, info: RequestInfo, tenant: Optional[str]) -> RouteDecision:
        """Evaluate the table once; the final rule always matches"""
        ctx = RouteContext(info=info, tenant=tenant)
        for rule in self.rules:
            if rule.matches(ctx):
                return rule.decide(ctx, rule.name)
        raise AssertionError("routing table has no catch-all rule")

    # ========================================================================
    # Host and path classification
    # ========================================================================

    def is_canonical_host(self, host: str) -> bool:
        """
        Hosts that are served from real subdomains

        The root domain and its subdomains always are; any other non-local
        host is when the deployment runs in production mode.
        """
        if not normalize_host(host) or is_local_host(host):
            return False
        if host_on_domain(host, self.root_domain):
            return True
        return self.mode is DeploymentMode.PRODUCTION

    def in_storefront(self, path: str) -> bool:
        """Paths below the storefront prefix; the bare prefix is not one"""
        return path.startswith(self.storefront_prefix + "/")

    def storefront_relative(self, path: str) -> str:
        """Path below /store/{slug}, or the path itself outside the storefront"""
        match = self._storefront_re.match(path)
        if match:
            return match.group(2) or "/"
        return path

    def is_reserved_segment(self, segment: str) -> bool:
        return segment in self.reserved_segments

    def is_auth_path(self, path: str) -> bool:
        return path_within(path, self.auth_prefix)

    def is_public_path(self, path: str) -> bool:
        if path in self.public_paths:
            return True
        return any(path.startswith(prefix) for prefix in self.public_prefixes)

    def canonical_url(self, info: RequestInfo, slug: str, path: str) -> str:
        """Absolute subdomain URL for a slug, keeping the encoded path and query string verbatim"""
        url = f"{info.proto()}://{quote(slug.lower(), safe='')}.{self.root_domain}{path or '/'}"
        if info.query_string:
            url = f"{url}?{info.query_string}"
        return url

    def rewrite_target(self, tenant: str, path: str) -> str:
        suffix = "" if path == "/" else path
        return f"{self.storefront_prefix}/{tenant}{suffix}"

    # ========================================================================
    # Predicates
    # ========================================================================

    def _is_owner_route(self, ctx: RouteContext) -> bool:
        if not ctx.tenant:
            return False
        relative = self.storefront_relative(ctx.info.path)
        return any(path_within(relative, sub) for sub in self.owner_subpaths)

    def _is_tenant_outside_storefront(self, ctx: RouteContext) -> bool:
        return bool(ctx.tenant) and not self.in_storefront(ctx.info.path)

    def _is_tenant_inside_storefront(self, ctx: RouteContext) -> bool:
        return bool(ctx.tenant) and self.in_storefront(ctx.info.path)

    def _storefront_slug(self, ctx: RouteContext) -> Optional[str]:
        if ctx.tenant:
            return None
        match = self._storefront_re.match(ctx.info.path)
        return match.group(1) if match else None

    def _canonical_match(self, pattern, ctx: RouteContext):
        """Match against the encoded path so redirects keep the client's bytes"""
        if ctx.tenant:
            return None
        return pattern.match(ctx.info.encoded_path)

    def _is_canonical_storefront(self, ctx: RouteContext) -> bool:
        match = self._canonical_match(self._storefront_re, ctx)
        if not match:
            return False
        return is_valid_slug(match.group(1).lower()) and self.is_canonical_host(ctx.info.host)

    def _is_dev_storefront(self, ctx: RouteContext) -> bool:
        return self._storefront_slug(ctx) is not None and not self.is_canonical_host(ctx.info.host)

    def _is_canonical_settings(self, ctx: RouteContext) -> bool:
        match = self._canonical_match(self._settings_re, ctx)
        if not match:
            return False
        slug = match.group(1)
        return (
            not self.is_reserved_segment(slug.lower())
            and is_valid_slug(slug.lower())
            and self.is_canonical_host(ctx.info.host)
        )

    def _is_auth_flow(self, ctx: RouteContext) -> bool:
        path = ctx.info.path
        return self.is_auth_path(path) and path not in self.session_endpoints

    def _is_public(self, ctx: RouteContext) -> bool:
        return self.is_public_path(ctx.info.path)

    # ========================================================================
    # Actions
    # ========================================================================

    def _rewrite(self, ctx: RouteContext, rule: str) -> RouteDecision:
        return RouteDecision(
            action=RouteAction.REWRITE,
            rule=rule,
            location=self.rewrite_target(ctx.tenant, ctx.info.path),
        )

    def _pass(self, ctx: RouteContext, rule: str) -> RouteDecision:
        return RouteDecision(action=RouteAction.PASS, rule=rule)

    def _redirect_storefront(self, ctx: RouteContext, rule: str) -> RouteDecision:
        match = self._canonical_match(self._storefront_re, ctx)
        slug, rest = match.group(1), match.group(2) or "/"
        return RouteDecision(
            action=RouteAction.REDIRECT,
            rule=rule,
            location=self.canonical_url(ctx.info, slug, rest),
            status_code=PERMANENT_REDIRECT,
        )

    def _redirect_settings(self, ctx: RouteContext, rule: str) -> RouteDecision:
        match = self._canonical_match(self._settings_re, ctx)
        slug, rest = match.group(1), match.group(2) or ""
        return RouteDecision(
            action=RouteAction.REDIRECT,
            rule=rule,
            location=self.canonical_url(ctx.info, slug, f"/settings{rest}"),
            status_code=PERMANENT_REDIRECT,
        )

    def _guard_auth_flow(self, ctx: RouteContext, rule: str) -> RouteDecision:
        return RouteDecision(action=RouteAction.GUARD, rule=rule, guard_mode=GuardMode.AUTH_FLOW)

    def _guard_platform(self, ctx: RouteContext, rule: str) -> RouteDecision:
        return RouteDecision(action=RouteAction.GUARD, rule=rule, guard_mode=GuardMode.PLATFORM)

    def _guard_owner(self, ctx: RouteContext, rule: str) -> RouteDecision:
        location = None
        if not self.in_storefront(ctx.info.path):
            location = self.rewrite_target(ctx.tenant, ctx.info.path)
        return RouteDecision(
            action=RouteAction.GUARD,
            rule=rule,
            location=location,
            guard_mode=GuardMode.STOREFRONT_OWNER,
        )
