"""
Session/Access Guard

Enforces that protected platform routes are served only to authenticated
users, and organization routes only to members of that organization.

State machine per request (terminal states in capitals):

    PLATFORM mode
        no claims                         -> REDIRECT_LOGIN (?redirect=<path>)
        claims, first segment is an org   -> membership lookup
            no membership                 -> REDIRECT_LOGIN
            slug differs from segment     -> REDIRECT_LOGIN
            slug matches                  -> PASS
        claims, no org segment            -> PASS

    AUTH_FLOW mode (login / sign-up pages)
        no claims                         -> PASS
        claims + membership               -> REDIRECT_TO_ORG (pending ?redirect= if inside the org)
        claims, no membership             -> PASS (onboarding not finished)

    STOREFRONT_OWNER mode (owner routes on a tenant subdomain)
        no claims                         -> REDIRECT_LOGIN
        claims                            -> PASS

Lookup failures fail closed: an unreachable identity service means "no
claims", an unreachable directory means "no membership". Wrong-org and
no-membership both answer with the same login redirect so the response does
not reveal which check failed.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple
from urllib.parse import urlencode, urlsplit

import structlog

from .cookies import ResponseBuilder
from .directory import OrganizationDirectory
from .exceptions import DirectoryLookupError, IdentityServiceError
from .identity import IdentityProvider
from .metrics import track_guard_outcome
from .models import Claims, GuardMode, GuardState, Membership, RequestInfo

logger = structlog.get_logger(__name__)

TEMPORARY_REDIRECT = 307


@dataclass(frozen=True)
class GuardOutcome:
    """Terminal state of the guard, with the response builder threaded through it"""
    state: GuardState
    response: ResponseBuilder
    location: Optional[str] = None
    status_code: Optional[int] = None
    claims: Optional[Claims] = None

    @property
    def is_redirect(self) -> bool:
        return self.state is not GuardState.PASS


class SessionGuard:
    """
    Stateless per-request access guard

    Args:
        identity: Identity/session service (claims from cookies)
        directory: Organization directory (membership by user id)
        login_path: Login page path
        redirect_param: Query parameter carrying the post-login return path
        reserved_segments: Top-level segments that never name an organization
        auth_prefix: Prefix of the login/sign-up flow
    """

    def __init__(
        self,
        identity: IdentityProvider,
        directory: OrganizationDirectory,
        login_path: str = "/auth/login",
        redirect_param: str = "redirect",
        reserved_segments: Iterable[str] = ("auth", "store", "api", "dashboard", "static", "_next"),
        auth_prefix: str = "/auth",
    ):
        self.identity = identity
        self.directory = directory
        self.login_path = login_path
        self.redirect_param = redirect_param
        self.reserved_segments: FrozenSet[str] = frozenset(reserved_segments)
        self.auth_prefix = auth_prefix.rstrip("/")

    @classmethod
    def from_settings(cls, settings, identity: IdentityProvider, directory: OrganizationDirectory) -> "SessionGuard":
        return cls(
            identity=identity,
            directory=directory,
            login_path=settings.login_path,
            redirect_param=settings.redirect_param,
            reserved_segments=settings.reserved_segments,
            auth_prefix="/" + settings.login_path.strip("/").split("/")[0],
        )

    # ============================================================
    # Entry point
    # ============================================================

    async def check(
        self,
        info: RequestInfo,
        response: ResponseBuilder,
        mode: GuardMode = GuardMode.PLATFORM,
    ) -> GuardOutcome:
        """
        Run the state machine for one request

        Never raises for lookup failures; every exit is PASS or a redirect.
        The returned outcome carries ``response`` plus any refreshed cookies.
        """
        claims, response = await self._authenticate(info, response)

        if mode is GuardMode.AUTH_FLOW:
            outcome = await self._check_auth_flow(info, claims, response)
        elif mode is GuardMode.STOREFRONT_OWNER:
            outcome = self._check_storefront_owner(info, claims, response)
        else:
            outcome = await self._check_platform(info, claims, response)

        track_guard_outcome(mode.value, outcome.state.value)
        logger.info(
            "guard_decided",
            mode=mode.value,
            state=outcome.state.value,
            user_id=claims.sub if claims else None,
        )
        return outcome

    # ============================================================
    # Modes
    # ============================================================

    async def _check_platform(
        self,
        info: RequestInfo,
        claims: Optional[Claims],
        response: ResponseBuilder,
    ) -> GuardOutcome:
        if not claims:
            if self.is_auth_path(info.path):
                return GuardOutcome(GuardState.PASS, response)
            return self._redirect_login(info, response, return_to=info.path)

        segment = self.org_segment(info.path)
        if segment is None:
            return GuardOutcome(GuardState.PASS, response, claims=claims)

        membership = await self._membership(claims)
        if membership is None:
            logger.info("guard_no_membership", user_id=claims.sub)
            return self._redirect_login(info, response, claims=claims)
        if membership.organization_slug != segment:
            logger.warning(
                "guard_slug_mismatch",
                user_id=claims.sub,
                requested=segment,
                member_of=membership.organization_slug,
            )
            return self._redirect_login(info, response, claims=claims)

        return GuardOutcome(GuardState.PASS, response, claims=claims)

    async def _check_auth_flow(
        self,
        info: RequestInfo,
        claims: Optional[Claims],
        response: ResponseBuilder,
    ) -> GuardOutcome:
        if not claims:
            return GuardOutcome(GuardState.PASS, response)

        membership = await self._membership(claims)
        if membership is None:
            return GuardOutcome(GuardState.PASS, response, claims=claims)

        slug = membership.organization_slug
        pending = info.query_params.get(self.redirect_param)
        target = pending if self.is_within_org(pending, slug) else f"/{slug}"
        return GuardOutcome(
            GuardState.REDIRECT_TO_ORG,
            response,
            location=f"{info.base_url}{target}",
            status_code=TEMPORARY_REDIRECT,
            claims=claims,
        )

    def _check_storefront_owner(
        self,
        info: RequestInfo,
        claims: Optional[Claims],
        response: ResponseBuilder,
    ) -> GuardOutcome:
        if not claims:
            return self._redirect_login(info, response, return_to=info.path)
        return GuardOutcome(GuardState.PASS, response, claims=claims)

    # ============================================================
    # Lookups (fail closed)
    # ============================================================

    async def _authenticate(
        self,
        info: RequestInfo,
        response: ResponseBuilder,
    ) -> Tuple[Optional[Claims], ResponseBuilder]:
        try:
            result = await self.identity.get_claims(info.cookies)
        except IdentityServiceError as e:
            logger.warning("guard_identity_unavailable", error=e.message, operation=e.operation)
            return None, response
        return result.claims, response.with_cookies(*result.cookies)

    async def _membership(self, claims: Claims) -> Optional[Membership]:
        try:
            return await self.directory.get_membership(claims.sub, claims.access_token)
        except DirectoryLookupError as e:
            logger.warning(
                "guard_directory_unavailable",
                user_id=claims.sub,
                error=e.message,
                operation=e.operation,
            )
            return None

    # ============================================================
    # Path helpers
    # ============================================================

    def is_auth_path(self, path: str) -> bool:
        return path == self.auth_prefix or path.startswith(self.auth_prefix + "/")

    def org_segment(self, path: str) -> Optional[str]:
        """First path segment when it can name an organization"""
        segments = [segment for segment in path.split("/") if segment]
        if not segments or segments[0] in self.reserved_segments:
            return None
        return segments[0]

    @staticmethod
    def is_within_org(target: Optional[str], slug: str) -> bool:
        """Only relative paths inside /{slug} may be used as a post-login target"""
        if not target or not target.startswith("/") or target.startswith("//") or "\\" in target:
            return False
        parts = urlsplit(target)
        if parts.scheme or parts.netloc:
            return False
        return parts.path == f"/{slug}" or parts.path.startswith(f"/{slug}/")

    def _redirect_login(
        self,
        info: RequestInfo,
        response: ResponseBuilder,
        return_to: Optional[str] = None,
        claims: Optional[Claims] = None,
    ) -> GuardOutcome:
        location = f"{info.base_url}{self.login_path}"
        if return_to:
            location = f"{location}?{urlencode({self.redirect_param: return_to})}"
        return GuardOutcome(
            GuardState.REDIRECT_LOGIN,
            response,
            location=location,
            status_code=TEMPORARY_REDIRECT,
            claims=claims,
        )
