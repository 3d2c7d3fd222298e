"""
Identity/session service client
Validates the session cookies against the hosted backend's auth API and
refreshes expired sessions, returning any new cookies as a side channel.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import httpx
import jwt
from pydantic import ValidationError

from .exceptions import IdentityServiceError
from .metrics import time_lookup, track_lookup_failure
from .models import Claims, CookieSpec

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class IdentityResult:
    """Claims for the current session plus cookies the response must carry"""
    claims: Optional[Claims] = None
    cookies: Tuple[CookieSpec, ...] = ()


class IdentityProvider(Protocol):
    """What the session guard needs from an identity service"""

    async def get_claims(self, cookies: Mapping[str, str]) -> IdentityResult:
        ...


class SupabaseIdentityClient:
    """
    Session validation against a Supabase (GoTrue) compatible auth API

    Flow:
    1. No session cookies -> empty result, no I/O
    2. Access token valid -> claims (locally with the JWT secret, else GET /auth/v1/user)
    3. Access token expired or missing with a refresh token -> POST /auth/v1/token
       - success: claims + refreshed session cookies
       - rejected: no claims + cookie deletions
    4. Transport errors, timeouts, 5xx -> IdentityServiceError
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        anon_key: str,
        jwt_secret: Optional[str] = None,
        access_cookie: str = "sb-access-token",
        refresh_cookie: str = "sb-refresh-token",
        refresh_max_age: int = 60 * 60 * 24 * 30,
        cookie_domain: Optional[str] = None,
        cookie_secure: bool = True,
        cookie_samesite: str = "lax",
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.jwt_secret = jwt_secret
        self.access_cookie = access_cookie
        self.refresh_cookie = refresh_cookie
        self.refresh_max_age = refresh_max_age
        self.cookie_domain = cookie_domain
        self.cookie_secure = cookie_secure
        self.cookie_samesite = cookie_samesite

    @classmethod
    def from_settings(cls, settings, http: httpx.AsyncClient) -> "SupabaseIdentityClient":
        return cls(
            http=http,
            base_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            jwt_secret=settings.supabase_jwt_secret,
            access_cookie=settings.access_token_cookie,
            refresh_cookie=settings.refresh_token_cookie,
            refresh_max_age=settings.session_cookie_max_age,
            cookie_domain=settings.cookie_domain,
            cookie_secure=settings.cookie_secure,
            cookie_samesite=settings.cookie_samesite,
        )

    # ============================================================
    # Public API
    # ============================================================

    async def get_claims(self, cookies: Mapping[str, str]) -> IdentityResult:
        """
        Current claims from the request cookies

        Raises:
            IdentityServiceError: If the auth API could not be reached or failed
        """
        access_token = cookies.get(self.access_cookie)
        refresh_token = cookies.get(self.refresh_cookie)

        if not access_token and not refresh_token:
            return IdentityResult()

        if access_token:
            claims, expired = await self._validate(access_token)
            if claims:
                return IdentityResult(claims=claims)
            if not expired:
                return IdentityResult()

        if refresh_token:
            return await self.refresh_session(refresh_token)
        return IdentityResult()

    async def refresh_session(self, refresh_token: str) -> IdentityResult:
        """Exchange a refresh token for a new session"""
        try:
            with time_lookup("refresh_session"):
                response = await self.http.post(
                    f"{self.base_url}/auth/v1/token",
                    params={"grant_type": "refresh_token"},
                    json={"refresh_token": refresh_token},
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            track_lookup_failure("refresh_session")
            raise IdentityServiceError(f"Session refresh failed: {e}", "refresh_session") from e

        if response.status_code in (400, 401, 403):
            logger.info("Refresh token rejected, clearing session cookies")
            return IdentityResult(cookies=self._clear_cookies())
        if response.status_code >= 400:
            track_lookup_failure("refresh_session")
            raise IdentityServiceError(
                "Session refresh returned an error",
                "refresh_session",
                status_code=response.status_code,
            )

        try:
            session = response.json()
        except ValueError as e:
            raise IdentityServiceError("Session refresh returned invalid JSON", "refresh_session") from e
        if not isinstance(session, dict):
            raise IdentityServiceError("Session refresh returned no session", "refresh_session")
        access_token = session.get("access_token")
        user = session.get("user") or {}
        if not access_token or not isinstance(user, dict) or not user.get("id"):
            raise IdentityServiceError("Session refresh returned no session", "refresh_session")

        claims = self._claims(
            "refresh_session",
            sub=str(user["id"]),
            email=user.get("email"),
            access_token=access_token,
            expires_at=self._session_expiry(session),
        )
        logger.debug(f"Session refreshed for user {claims.sub}")
        return IdentityResult(
            claims=claims,
            cookies=self._session_cookies(access_token, session.get("refresh_token") or refresh_token),
        )

    # ============================================================
    # Access token validation
    # ============================================================

    async def _validate(self, access_token: str) -> Tuple[Optional[Claims], bool]:
        """Returns (claims, expired); claims is None when the token is unusable"""
        if self.jwt_secret:
            return self._decode_locally(access_token)
        return await self._fetch_user(access_token)

    def _decode_locally(self, access_token: str) -> Tuple[Optional[Claims], bool]:
        try:
            payload = jwt.decode(
                access_token,
                self.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                audience=JWT_AUDIENCE,
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Access token expired")
            return None, True
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid access token: {e}")
            return None, False

        if not payload.get("sub"):
            return None, False
        return self._claims(
            "decode_token",
            sub=str(payload["sub"]),
            email=payload.get("email"),
            access_token=access_token,
            expires_at=self._timestamp(payload.get("exp")),
        ), False

    async def _fetch_user(self, access_token: str) -> Tuple[Optional[Claims], bool]:
        try:
            with time_lookup("get_user"):
                response = await self.http.get(
                    f"{self.base_url}/auth/v1/user",
                    headers=self._headers(access_token),
                )
        except httpx.HTTPError as e:
            track_lookup_failure("get_user")
            raise IdentityServiceError(f"User lookup failed: {e}", "get_user") from e

        if response.status_code in (401, 403):
            return None, True
        if response.status_code >= 500:
            track_lookup_failure("get_user")
            raise IdentityServiceError(
                "User lookup returned an error",
                "get_user",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            return None, False

        try:
            user = response.json()
        except ValueError as e:
            raise IdentityServiceError("User lookup returned invalid JSON", "get_user") from e
        if not isinstance(user, dict) or not user.get("id"):
            return None, False
        return self._claims("get_user", sub=str(user["id"]), email=user.get("email"), access_token=access_token), False

    # ============================================================
    # Helpers
    # ============================================================

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self.anon_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    @staticmethod
    def _claims(operation: str, **fields: Any) -> Claims:
        try:
            return Claims(**fields)
        except ValidationError as e:
            raise IdentityServiceError(f"Unusable identity payload: {e}", operation) from e

    @staticmethod
    def _timestamp(value: Any) -> Optional[datetime]:
        """Epoch seconds as an aware datetime; malformed values are dropped"""
        if not value:
            return None
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            logger.warning(f"Ignoring malformed session expiry: {value!r}")
            return None

    def _session_expiry(self, session: Dict[str, Any]) -> Optional[datetime]:
        if session.get("expires_at"):
            return self._timestamp(session["expires_at"])
        if session.get("expires_in"):
            try:
                return datetime.now(timezone.utc) + timedelta(seconds=int(session["expires_in"]))
            except (TypeError, ValueError, OverflowError):
                logger.warning(f"Ignoring malformed session lifetime: {session['expires_in']!r}")
        return None

    def _cookie(self, name: str, value: str, max_age: Optional[int]) -> CookieSpec:
        return CookieSpec(
            name=name,
            value=value,
            max_age=max_age,
            domain=self.cookie_domain,
            secure=self.cookie_secure,
            samesite=self.cookie_samesite,
        )

    def _session_cookies(self, access_token: str, refresh_token: str) -> Tuple[CookieSpec, ...]:
        # Access cookie outlives the token so an expired token still triggers a refresh
        return (
            self._cookie(self.access_cookie, access_token, self.refresh_max_age),
            self._cookie(self.refresh_cookie, refresh_token, self.refresh_max_age),
        )

    def _clear_cookies(self) -> Tuple[CookieSpec, ...]:
        return (
            self._cookie(self.access_cookie, "", 0),
            self._cookie(self.refresh_cookie, "", 0),
        )
