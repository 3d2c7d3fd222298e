"""
Request, identity and routing models
All models in one place for simplicity
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, Field
from starlette.datastructures import QueryParams
from starlette.requests import Request

# Lowercase DNS label: alphanumerics and inner hyphens, at most 63 chars
SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def is_valid_slug(value: Optional[str]) -> bool:
    """Check that a value can name a tenant or organization"""
    return bool(value) and SLUG_PATTERN.fullmatch(value) is not None


# ============================================================
# Enums
# ============================================================

class DeploymentMode(str, Enum):
    """Where the edge is running; decides dev conveniences and canonical redirects"""
    PRODUCTION = "production"
    DEVELOPMENT = "development"


class RouteAction(str, Enum):
    """Single routing action chosen for a request"""
    REWRITE = "rewrite"    # Serve internal storefront path, URL unchanged
    PASS = "pass"          # Forward unchanged
    REDIRECT = "redirect"  # Send the client to the canonical URL
    GUARD = "guard"        # Delegate to the session/access guard


class GuardMode(str, Enum):
    """Which guard policy applies to a guarded request"""
    PLATFORM = "platform"                  # Dashboard and organization routes
    AUTH_FLOW = "auth_flow"                # Login/sign-up pages
    STOREFRONT_OWNER = "storefront_owner"  # Owner routes on a tenant subdomain


class GuardState(str, Enum):
    """Terminal states of the guard state machine"""
    PASS = "pass"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_TO_ORG = "redirect_to_org"


# ============================================================
# Request metadata
# ============================================================

@dataclass(frozen=True)
class RequestInfo:
    """Immutable view of the request metadata the router and guard reason about"""
    host: str
    path: str
    method: str = "GET"
    query_string: str = ""
    cookies: Mapping[str, str] = field(default_factory=dict)
    scheme: str = "http"
    forwarded_proto: Optional[str] = None
    raw_path: str = ""

    @property
    def query_params(self) -> QueryParams:
        return QueryParams(self.query_string)

    def proto(self, default: str = "https") -> str:
        """Client-facing protocol from X-Forwarded-Proto (first hop), else default"""
        if self.forwarded_proto:
            candidate = self.forwarded_proto.split(",")[0].strip().lower()
            if candidate in ("http", "https"):
                return candidate
        return default

    @property
    def base_url(self) -> str:
        """Scheme and authority of the incoming request (same-origin redirects)"""
        return f"{self.proto(default=self.scheme)}://{self.host or 'localhost'}"

    @property
    def encoded_path(self) -> str:
        """Path as sent by the client, percent-encoding intact"""
        return self.raw_path or self.path

    @property
    def path_with_query(self) -> str:
        if self.query_string:
            return f"{self.encoded_path}?{self.query_string}"
        return self.encoded_path

    @classmethod
    def from_request(cls, request: Request) -> "RequestInfo":
        """Snapshot a Starlette request"""
        return cls(
            host=request.headers.get("host", ""),
            path=request.scope.get("path", "/") or "/",
            method=request.method,
            query_string=request.scope.get("query_string", b"").decode("latin-1"),
            cookies=dict(request.cookies),
            scheme=request.scope.get("scheme", "http"),
            forwarded_proto=request.headers.get("x-forwarded-proto"),
            raw_path=(request.scope.get("raw_path") or b"").decode("latin-1"),
        )


# ============================================================
# Identity & membership
# ============================================================

class Claims(BaseModel):
    """Validated identity claims for the current session"""
    sub: str = Field(..., min_length=1, description="Subject (user) id")
    email: Optional[str] = None
    access_token: str = Field(..., repr=False, description="Token the claims were validated from")
    expires_at: Optional[datetime] = None


class Membership(BaseModel):
    """A user's organization membership, as far as routing cares"""
    user_id: str
    organization_id: str
    organization_slug: str


@dataclass
class CookieSpec:
    """A cookie to set (or delete, with max_age=0) on the outgoing response"""
    name: str
    value: str
    max_age: Optional[int] = None
    path: str = "/"
    domain: Optional[str] = None
    secure: bool = True
    httponly: bool = True
    samesite: str = "lax"

    @property
    def is_deletion(self) -> bool:
        return self.max_age == 0


# ============================================================
# Routing results
# ============================================================

@dataclass(frozen=True)
class RouteDecision:
    """Outcome of the routing table for one request"""
    action: RouteAction
    rule: str
    location: Optional[str] = None
    status_code: Optional[int] = None
    guard_mode: Optional[GuardMode] = None
