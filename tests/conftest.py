"""
Shared fixtures: settings per deployment mode and in-memory backend collaborators
"""
from typing import Dict, Iterable, List, Mapping, Optional

import pytest

from menengai_edge.config import Settings
from menengai_edge.exceptions import BackendError
from menengai_edge.identity import IdentityResult
from menengai_edge.models import Claims, CookieSpec, Membership, RequestInfo

ROOT_DOMAIN = "menengai.cloud"


# ============================================================
# Fake collaborators
# ============================================================

class FakeIdentity:
    """Identity service that returns canned claims"""

    def __init__(
        self,
        claims: Optional[Claims] = None,
        cookies: Iterable[CookieSpec] = (),
        error: Optional[BackendError] = None,
    ):
        self.claims = claims
        self.cookies = tuple(cookies)
        self.error = error
        self.calls: List[Dict[str, str]] = []

    async def get_claims(self, cookies: Mapping[str, str]) -> IdentityResult:
        self.calls.append(dict(cookies))
        if self.error:
            raise self.error
        return IdentityResult(claims=self.claims, cookies=self.cookies)


class FakeDirectory:
    """Organization directory backed by a user_id -> slug dict"""

    def __init__(self, memberships: Optional[Dict[str, str]] = None, error: Optional[BackendError] = None):
        self.memberships = memberships or {}
        self.error = error
        self.calls: List[str] = []

    async def get_membership(self, user_id: str, access_token: str) -> Optional[Membership]:
        self.calls.append(user_id)
        if self.error:
            raise self.error
        slug = self.memberships.get(user_id)
        if slug is None:
            return None
        return Membership(user_id=user_id, organization_id=f"org-{slug}", organization_slug=slug)


def make_claims(sub: str = "user-1", email: str = "owner@acme.test") -> Claims:
    return Claims(sub=sub, email=email, access_token=f"token-{sub}")


def make_info(host: str, path: str, query: str = "", cookies: Optional[Dict[str, str]] = None, **kwargs) -> RequestInfo:
    return RequestInfo(host=host, path=path, query_string=query, cookies=cookies or {}, **kwargs)


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="production",
        root_domain=ROOT_DOMAIN,
        supabase_url="https://backend.test",
        supabase_anon_key="anon-key",
        supabase_jwt_secret=None,
        json_logs=False,
        cookie_secure=True,
    )
    values.update(overrides)
    return Settings(**values)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def production_settings() -> Settings:
    return make_settings()


@pytest.fixture
def development_settings() -> Settings:
    return make_settings(environment="development")


@pytest.fixture
def claims() -> Claims:
    return make_claims()
