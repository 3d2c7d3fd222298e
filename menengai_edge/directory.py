"""
Organization directory client
Single-record lookups against the hosted backend's REST (PostgREST) API,
executed with the caller's access token so row-level security applies.
"""
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .exceptions import DirectoryLookupError
from .metrics import time_lookup, track_lookup_failure
from .models import Membership

logger = logging.getLogger(__name__)


class OrganizationDirectory(Protocol):
    """What the session guard needs from the organization directory"""

    async def get_membership(self, user_id: str, access_token: str) -> Optional[Membership]:
        ...


class SupabaseDirectoryClient:
    """
    Organization lookups over PostgREST

    Tables:
        user_profiles(id, organization_id)
        organizations(id, slug)
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str, anon_key: str):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key

    @classmethod
    def from_settings(cls, settings, http: httpx.AsyncClient) -> "SupabaseDirectoryClient":
        return cls(http=http, base_url=settings.supabase_url, anon_key=settings.supabase_anon_key)

    async def get_organization_id(self, user_id: str, access_token: str) -> Optional[str]:
        """Organization id from the user's profile, or None"""
        row = await self._fetch_one(
            "user_profiles",
            select="organization_id",
            match={"id": user_id},
            access_token=access_token,
            operation="get_organization_id",
        )
        if not row or not row.get("organization_id"):
            return None
        return str(row["organization_id"])

    async def get_organization_slug(self, organization_id: str, access_token: str) -> Optional[str]:
        """Slug of an organization, or None"""
        row = await self._fetch_one(
            "organizations",
            select="slug",
            match={"id": organization_id},
            access_token=access_token,
            operation="get_organization_slug",
        )
        if not row or not row.get("slug"):
            return None
        return str(row["slug"])

    async def get_membership(self, user_id: str, access_token: str) -> Optional[Membership]:
        """
        Resolve the user's organization membership

        The slug lookup depends on the organization id, so the two requests
        run sequentially.

        Raises:
            DirectoryLookupError: If either lookup fails
        """
        organization_id = await self.get_organization_id(user_id, access_token)
        if not organization_id:
            return None
        slug = await self.get_organization_slug(organization_id, access_token)
        if not slug:
            logger.warning(f"Organization {organization_id} for user {user_id} has no slug")
            return None
        return Membership(user_id=user_id, organization_id=organization_id, organization_slug=slug)

    async def _fetch_one(
        self,
        table: str,
        select: str,
        match: Dict[str, str],
        access_token: str,
        operation: str,
    ) -> Optional[Dict[str, Any]]:
        params = {"select": select, "limit": "1"}
        params.update({column: f"eq.{value}" for column, value in match.items()})
        try:
            with time_lookup(operation):
                response = await self.http.get(
                    f"{self.base_url}/rest/v1/{table}",
                    params=params,
                    headers={
                        "apikey": self.anon_key,
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            track_lookup_failure(operation)
            raise DirectoryLookupError(f"{table} lookup failed: {e}", operation) from e

        if response.status_code != 200:
            track_lookup_failure(operation)
            raise DirectoryLookupError(
                f"{table} lookup returned {response.status_code}",
                operation,
                status_code=response.status_code,
            )

        try:
            rows = response.json()
        except ValueError as e:
            raise DirectoryLookupError(f"{table} lookup returned invalid JSON", operation) from e
        if not isinstance(rows, list) or (rows and not isinstance(rows[0], dict)):
            raise DirectoryLookupError(f"{table} lookup returned an unexpected payload", operation)
        return rows[0] if rows else None
