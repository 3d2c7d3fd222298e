"""
End-to-end tests for the edge application

The full middleware stack runs in front of an echo router that reports the
path, query and cookies it was served with.
"""
import pytest
from fastapi import APIRouter, Request
from fastapi.testclient import TestClient

from menengai_edge.exceptions import DirectoryLookupError
from menengai_edge.main import create_app
from menengai_edge.middleware import get_request_id, get_tenant_slug
from menengai_edge.models import CookieSpec

from .conftest import FakeDirectory, FakeIdentity, make_claims, make_settings

downstream = APIRouter()


@downstream.get("/api/fail")
async def fail():
    raise DirectoryLookupError("directory down", "get_organization_id", status_code=503)


@downstream.api_route("/{full_path:path}", methods=["GET", "POST"])
async def echo(request: Request):
    return {
        "path": request.url.path,
        "query": request.url.query,
        "cookie": request.headers.get("cookie"),
        "tenant": getattr(request.state, "tenant_slug", None),
        "context": {
            "request_id": get_request_id(),
            "tenant_slug": get_tenant_slug(),
            "user_id": getattr(request.state, "user_id", None),
        },
    }


def make_client(settings=None, claims=None, memberships=None, cookies=(), directory_error=None):
    app = create_app(
        settings=settings or make_settings(),
        identity=FakeIdentity(claims=claims, cookies=cookies),
        directory=FakeDirectory(memberships=memberships, error=directory_error),
        routers=[downstream],
    )
    return TestClient(app, base_url="http://app.menengai.cloud", follow_redirects=False)


def get(client, host, path, **kwargs):
    headers = {"host": host, **kwargs.pop("headers", {})}
    return client.get(path, headers=headers, **kwargs)


# ============================================================
# Rewrites and canonical redirects
# ============================================================

class TestStorefrontRouting:

    def test_subdomain_is_rewritten(self):
        response = get(make_client(), "acme.menengai.cloud", "/products?color=red")
        assert response.status_code == 200
        body = response.json()
        assert body["path"] == "/store/acme/products"
        assert body["query"] == "color=red"
        assert body["tenant"] == "acme"
        assert body["context"]["tenant_slug"] == "acme"
        assert body["context"]["request_id"] == response.headers["x-request-id"]
        assert response.headers["x-tenant-slug"] == "acme"

    def test_subdomain_root(self):
        response = get(make_client(), "acme.menengai.cloud", "/")
        assert response.json()["path"] == "/store/acme"

    def test_path_storefront_redirects_permanently(self):
        response = get(make_client(), "app.menengai.cloud", "/store/acme/products?x=1")
        assert response.status_code == 308
        assert response.headers["location"] == "https://acme.menengai.cloud/products?x=1"

    @pytest.mark.parametrize("path,location", [
        ("/store/acme/100%25-off", "https://acme.menengai.cloud/100%25-off"),
        ("/store/acme/a%2Fb?x=%2F", "https://acme.menengai.cloud/a%2Fb?x=%2F"),
        ("/acme/settings/a%2Fb", "https://acme.menengai.cloud/settings/a%2Fb"),
    ])
    def test_redirect_keeps_percent_encoding(self, path, location):
        response = get(make_client(), "app.menengai.cloud", path)
        assert response.status_code == 308
        assert response.headers["location"] == location

    def test_settings_redirects_to_subdomain(self):
        response = get(make_client(), "app.menengai.cloud", "/acme/settings/billing")
        assert response.status_code == 308
        assert response.headers["location"] == "https://acme.menengai.cloud/settings/billing"

    def test_local_storefront_renders_directly(self):
        response = get(make_client(), "localhost:3000", "/store/acme/products")
        assert response.status_code == 200
        assert response.json()["path"] == "/store/acme/products"

    def test_dev_tenant_override(self):
        client = make_client(make_settings(environment="development"))
        response = get(client, "localhost:3000", "/products?_tenant=acme")
        assert response.json()["path"] == "/store/acme/products"
        assert response.json()["query"] == "_tenant=acme"

    def test_dev_tenant_override_ignored_in_production(self):
        response = get(make_client(), "app.menengai.cloud", "/products?_tenant=acme")
        assert response.status_code == 307


# ============================================================
# Guarded platform routes
# ============================================================

class TestGuardedRoutes:

    def test_unauthenticated_redirects_to_login(self):
        response = get(make_client(), "app.menengai.cloud", "/acme/a")
        assert response.status_code == 307
        assert response.headers["location"] == "http://app.menengai.cloud/auth/login?redirect=%2Facme%2Fa"

    def test_forwarded_proto_is_kept(self):
        response = get(make_client(), "app.menengai.cloud", "/acme/a", headers={"x-forwarded-proto": "https"})
        assert response.headers["location"].startswith("https://app.menengai.cloud/auth/login")

    def test_member_is_served(self):
        claims = make_claims()
        response = get(make_client(claims=claims, memberships={claims.sub: "acme"}), "app.menengai.cloud", "/acme/a")
        assert response.status_code == 200
        assert response.json()["path"] == "/acme/a"
        assert response.json()["context"]["user_id"] == claims.sub
        assert response.json()["context"]["tenant_slug"] is None
        assert "x-tenant-slug" not in response.headers

    def test_wrong_org_redirects_to_login(self):
        claims = make_claims()
        response = get(make_client(claims=claims, memberships={claims.sub: "beta"}), "app.menengai.cloud", "/acme/a")
        assert response.status_code == 307
        assert response.headers["location"] == "http://app.menengai.cloud/auth/login"

    def test_directory_outage_fails_closed(self):
        claims = make_claims()
        client = make_client(claims=claims, directory_error=DirectoryLookupError("down", "get_organization_id"))
        response = get(client, "app.menengai.cloud", "/acme/a")
        assert response.status_code == 307

    def test_member_on_login_page_goes_to_org(self):
        claims = make_claims()
        client = make_client(claims=claims, memberships={claims.sub: "acme"})
        response = get(client, "app.menengai.cloud", "/auth/login?redirect=/acme/a")
        assert response.status_code == 307
        assert response.headers["location"] == "http://app.menengai.cloud/acme/a"

    def test_login_page_renders_for_anonymous(self):
        response = get(make_client(), "app.menengai.cloud", "/auth/login")
        assert response.status_code == 200

    def test_session_endpoint_is_public(self):
        response = get(make_client(), "app.menengai.cloud", "/auth/callback?code=abc")
        assert response.status_code == 200
        assert response.json()["path"] == "/auth/callback"


# ============================================================
# Cookie propagation
# ============================================================

class TestCookies:

    REFRESHED = (
        CookieSpec("sb-access-token", "new-access", max_age=3600),
        CookieSpec("sb-refresh-token", "new-refresh", max_age=3600),
    )

    def test_refreshed_cookies_reach_handler_and_client(self):
        claims = make_claims()
        client = make_client(claims=claims, memberships={claims.sub: "acme"}, cookies=self.REFRESHED)
        response = get(
            client,
            "app.menengai.cloud",
            "/acme/a",
            headers={"cookie": "sb-access-token=stale; theme=dark"},
        )

        assert response.status_code == 200
        forwarded = response.json()["cookie"]
        assert "sb-access-token=new-access" in forwarded
        assert "sb-refresh-token=new-refresh" in forwarded
        assert "theme=dark" in forwarded
        assert "stale" not in forwarded

        set_cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith("sb-access-token=new-access") for c in set_cookies)
        assert any(c.startswith("sb-refresh-token=new-refresh") for c in set_cookies)
        assert all("HttpOnly" in c for c in set_cookies)

    def test_cleared_cookies_on_redirect(self):
        cleared = (
            CookieSpec("sb-access-token", "", max_age=0),
            CookieSpec("sb-refresh-token", "", max_age=0),
        )
        client = make_client(cookies=cleared)
        response = get(client, "app.menengai.cloud", "/dashboard", headers={"cookie": "sb-refresh-token=revoked"})

        assert response.status_code == 307
        set_cookies = response.headers.get_list("set-cookie")
        assert len(set_cookies) == 2
        assert all("Max-Age=0" in c for c in set_cookies)


# ============================================================
# Storefront owner routes (opt-in)
# ============================================================

class TestOwnerRoutes:

    def test_anonymous_owner_logs_in_on_platform_domain(self):
        client = make_client(make_settings(protect_storefront_owner_routes=True))
        response = get(client, "acme.menengai.cloud", "/orders?status=open")

        assert response.status_code == 302
        assert response.headers["location"] == (
            "https://menengai.cloud/auth/login"
            "?redirect=https%3A%2F%2Facme.menengai.cloud%2Forders%3Fstatus%3Dopen"
        )

    def test_signed_in_owner_is_served_storefront_path(self):
        client = make_client(make_settings(protect_storefront_owner_routes=True), claims=make_claims())
        response = get(client, "acme.menengai.cloud", "/orders")
        assert response.status_code == 200
        assert response.json()["path"] == "/store/acme/orders"

    def test_shoppers_are_not_guarded(self):
        client = make_client(make_settings(protect_storefront_owner_routes=True))
        response = get(client, "acme.menengai.cloud", "/products")
        assert response.status_code == 200


# ============================================================
# Skipped paths and ambient behavior
# ============================================================

class TestAmbient:

    @pytest.mark.parametrize("path", ["/static/app.css", "/favicon.ico", "/logo.svg", "/_next/static/chunk.js"])
    def test_static_assets_are_never_routed(self, path):
        response = get(make_client(), "acme.menengai.cloud", path)
        assert response.status_code == 200
        assert response.json()["path"] == path

    def test_health_answers_on_tenant_hosts(self):
        response = get(make_client(), "acme.menengai.cloud", "/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["mode"] == "production"

    def test_readiness_without_backend_client(self):
        response = get(make_client(), "app.menengai.cloud", "/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["guard"] == "ready"

    def test_metrics_endpoint(self):
        client = make_client()
        get(client, "acme.menengai.cloud", "/products")
        response = get(client, "app.menengai.cloud", "/metrics")
        assert response.status_code == 200
        assert "edge_route_decisions_total" in response.text

    def test_metrics_can_be_disabled(self):
        client = make_client(make_settings(prometheus_enabled=False))
        response = get(client, "app.menengai.cloud", "/metrics")
        assert response.json()["path"] == "/metrics"

    def test_tracing_and_security_headers(self):
        response = get(make_client(), "acme.menengai.cloud", "/products", headers={"x-request-id": "req-1"})
        assert response.headers["x-request-id"] == "req-1"
        assert "x-response-time" in response.headers
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_headers_on_redirects(self):
        response = get(make_client(), "app.menengai.cloud", "/store/acme")
        assert "x-request-id" in response.headers

    def test_backend_errors_render_as_bad_gateway(self):
        response = get(make_client(), "app.menengai.cloud", "/api/fail")
        assert response.status_code == 502
        assert response.json()["error"] == "DIRECTORY_LOOKUP_ERROR"
        assert response.json()["details"] == {"operation": "get_organization_id", "status_code": 503}
        assert response.json()["request_id"] == response.headers["x-request-id"]
