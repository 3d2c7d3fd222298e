"""
Tests for settings, secret loading and the response builder
"""
import pytest
from pydantic import ValidationError
from starlette.responses import Response

from menengai_edge.config import Settings
from menengai_edge.cookies import ResponseBuilder
from menengai_edge.models import CookieSpec, DeploymentMode
from menengai_edge.secrets import load_secret, validate_secret_strength

from .conftest import make_settings


# ============================================================
# Settings
# ============================================================

class TestSettings:

    @pytest.mark.parametrize("environment,mode", [
        ("development", DeploymentMode.DEVELOPMENT),
        ("staging", DeploymentMode.PRODUCTION),
        ("production", DeploymentMode.PRODUCTION),
    ])
    def test_deployment_mode(self, environment, mode):
        assert make_settings(environment=environment).deployment_mode is mode

    def test_json_logs_follow_mode(self):
        assert make_settings(environment="production", json_logs=None).use_json_logs
        assert not make_settings(environment="development", json_logs=None).use_json_logs
        assert make_settings(environment="development", json_logs=True).use_json_logs

    def test_list_settings(self, production_settings):
        assert production_settings.reserved_subdomains == frozenset({"www", "app"})
        assert {"auth", "store", "api", "dashboard"} <= production_settings.reserved_segments
        assert production_settings.public_prefixes == ("/auth/", "/store/", "/api/")
        assert "/auth/callback" in production_settings.session_endpoints
        assert "/health" in production_settings.operational_paths

    def test_csv_from_environment(self, monkeypatch):
        monkeypatch.setenv("RESERVED_SUBDOMAINS", "www, app ,Admin,")
        monkeypatch.setenv("ROOT_DOMAIN", "Example.COM.")
        settings = Settings(supabase_anon_key="k", supabase_jwt_secret=None)
        assert settings.reserved_subdomains == frozenset({"www", "app", "admin"})
        assert settings.root_domain == "example.com"

    @pytest.mark.parametrize("field,value", [
        ("environment", "qa"),
        ("log_level", "LOUD"),
        ("root_domain", "localhost"),
        ("login_path", "auth/login"),
        ("storefront_prefix", "/"),
        ("cookie_samesite", "sometimes"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            make_settings(**{field: value})

    def test_paths_lose_trailing_slash(self):
        settings = make_settings(storefront_prefix="/shop/", login_path="/signin/")
        assert settings.storefront_prefix == "/shop"
        assert settings.login_path == "/signin"


# ============================================================
# Secrets
# ============================================================

class TestSecrets:

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("EDGE_TEST_SECRET", "from-env")
        assert load_secret("edge_test_secret") == "from-env"

    def test_file_pointer_wins_over_env(self, monkeypatch, tmp_path):
        secret_file = tmp_path / "secret"
        secret_file.write_text("from-file\n")
        monkeypatch.setenv("EDGE_TEST_SECRET", "from-env")
        monkeypatch.setenv("EDGE_TEST_SECRET_FILE", str(secret_file))
        assert load_secret("edge_test_secret") == "from-file"

    def test_missing_file_pointer(self, monkeypatch, tmp_path):
        monkeypatch.setenv("EDGE_TEST_SECRET_FILE", str(tmp_path / "missing"))
        with pytest.raises(FileNotFoundError):
            load_secret("edge_test_secret")

    def test_default_and_required(self, monkeypatch):
        monkeypatch.delenv("EDGE_TEST_SECRET", raising=False)
        monkeypatch.delenv("EDGE_TEST_SECRET_FILE", raising=False)
        assert load_secret("edge_test_secret", default="fallback") == "fallback"
        assert load_secret("edge_test_secret") is None
        with pytest.raises(ValueError):
            load_secret("edge_test_secret", required=True)

    def test_secret_strength(self):
        assert validate_secret_strength("x" * 32)
        with pytest.raises(ValueError):
            validate_secret_strength("short", secret_name="supabase_jwt_secret")


# ============================================================
# Response builder
# ============================================================

class TestResponseBuilder:

    def test_with_cookies_returns_new_builder(self):
        empty = ResponseBuilder()
        builder = empty.with_cookies(CookieSpec("a", "1"))
        assert empty.is_empty
        assert [c.name for c in builder.cookies] == ["a"]

    def test_later_cookie_replaces_earlier(self):
        builder = ResponseBuilder().with_cookies(CookieSpec("a", "1"), CookieSpec("b", "2"))
        builder = builder.with_cookies(CookieSpec("a", "3"))
        assert [(c.name, c.value) for c in builder.cookies] == [("b", "2"), ("a", "3")]

    def test_apply_sets_and_deletes(self):
        builder = ResponseBuilder().with_cookies(
            CookieSpec("keep", "v", max_age=60),
            CookieSpec("gone", "", max_age=0),
        )
        response = builder.apply(Response())
        headers = response.headers.getlist("set-cookie")
        assert any(h.startswith("keep=v") and "Max-Age=60" in h for h in headers)
        assert any(h.startswith("gone=") and "Max-Age=0" in h for h in headers)

    def test_merge_request_cookies(self):
        builder = ResponseBuilder().with_cookies(
            CookieSpec("sb-access-token", "new"),
            CookieSpec("sb-refresh-token", "", max_age=0),
        )
        header = builder.merge_request_cookies({"sb-access-token": "old", "sb-refresh-token": "r", "theme": "dark"})
        assert header == "sb-access-token=new; theme=dark"
