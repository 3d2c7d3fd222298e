"""
Centralized configuration management using Pydantic Settings
Single source of truth for the edge router configuration

Supports Docker secrets and environment variables with automatic fallback.
"""
from functools import lru_cache
from typing import FrozenSet, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DeploymentMode
from .secrets import load_secret


def _split_csv(value: str) -> Tuple[str, ...]:
    """Split a comma-separated setting into trimmed, non-empty items"""
    return tuple(item.strip() for item in value.split(",") if item.strip())


class Settings(BaseSettings):
    """Application settings with environment variable support and validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================================================
    # Application
    # ========================================================================
    app_name: str = Field(
        default="Menengai Edge",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_logs: Optional[bool] = Field(
        default=None,
        description="Force JSON logs on/off (defaults to on outside development)"
    )

    # ========================================================================
    # API Server
    # ========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server bind host"
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="API server port"
    )

    # ========================================================================
    # Tenant Resolution & Routing
    # ========================================================================
    root_domain: str = Field(
        default="menengai.cloud",
        description="Platform root domain; storefronts live on its subdomains"
    )
    storefront_prefix: str = Field(
        default="/store",
        description="Internal path prefix that serves tenant storefronts"
    )
    reserved_subdomains_str: str = Field(
        default="www,app",
        alias="reserved_subdomains",
        description="Comma-separated subdomain labels that never name a tenant"
    )
    reserved_segments_str: str = Field(
        default="auth,store,api,dashboard,static,_next",
        alias="reserved_segments",
        description="Comma-separated top-level path segments excluded from tenant/org routing"
    )
    public_paths_str: str = Field(
        default=(
            "/,/auth/login,/auth/sign-up,/auth/sign-up-success,"
            "/auth/forgot-password,/auth/callback,/auth/confirm"
        ),
        alias="public_paths",
        description="Comma-separated exact paths served without authentication"
    )
    public_prefixes_str: str = Field(
        default="/auth/,/store/,/api/",
        alias="public_prefixes",
        description="Comma-separated path prefixes served without authentication"
    )
    session_endpoints_str: str = Field(
        default="/auth/callback,/auth/confirm",
        alias="session_endpoints",
        description="Auth paths that establish a session and are never redirected"
    )
    static_prefixes_str: str = Field(
        default="/static/,/_next/static/,/_next/image,/favicon.ico",
        alias="static_prefixes",
        description="Comma-separated static asset path prefixes skipped by the router"
    )
    static_extensions_str: str = Field(
        default=".svg,.png,.jpg,.jpeg,.gif,.webp,.ico",
        alias="static_extensions",
        description="Comma-separated file extensions skipped by the router"
    )
    operational_paths_str: str = Field(
        default="/health,/health/ready,/metrics",
        alias="operational_paths",
        description="Comma-separated operational endpoints that bypass routing on every host"
    )
    dev_tenant_param: str = Field(
        default="_tenant",
        description="Query parameter that simulates a tenant subdomain in development"
    )
    login_path: str = Field(
        default="/auth/login",
        description="Login page path used by the session guard"
    )
    redirect_param: str = Field(
        default="redirect",
        description="Query parameter carrying the post-login return path"
    )
    protect_storefront_owner_routes: bool = Field(
        default=False,
        description="Require a session for storefront owner routes on tenant subdomains"
    )
    store_owner_subpaths_str: str = Field(
        default="/settings,/orders,/products/new,/dashboard",
        alias="store_owner_subpaths",
        description="Comma-separated storefront-relative owner paths"
    )

    # ========================================================================
    # Hosted Backend (identity + organization directory)
    # ========================================================================
    supabase_url: str = Field(
        default="http://localhost:54321",
        description="Hosted backend base URL"
    )
    supabase_anon_key: str = Field(
        default_factory=lambda: load_secret("supabase_anon_key", default=""),
        description="Hosted backend publishable (anon) key"
    )
    supabase_jwt_secret: Optional[str] = Field(
        default_factory=lambda: load_secret("supabase_jwt_secret"),
        description="JWT secret for local access-token verification (remote check if unset)"
    )
    backend_timeout_seconds: float = Field(
        default=5.0,
        ge=0.5,
        le=30.0,
        description="Timeout for identity and directory lookups in seconds"
    )

    # ========================================================================
    # Session Cookies
    # ========================================================================
    access_token_cookie: str = Field(
        default="sb-access-token",
        description="Cookie holding the access token"
    )
    refresh_token_cookie: str = Field(
        default="sb-refresh-token",
        description="Cookie holding the refresh token"
    )
    session_cookie_max_age: int = Field(
        default=60 * 60 * 24 * 30,
        ge=60,
        description="Refresh token cookie lifetime in seconds"
    )
    cookie_domain: Optional[str] = Field(
        default=None,
        description="Cookie domain (e.g. .menengai.cloud to share across subdomains)"
    )
    cookie_secure: bool = Field(
        default=True,
        description="Mark session cookies Secure"
    )
    cookie_samesite: str = Field(
        default="lax",
        description="SameSite attribute for session cookies"
    )

    # ========================================================================
    # Monitoring & CORS
    # ========================================================================
    prometheus_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics at /metrics"
    )
    cors_origins_str: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        alias="cors_origins",
        description="Comma-separated list of allowed CORS origins"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment"""
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    @field_validator("root_domain")
    @classmethod
    def validate_root_domain(cls, v: str) -> str:
        """Normalize root domain to lowercase without surrounding dots"""
        domain = v.strip().strip(".").lower()
        if not domain or "." not in domain:
            raise ValueError(f"Invalid root domain: {v!r}")
        return domain

    @field_validator("storefront_prefix", "login_path")
    @classmethod
    def validate_path_setting(cls, v: str) -> str:
        """Paths must be absolute and carry no trailing slash"""
        if not v.startswith("/") or len(v) < 2:
            raise ValueError(f"Path setting must be an absolute, non-root path: {v!r}")
        return v.rstrip("/")

    @field_validator("cookie_samesite")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        """Validate cookie SameSite attribute"""
        if v.lower() not in ("lax", "strict", "none"):
            raise ValueError(f"Invalid SameSite value: {v}")
        return v.lower()

    # ========================================================================
    # Derived values
    # ========================================================================

    @property
    def deployment_mode(self) -> DeploymentMode:
        """Staging and production are both served from real subdomains"""
        if self.environment in ("staging", "production"):
            return DeploymentMode.PRODUCTION
        return DeploymentMode.DEVELOPMENT

    @property
    def use_json_logs(self) -> bool:
        if self.json_logs is not None:
            return self.json_logs
        return self.deployment_mode is DeploymentMode.PRODUCTION

    @property
    def reserved_subdomains(self) -> FrozenSet[str]:
        return frozenset(label.lower() for label in _split_csv(self.reserved_subdomains_str))

    @property
    def reserved_segments(self) -> FrozenSet[str]:
        return frozenset(_split_csv(self.reserved_segments_str))

    @property
    def public_paths(self) -> FrozenSet[str]:
        return frozenset(_split_csv(self.public_paths_str))

    @property
    def public_prefixes(self) -> Tuple[str, ...]:
        return _split_csv(self.public_prefixes_str)

    @property
    def session_endpoints(self) -> FrozenSet[str]:
        return frozenset(_split_csv(self.session_endpoints_str))

    @property
    def static_prefixes(self) -> Tuple[str, ...]:
        return _split_csv(self.static_prefixes_str)

    @property
    def static_extensions(self) -> Tuple[str, ...]:
        return tuple(ext.lower() for ext in _split_csv(self.static_extensions_str))

    @property
    def operational_paths(self) -> FrozenSet[str]:
        return frozenset(_split_csv(self.operational_paths_str))

    @property
    def store_owner_subpaths(self) -> Tuple[str, ...]:
        return _split_csv(self.store_owner_subpaths_str)

    @property
    def cors_origins(self) -> list:
        """Parse CORS origins from comma-separated string"""
        return list(_split_csv(self.cors_origins_str))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    Uses lru_cache to ensure singleton pattern
    """
    return Settings()
