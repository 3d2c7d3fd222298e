"""
Tenant resolution from the Host header

Production storefronts are addressed by subdomain: ``acme.menengai.cloud``
resolves to tenant ``acme``. In development, where wildcard subdomains are not
available, a query parameter (``?_tenant=acme``) stands in for the subdomain.
"""
from typing import FrozenSet, Iterable, Optional

from .models import DeploymentMode, is_valid_slug


def normalize_host(host: Optional[str]) -> str:
    """
    Lowercase a Host header and strip its port and trailing dot

    Returns an empty string for missing or unparseable hosts.
    """
    if not host:
        return ""
    host = host.strip().lower()
    if not host or host.startswith("["):
        # IPv6 literal, never a tenant
        return ""
    host = host.rsplit(":", 1)[0] if host.count(":") == 1 else host
    if ":" in host or "/" in host or "@" in host:
        return ""
    return host.rstrip(".")


def host_on_domain(host: str, root_domain: str) -> bool:
    """True for the root domain itself or any of its subdomains"""
    host = normalize_host(host)
    return host == root_domain or host.endswith(f".{root_domain}")


def subdomain_label(host: str, root_domain: str) -> Optional[str]:
    """Leading label in front of the root domain, or None"""
    host = normalize_host(host)
    suffix = f".{root_domain}"
    if not host.endswith(suffix):
        return None
    label = host[: -len(suffix)]
    if not label or "." in label:
        return None
    return label


def resolve_tenant(
    host: Optional[str],
    dev_override: Optional[str] = None,
    *,
    root_domain: str,
    reserved_subdomains: Iterable[str] = ("www", "app"),
    mode: DeploymentMode = DeploymentMode.PRODUCTION,
) -> Optional[str]:
    """
    Map a request to an optional tenant slug

    Args:
        host: Raw Host header
        dev_override: Value of the development tenant query parameter
        root_domain: Platform root domain (e.g. "menengai.cloud")
        reserved_subdomains: Labels that belong to the platform itself
        mode: Deployment mode; the override is ignored in production

    Returns:
        Tenant slug, or None when the request targets the main platform
    """
    label = subdomain_label(host or "", root_domain.lower())
    if label is not None:
        if label in set(reserved_subdomains) or not is_valid_slug(label):
            return None
        return label

    if dev_override and mode is DeploymentMode.DEVELOPMENT:
        candidate = dev_override.strip().lower()
        if is_valid_slug(candidate):
            return candidate

    return None


class TenantResolver:
    """Tenant resolver bound to one deployment's domain settings"""

    def __init__(
        self,
        root_domain: str,
        reserved_subdomains: Iterable[str] = ("www", "app"),
        mode: DeploymentMode = DeploymentMode.PRODUCTION,
        dev_tenant_param: str = "_tenant",
    ):
        self.root_domain = root_domain.lower()
        self.reserved_subdomains: FrozenSet[str] = frozenset(
            label.lower() for label in reserved_subdomains
        )
        self.mode = mode
        self.dev_tenant_param = dev_tenant_param

    @classmethod
    def from_settings(cls, settings) -> "TenantResolver":
        return cls(
            root_domain=settings.root_domain,
            reserved_subdomains=settings.reserved_subdomains,
            mode=settings.deployment_mode,
            dev_tenant_param=settings.dev_tenant_param,
        )

    def resolve(self, host: Optional[str], dev_override: Optional[str] = None) -> Optional[str]:
        return resolve_tenant(
            host,
            dev_override,
            root_domain=self.root_domain,
            reserved_subdomains=self.reserved_subdomains,
            mode=self.mode,
        )

    def resolve_request(self, info) -> Optional[str]:
        """Resolve from a RequestInfo, reading the dev override from its query"""
        return self.resolve(info.host, info.query_params.get(self.dev_tenant_param))
