"""
Tenant model and Supabase configuration resolution.

A tenant is one customer organisation served from its own domain. Every
backend handle, auth call and usage counter is scoped to a tenant and to
the isolation level that tenant was onboarded with.

Isolation Levels:
    - DATABASE: The tenant has its own Supabase project. Credentials come
                from ``TENANT_<TENANT_ID>_SUPABASE_*`` environment variables,
                falling back to the shared project.
    - SCHEMA: Shared project, tenant data lives in its own Postgres schema
              (``tenant_<id>``).
    - RLS: Shared project and tables, rows filtered by ``tenant_id`` through
           row-level security policies. The default.

Example:
    from tenantgate.multitenancy.tenant import IsolationLevel, resolve_tenant_config

    config = resolve_tenant_config("acme", "acme.example", IsolationLevel.RLS)
    config.headers["X-Tenant-ID"]   # "acme"
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from tenantgate.config.settings import Settings, settings as default_settings
from tenantgate.multitenancy.errors import ConfigurationError

logger = logging.getLogger(__name__)

CLIENT_INFO = "supabase-js-web-tenant"

# Providers a tenant may enable at onboarding.
AUTH_PROVIDERS = ("email", "github", "google")

# Providers usable for redirect-based OAuth sign-in.
OAUTH_PROVIDERS = ("github", "google")

_MASK = "***"


class IsolationLevel(str, Enum):
    """How strongly a tenant's data is separated from other tenants."""

    DATABASE = "database"
    SCHEMA = "schema"
    RLS = "rls"

    @classmethod
    def coerce(cls, value: "IsolationLevel | str") -> "IsolationLevel":
        """Convert a string to an isolation level.

        Raises:
            ConfigurationError: If the value is not a known level.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unsupported isolation level: {value}") from None


def validate_tenant_id(tenant_id: str) -> None:
    """Reject empty or whitespace-only tenant ids."""
    if not tenant_id or not tenant_id.strip():
        raise ConfigurationError("Tenant id cannot be empty")


def schema_name_for(tenant_id: str) -> str:
    """A valid Postgres schema name for a tenant."""
    return "tenant_" + re.sub(r"[^a-zA-Z0-9_]", "_", tenant_id).lower()


def tenant_env_var(tenant_id: str, kind: str) -> str:
    """Name of a per-tenant credential variable, e.g. ``TENANT_ACME_SUPABASE_URL``."""
    return f"TENANT_{tenant_id.upper()}_{kind}"


@dataclass(frozen=True)
class TenantAuthSettings:
    """Auth endpoints for a tenant.

    ``secret_ref`` names the variable that holds the JWT secret; the secret
    itself is never stored on the tenant.
    """

    site_url: str
    redirect_urls: tuple[str, ...]
    secret_ref: str

    @classmethod
    def for_domain(cls, tenant_id: str, domain: str, level: IsolationLevel) -> "TenantAuthSettings":
        if level == IsolationLevel.DATABASE:
            secret_ref = tenant_env_var(tenant_id, "SUPABASE_JWT_SECRET")
        else:
            secret_ref = "SUPABASE_JWT_SECRET"
        return cls(
            site_url=f"https://{domain}",
            redirect_urls=(
                f"https://{domain}/auth/callback",
                f"https://{domain}/auth/confirm",
            ),
            secret_ref=secret_ref,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_url": self.site_url,
            "redirect_urls": list(self.redirect_urls),
            "secret_ref": self.secret_ref,
        }


@dataclass(frozen=True)
class Tenant:
    """A customer organisation.

    Immutable once onboarded; an operator may only replace the redirect
    URLs, which produces a new value via ``with_redirect_urls``.

    Attributes:
        id: Tenant identifier (e.g. "acme").
        domain: Public hostname the tenant is served from.
        isolation_level: Isolation level chosen at onboarding.
        auth_settings: Site URL, redirect URLs and JWT secret reference.
    """

    id: str
    domain: str
    isolation_level: IsolationLevel = IsolationLevel.RLS
    auth_settings: TenantAuthSettings | None = None

    def __post_init__(self) -> None:
        validate_tenant_id(self.id)
        if not self.domain:
            raise ConfigurationError("Tenant domain cannot be empty")
        object.__setattr__(self, "isolation_level", IsolationLevel.coerce(self.isolation_level))
        if self.auth_settings is None:
            object.__setattr__(
                self,
                "auth_settings",
                TenantAuthSettings.for_domain(self.id, self.domain, self.isolation_level),
            )

    def with_redirect_urls(self, redirect_urls: Iterable[str]) -> "Tenant":
        """Return a copy with the redirect URLs replaced."""
        auth = replace(self.auth_settings, redirect_urls=tuple(redirect_urls))
        return replace(self, auth_settings=auth)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "isolation_level": self.isolation_level.value,
            "auth_settings": self.auth_settings.to_dict(),
        }


@dataclass(frozen=True)
class TenantSupabaseConfig:
    """Everything needed to construct a tenant's Supabase client.

    Credential fields are excluded from ``repr`` and masked in ``to_dict``
    so the config can be logged or printed safely.
    """

    tenant_id: str
    tenant_domain: str
    isolation_level: IsolationLevel
    url: str
    anon_key: str = field(repr=False)
    service_key: str = field(repr=False)
    auth_settings: TenantAuthSettings
    schema_name: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def cache_key(self) -> str:
        return f"{self.tenant_id}-{self.isolation_level.value}"

    def to_dict(self, reveal: bool = False) -> dict[str, Any]:
        """Dictionary form; keys are masked unless ``reveal`` is set."""
        return {
            "tenant_id": self.tenant_id,
            "tenant_domain": self.tenant_domain,
            "isolation_level": self.isolation_level.value,
            "url": self.url,
            "anon_key": self.anon_key if reveal else mask_secret(self.anon_key),
            "service_key": self.service_key if reveal else mask_secret(self.service_key),
            "schema_name": self.schema_name,
            "headers": dict(self.headers),
            "auth_settings": self.auth_settings.to_dict(),
        }


def mask_secret(value: str) -> str:
    """Mask a credential, keeping nothing of it but whether it is set."""
    return _MASK if value else ""


def tenant_headers(tenant_id: str, tenant_domain: str, level: IsolationLevel) -> dict[str, str]:
    """Request headers attached to every call a tenant client makes."""
    return {
        "X-Client-Info": CLIENT_INFO,
        "X-Tenant-ID": tenant_id,
        "X-Tenant-Domain": tenant_domain,
        "X-Isolation-Level": level.value,
    }


def resolve_tenant_config(
    tenant_id: str,
    tenant_domain: str,
    isolation_level: IsolationLevel | str = IsolationLevel.RLS,
    config: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> TenantSupabaseConfig:
    """Resolve the Supabase configuration for a tenant.

    Args:
        tenant_id: The tenant.
        tenant_domain: Hostname the tenant is served from.
        isolation_level: One of ``database``, ``schema`` or ``rls``.
        config: Settings with the shared credentials (defaults to the
            process settings).
        environ: Environment to read per-tenant credentials from (defaults
            to ``os.environ``).

    Returns:
        The resolved configuration.

    Raises:
        ConfigurationError: If the tenant id is empty or the isolation level
            is unknown.
    """
    validate_tenant_id(tenant_id)
    level = IsolationLevel.coerce(isolation_level)
    config = config or default_settings
    environ = os.environ if environ is None else environ

    url = config.SUPABASE_URL
    anon_key = config.SUPABASE_ANON_KEY
    service_key = config.SUPABASE_SERVICE_KEY
    schema_name = None

    if level == IsolationLevel.DATABASE:
        url = environ.get(tenant_env_var(tenant_id, "SUPABASE_URL")) or url
        anon_key = environ.get(tenant_env_var(tenant_id, "SUPABASE_ANON_KEY")) or anon_key
        service_key = environ.get(tenant_env_var(tenant_id, "SUPABASE_SERVICE_KEY")) or ""
    elif level == IsolationLevel.SCHEMA:
        schema_name = schema_name_for(tenant_id)

    return TenantSupabaseConfig(
        tenant_id=tenant_id,
        tenant_domain=tenant_domain,
        isolation_level=level,
        url=url.rstrip("/"),
        anon_key=anon_key,
        service_key=service_key,
        auth_settings=TenantAuthSettings.for_domain(tenant_id, tenant_domain, level),
        schema_name=schema_name,
        headers=tenant_headers(tenant_id, tenant_domain, level),
    )


@dataclass(frozen=True)
class TenantAuthConfiguration:
    """Validated auth configuration for a tenant."""

    tenant_id: str
    tenant_domain: str
    providers: tuple[str, ...]
    redirect_urls: tuple[str, ...]
    rejected_providers: tuple[str, ...] = ()
    rejected_redirect_urls: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "tenant_id": self.tenant_id,
            "tenant_domain": self.tenant_domain,
            "providers": list(self.providers),
            "redirect_urls": list(self.redirect_urls),
            "rejected_providers": list(self.rejected_providers),
            "rejected_redirect_urls": list(self.rejected_redirect_urls),
        }


def _host_of(url: str) -> str | None:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    return parsed.hostname


def configure_tenant_auth(
    tenant_id: str,
    tenant_domain: str,
    providers: Iterable[str],
    redirect_urls: Iterable[str],
) -> TenantAuthConfiguration:
    """Validate a tenant's auth provider and redirect URL configuration.

    Unknown providers and redirect URLs pointing anywhere but the tenant's
    own domain are dropped. At least one of each must survive.

    Args:
        tenant_id: The tenant.
        tenant_domain: Hostname redirect URLs must point at.
        providers: Requested auth providers.
        redirect_urls: Requested post-login redirect URLs.

    Returns:
        The accepted providers and redirect URLs.

    Raises:
        ConfigurationError: If no provider or no redirect URL is valid.
    """
    validate_tenant_id(tenant_id)
    logger.info(f"Configuring auth for tenant {tenant_id}")

    providers = list(providers)
    redirect_urls = list(redirect_urls)
    domain = tenant_domain.lower()

    enabled = tuple(p for p in providers if p in AUTH_PROVIDERS)
    if not enabled:
        logger.error(f"Auth configuration rejected for tenant {tenant_id}: no valid providers")
        raise ConfigurationError("At least one auth provider must be enabled")

    valid_urls = tuple(u for u in redirect_urls if _host_of(u) == domain)
    if not valid_urls:
        logger.error(f"Auth configuration rejected for tenant {tenant_id}: no valid redirect URLs")
        raise ConfigurationError("At least one valid redirect URL must be provided")

    result = TenantAuthConfiguration(
        tenant_id=tenant_id,
        tenant_domain=tenant_domain,
        providers=enabled,
        redirect_urls=valid_urls,
        rejected_providers=tuple(p for p in providers if p not in enabled),
        rejected_redirect_urls=tuple(u for u in redirect_urls if u not in valid_urls),
    )
    logger.info(
        f"Tenant auth configured for {tenant_id}: "
        f"providers={list(enabled)} redirect_urls={list(valid_urls)}"
    )
    return result
