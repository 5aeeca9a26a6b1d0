"""
Per-tenant Supabase client registry.

The registry owns one client handle per ``(tenant_id, isolation_level)``
pair and hands the same handle to every caller. Handles are built lazily
on first use from the tenant's resolved configuration.

Example:
    from tenantgate.multitenancy.registry import TenantClientRegistry

    registry = TenantClientRegistry()
    client = registry.get_client("acme", "acme.example", "rls")
    assert registry.get_client("acme", "acme.example", "rls") is client
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from supabase import Client, ClientOptions, SupabaseException, create_client

from tenantgate.config.settings import Settings, settings as default_settings
from tenantgate.multitenancy.errors import ConfigurationError, UpstreamUnavailable
from tenantgate.multitenancy.tenant import (
    IsolationLevel,
    TenantSupabaseConfig,
    resolve_tenant_config,
    validate_tenant_id,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str, ClientOptions], Any]


def default_client_factory(url: str, key: str, options: ClientOptions) -> Client:
    """Build a Supabase client, reporting bad credentials as configuration errors."""
    try:
        return create_client(url, key, options=options)
    except SupabaseException as e:
        raise ConfigurationError(f"Cannot create Supabase client for {url or '<unset url>'}: {e.message}") from e


def client_options_for(config: TenantSupabaseConfig) -> ClientOptions:
    """Client options carrying the tenant's request headers."""
    return ClientOptions(
        headers=dict(config.headers),
        auto_refresh_token=True,
        persist_session=True,
    )


@dataclass
class _CachedClient:
    client: Any
    config: TenantSupabaseConfig
    created_at: float


class TenantClientRegistry:
    """Thread-safe cache of tenant-scoped Supabase clients.

    Args:
        client_factory: Callable ``(url, key, options) -> client``. Defaults
            to ``supabase.create_client``.
        config: Settings holding the shared credentials.
        environ: Environment for per-tenant credentials (``database`` level).
        max_clients: Keep at most this many handles, evicting the least
            recently used. 0 disables the cap.
        ttl_seconds: Rebuild handles older than this. 0 disables expiry.
        clock: Monotonic time source, for tests.
    """

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        config: Settings | None = None,
        environ: Mapping[str, str] | None = None,
        max_clients: int | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = config or default_settings
        self._factory = client_factory or default_client_factory
        self._config = config
        self._environ = environ
        self._max_clients = config.CLIENT_CACHE_MAX if max_clients is None else max_clients
        self._ttl = config.CLIENT_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._clients: OrderedDict[str, _CachedClient] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(tenant_id: str, isolation_level: IsolationLevel | str) -> str:
        level = IsolationLevel.coerce(isolation_level)
        return f"{tenant_id}-{level.value}"

    def get_client(
        self,
        tenant_id: str,
        tenant_domain: str,
        isolation_level: IsolationLevel | str = IsolationLevel.RLS,
    ) -> Any:
        """Return the tenant's client handle, creating it on first use.

        Args:
            tenant_id: The tenant.
            tenant_domain: Hostname the tenant is served from.
            isolation_level: ``database``, ``schema`` or ``rls``.

        Returns:
            The single live handle for ``(tenant_id, isolation_level)``.

        Raises:
            ConfigurationError: Empty tenant id, unknown isolation level or
                unusable credentials. No cache entry is created.
            UpstreamUnavailable: The factory could not reach the backend and
                no handle is cached for this key.
        """
        validate_tenant_id(tenant_id)
        level = IsolationLevel.coerce(isolation_level)
        key = f"{tenant_id}-{level.value}"

        with self._lock:
            cached = self._clients.get(key)
            if cached is not None and not self._expired(cached):
                self._clients.move_to_end(key)
                return cached.client

            config = resolve_tenant_config(
                tenant_id, tenant_domain, level, config=self._config, environ=self._environ
            )
            try:
                client = self._factory(config.url, config.anon_key, client_options_for(config))
            except UpstreamUnavailable:
                if cached is None:
                    raise
                logger.warning(f"Refresh of expired client {key} failed, serving cached handle")
                return cached.client

            self._clients[key] = _CachedClient(client=client, config=config, created_at=self._clock())
            self._clients.move_to_end(key)
            self._enforce_cap()

        logger.info(f"Created tenant Supabase client: {tenant_id} ({level.value})")
        return client

    def get_config(self, tenant_id: str, isolation_level: IsolationLevel | str) -> TenantSupabaseConfig | None:
        """The configuration a cached handle was built from, if any."""
        with self._lock:
            cached = self._clients.get(self.cache_key(tenant_id, isolation_level))
            return cached.config if cached else None

    def evict(self, tenant_id: str, isolation_level: IsolationLevel | str = IsolationLevel.RLS) -> bool:
        """Drop a cached handle. Returns True if one was cached."""
        key = self.cache_key(tenant_id, isolation_level)
        with self._lock:
            removed = self._clients.pop(key, None) is not None
        if removed:
            logger.info(f"Evicted tenant Supabase client: {key}")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._clients.clear()

    def cached_keys(self) -> list[str]:
        with self._lock:
            return list(self._clients)

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._clients

    def _expired(self, cached: _CachedClient) -> bool:
        return self._ttl > 0 and self._clock() - cached.created_at >= self._ttl

    def _enforce_cap(self) -> None:
        if self._max_clients <= 0:
            return
        while len(self._clients) > self._max_clients:
            key, _ = self._clients.popitem(last=False)
            logger.info(f"Evicted least recently used tenant client: {key}")


_default_registry: TenantClientRegistry | None = None
_default_lock = threading.Lock()


def get_registry() -> TenantClientRegistry:
    """The process-wide registry used by the HTTP layer."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = TenantClientRegistry()
        return _default_registry


def set_registry(registry: TenantClientRegistry | None) -> None:
    """Replace the process-wide registry (None resets it)."""
    global _default_registry
    with _default_lock:
        _default_registry = registry
