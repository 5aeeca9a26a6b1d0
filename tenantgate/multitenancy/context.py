"""
Request-scoped tenant context.

The tenant a request operates under is established once, at the edge, and
is then readable anywhere in the request via context variables. The ASGI
middleware reads it from the ``X-Tenant-ID`` and ``X-Tenant-Domain``
headers (falling back to the ``Host`` header for the domain).

Example:
    from tenantgate.multitenancy.context import TenantContext, get_current_tenant

    async with TenantContext("acme", "acme.example"):
        tenant_id = get_current_tenant()  # "acme"
"""

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar
import asyncio
import functools
import logging

from starlette.responses import JSONResponse

from tenantgate.config.settings import settings
from tenantgate.multitenancy.errors import ConfigurationError
from tenantgate.multitenancy.tenant import IsolationLevel

logger = logging.getLogger(__name__)


_current_tenant: ContextVar[str | None] = ContextVar("current_tenant", default=None)

_tenant_context_data: ContextVar["TenantContextData | None"] = ContextVar(
    "tenant_context_data", default=None
)


@dataclass
class TenantContextData:
    """Everything known about the tenant a request runs under.

    Attributes:
        tenant_id: The tenant identifier.
        tenant_domain: Hostname the request was addressed to.
        isolation_level: Isolation level of the tenant's backend.
        subscriber_id: The authenticated subscriber, once known.
        request_id: Identifier of the request, if the caller supplied one.
        entered_at: When the context was entered.
    """

    tenant_id: str
    tenant_domain: str | None = None
    isolation_level: IsolationLevel = IsolationLevel.RLS
    subscriber_id: str | None = None
    request_id: str | None = None
    entered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tenant_domain": self.tenant_domain,
            "isolation_level": self.isolation_level.value,
            "subscriber_id": self.subscriber_id,
            "request_id": self.request_id,
            "entered_at": self.entered_at.isoformat(),
        }


def get_current_tenant() -> str | None:
    """The current tenant id, or None outside a tenant context."""
    return _current_tenant.get()


def set_current_tenant(tenant_id: str | None) -> Token[str | None]:
    """Set the current tenant id; returns a token for ``reset``."""
    logger.debug(f"Setting current tenant to: {tenant_id}")
    return _current_tenant.set(tenant_id)


def get_context_data() -> TenantContextData | None:
    """The full context for the current tenant, if one is set."""
    data = _tenant_context_data.get()
    if data is None:
        tenant_id = get_current_tenant()
        if tenant_id:
            return TenantContextData(tenant_id=tenant_id)
    return data


def require_tenant() -> TenantContextData:
    """Get the current tenant context or raise.

    Raises:
        RuntimeError: If no tenant is set in context.
    """
    data = get_context_data()
    if data is None:
        raise RuntimeError(
            "No tenant set in context. Ensure request middleware "
            "sets tenant context before accessing tenant-scoped resources."
        )
    return data


class TenantContext:
    """Context manager establishing the tenant for a block of code.

    Usable as a sync or async context manager; nested contexts restore
    the outer tenant on exit.

    Example:
        with TenantContext("acme", "acme.example") as ctx:
            ctx.data.subscriber_id = "u1"
            await handle()
    """

    def __init__(
        self,
        tenant_id: str,
        tenant_domain: str | None = None,
        isolation_level: IsolationLevel | str = IsolationLevel.RLS,
        request_id: str | None = None,
    ):
        self._tenant_id = tenant_id
        self._token: Token[str | None] | None = None
        self._data_token: Token[TenantContextData | None] | None = None
        self._data = TenantContextData(
            tenant_id=tenant_id,
            tenant_domain=tenant_domain,
            isolation_level=IsolationLevel.coerce(isolation_level),
            request_id=request_id,
        )

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def data(self) -> TenantContextData:
        return self._data

    def __enter__(self) -> "TenantContext":
        self._token = _current_tenant.set(self._tenant_id)
        self._data_token = _tenant_context_data.set(self._data)
        logger.debug(f"Entered tenant context: {self._tenant_id}")
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any | None) -> None:
        if self._token is not None:
            _current_tenant.reset(self._token)
            self._token = None
        if self._data_token is not None:
            _tenant_context_data.reset(self._data_token)
            self._data_token = None
        logger.debug(f"Exited tenant context: {self._tenant_id}")

    async def __aenter__(self) -> "TenantContext":
        return self.__enter__()

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any | None) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


F = TypeVar("F", bound=Callable[..., Any])


def tenant_required(func: F) -> F:
    """Decorator raising RuntimeError when called outside a tenant context."""
    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            require_tenant()
            return await func(*args, **kwargs)
        return async_wrapper  # type: ignore
    else:
        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            require_tenant()
            return func(*args, **kwargs)
        return sync_wrapper  # type: ignore


class TenantMiddleware:
    """ASGI middleware that sets the tenant context from request headers.

    Requests without a tenant header pass through with no tenant set;
    routes that need one reject them.

    Example:
        app.add_middleware(TenantMiddleware)
    """

    def __init__(
        self,
        app: Any,
        header_name: str = "X-Tenant-ID",
        domain_header: str = "X-Tenant-Domain",
        isolation_header: str = "X-Isolation-Level",
    ):
        self.app = app
        self.header_name = header_name.lower().encode()
        self.domain_header = domain_header.lower().encode()
        self.isolation_header = isolation_header.lower().encode()

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        tenant_header = headers.get(self.header_name)
        if not tenant_header or not tenant_header.strip():
            await self.app(scope, receive, send)
            return

        tenant_id = tenant_header.decode().strip()
        domain = self._extract_domain(headers)
        level = headers.get(self.isolation_header, b"").decode().strip() or settings.DEFAULT_ISOLATION_LEVEL
        request_id = headers.get(b"x-request-id", b"").decode() or None

        try:
            context = TenantContext(tenant_id, domain, level, request_id=request_id)
        except ConfigurationError as e:
            response = JSONResponse(status_code=400, content={"detail": str(e)})
            await response(scope, receive, send)
            return

        async with context:
            await self.app(scope, receive, send)

    def _extract_domain(self, headers: dict[bytes, bytes]) -> str | None:
        domain = headers.get(self.domain_header)
        if domain:
            return domain.decode().strip().lower()
        host = headers.get(b"host")
        if host:
            return host.decode().split(":", 1)[0].strip().lower()
        return None


async def run_with_tenant_async(tenant_id: str, tenant_domain: str | None, coro: Any) -> Any:
    """Await a coroutine inside a tenant context."""
    async with TenantContext(tenant_id, tenant_domain):
        return await coro
