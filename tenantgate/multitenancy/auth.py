"""
Tenant-scoped authentication and profile access.

``TenantAuthService`` wraps a tenant's Supabase client so that every
sign-in carries the tenant's identity, every profile query is filtered by
tenant, and every session read re-checks that the session was issued for
this tenant.

All operations are coroutines returning ``AuthResult(data, error)``.
Upstream failures come back in ``error`` as a ``TenantGateError`` rather
than being raised. The Supabase client is synchronous, so calls run in a
worker thread under a per-call timeout.

Example:
    auth = TenantAuthService("acme", "acme.example")
    result = await auth.get_session()
    if isinstance(result.error, TenantMismatch):
        ...  # logged in under another tenant; force re-authentication
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

import httpx
from supabase import (
    AuthApiError,
    AuthError,
    AuthRetryableError,
    AuthSessionMissingError,
    PostgrestAPIError,
)

from tenantgate.config.settings import settings
from tenantgate.multitenancy.errors import (
    AuthServiceError,
    ConfigurationError,
    InvalidRequest,
    OperationTimeout,
    ProfileNotFound,
    TenantGateError,
    TenantMismatch,
    Unauthenticated,
    UpstreamUnavailable,
)
from tenantgate.multitenancy.registry import TenantClientRegistry, get_registry
from tenantgate.multitenancy.tenant import OAUTH_PROVIDERS, IsolationLevel, validate_tenant_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROFILES_TABLE = "profiles"

# Keys the service stamps and callers may not override.
TENANT_KEYS = frozenset({"tenant_id", "tenant_domain"})


@dataclass
class AuthResult:
    """Outcome of an auth or profile operation.

    Exactly one of ``data`` and ``error`` is meaningful; both are None when
    an operation legitimately has nothing to return (e.g. no session).
    """

    data: Any = None
    error: TenantGateError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValueError("Email cannot be empty")
    return normalized


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def user_tenant_id(user: Any) -> str | None:
    """The tenant claim carried in a user's metadata."""
    metadata = getattr(user, "user_metadata", None) or {}
    return metadata.get("tenant_id")


def session_tenant_id(session: Any) -> str | None:
    return user_tenant_id(getattr(session, "user", None))


class TenantAuthService:
    """Auth and profile operations bound to a single tenant.

    Args:
        tenant_id: The tenant every operation is scoped to.
        tenant_domain: Hostname used for redirect URLs.
        isolation_level: Isolation level of the tenant's client.
        registry: Client registry (defaults to the process registry).
        timeout: Default per-call timeout in seconds.
    """

    def __init__(
        self,
        tenant_id: str,
        tenant_domain: str,
        isolation_level: IsolationLevel | str = IsolationLevel.RLS,
        registry: TenantClientRegistry | None = None,
        timeout: float | None = None,
    ):
        validate_tenant_id(tenant_id)
        self.tenant_id = tenant_id
        self.tenant_domain = tenant_domain
        self.isolation_level = IsolationLevel.coerce(isolation_level)
        self.timeout = settings.AUTH_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = (registry or get_registry()).get_client(
            tenant_id, tenant_domain, self.isolation_level
        )

    @property
    def client(self) -> Any:
        return self._client

    @property
    def redirect_url(self) -> str:
        return f"https://{self.tenant_domain}/auth/callback"

    async def _execute(self, operation: str, fn: Callable[[], T], timeout: float | None) -> T:
        """Run a blocking Supabase call, translating its failures."""
        timeout = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout)
        except asyncio.TimeoutError:
            raise OperationTimeout(operation, timeout) from None
        except AuthRetryableError as e:
            raise UpstreamUnavailable(f"{operation} failed: {e.message}") from e
        except AuthApiError as e:
            if e.status in (401, 403):
                raise Unauthenticated(f"{operation} failed: access token rejected") from e
            raise AuthServiceError(f"{operation} failed: {e.message}") from e
        except AuthError as e:
            raise AuthServiceError(f"{operation} failed: {e.message}") from e
        except PostgrestAPIError as e:
            raise AuthServiceError(f"{operation} failed: {e.message or e.code}") from e
        except (httpx.TransportError, OSError) as e:
            raise UpstreamUnavailable(f"{operation} failed: {type(e).__name__}") from e

    def _failed(self, operation: str, error: TenantGateError) -> AuthResult:
        logger.error(f"Tenant {self.tenant_id}: {operation} error: {error}")
        return AuthResult(error=error)

    async def sign_in_with_link(self, email: str, timeout: float | None = None) -> AuthResult:
        """Send a magic sign-in link to an existing user.

        Never creates a user. The link redirects to the tenant's
        ``/auth/callback`` and the request is stamped with the tenant.
        """
        try:
            email = normalize_email(email)
        except ValueError as e:
            return self._failed("magic link", InvalidRequest(str(e)))
        credentials = {
            "email": email,
            "options": {
                "email_redirect_to": self.redirect_url,
                "should_create_user": False,
                "data": {
                    "tenant_id": self.tenant_id,
                    "tenant_domain": self.tenant_domain,
                    "signin_method": "magic_link",
                    "signin_timestamp": _utcnow_iso(),
                },
            },
        }
        logger.info(f"Tenant {self.tenant_id}: sending magic link")
        try:
            data = await self._execute(
                "sign_in_with_link", lambda: self._client.auth.sign_in_with_otp(credentials), timeout
            )
        except TenantGateError as e:
            return self._failed("magic link", e)
        logger.info(f"Tenant {self.tenant_id}: magic link sent")
        return AuthResult(data=data)

    async def sign_up_with_link(
        self,
        email: str,
        metadata: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> AuthResult:
        """Create a user (if needed) and send a magic link.

        Caller metadata is merged into the user metadata, but the tenant
        keys are always the service's own.
        """
        try:
            email = normalize_email(email)
        except ValueError as e:
            return self._failed("signup", InvalidRequest(str(e)))
        metadata = dict(metadata or {})
        data = {
            "full_name": metadata.pop("full_name", "") or "",
            "terms_accepted": True,
            "signup_source": "tenant_website",
            **metadata,
            "tenant_id": self.tenant_id,
            "tenant_domain": self.tenant_domain,
            "signup_timestamp": _utcnow_iso(),
        }
        credentials = {
            "email": email,
            "options": {
                "email_redirect_to": self.redirect_url,
                "should_create_user": True,
                "data": data,
            },
        }
        logger.info(f"Tenant {self.tenant_id}: signing up new user")
        try:
            response = await self._execute(
                "sign_up_with_link", lambda: self._client.auth.sign_in_with_otp(credentials), timeout
            )
        except TenantGateError as e:
            return self._failed("signup", e)
        logger.info(f"Tenant {self.tenant_id}: signup magic link sent")
        return AuthResult(data=response)

    async def sign_in_with_oauth(self, provider: str, timeout: float | None = None) -> AuthResult:
        """Start an OAuth sign-in; ``data.url`` is the provider redirect."""
        if provider not in OAUTH_PROVIDERS:
            return self._failed(
                "oauth", ConfigurationError(f"Unsupported OAuth provider: {provider}")
            )
        credentials = {
            "provider": provider,
            "options": {
                "redirect_to": self.redirect_url,
                "query_params": {
                    "tenant_id": self.tenant_id,
                    "tenant_domain": self.tenant_domain,
                },
            },
        }
        logger.info(f"Tenant {self.tenant_id}: OAuth with {provider}")
        try:
            data = await self._execute(
                "sign_in_with_oauth", lambda: self._client.auth.sign_in_with_oauth(credentials), timeout
            )
        except TenantGateError as e:
            return self._failed("oauth", e)
        return AuthResult(data=data)

    async def sign_in_with_password(
        self, email: str, password: str, timeout: float | None = None
    ) -> AuthResult:
        """Password sign-in. A session issued for another tenant is rejected."""
        try:
            email = normalize_email(email)
        except ValueError as e:
            return self._failed("password sign-in", InvalidRequest(str(e)))
        credentials = {"email": email, "password": password}
        try:
            response = await self._execute(
                "sign_in_with_password",
                lambda: self._client.auth.sign_in_with_password(credentials),
                timeout,
            )
        except TenantGateError as e:
            return self._failed("password sign-in", e)

        claim = session_tenant_id(response.session)
        if response.session is not None and claim != self.tenant_id:
            logger.warning(
                f"Session tenant mismatch on sign-in: expected {self.tenant_id}, got {claim}"
            )
            return AuthResult(error=TenantMismatch(self.tenant_id, claim))
        return AuthResult(data=response)

    async def get_profile(self, subscriber_id: str, timeout: float | None = None) -> AuthResult:
        """Fetch a profile, visible only if it belongs to this tenant."""

        def query():
            return (
                self._client.table(PROFILES_TABLE)
                .select("*")
                .eq("id", subscriber_id)
                .eq("tenant_id", self.tenant_id)
                .limit(1)
                .execute()
            )

        try:
            response = await self._execute("get_profile", query, timeout)
        except TenantGateError as e:
            return self._failed("profile", e)
        if not response.data:
            return AuthResult(error=ProfileNotFound(subscriber_id, self.tenant_id))
        return AuthResult(data=response.data[0])

    async def create_profile(self, profile: Mapping[str, Any], timeout: float | None = None) -> AuthResult:
        """Insert a profile stamped with this tenant."""
        row = {
            **profile,
            "tenant_id": self.tenant_id,
            "tenant_domain": self.tenant_domain,
            "created_at": _utcnow_iso(),
        }
        logger.info(f"Tenant {self.tenant_id}: creating profile {row.get('id')}")
        try:
            response = await self._execute(
                "create_profile", lambda: self._client.table(PROFILES_TABLE).insert(row).execute(), timeout
            )
        except TenantGateError as e:
            return self._failed("profile creation", e)
        return AuthResult(data=response.data[0] if response.data else row)

    async def update_profile(
        self,
        subscriber_id: str,
        changes: Mapping[str, Any],
        timeout: float | None = None,
    ) -> AuthResult:
        """Update a profile within this tenant. Tenant keys and ``id`` are ignored."""
        allowed = {k: v for k, v in changes.items() if k not in TENANT_KEYS and k != "id"}
        if not allowed:
            return await self.get_profile(subscriber_id, timeout=timeout)

        def query():
            return (
                self._client.table(PROFILES_TABLE)
                .update(allowed)
                .eq("id", subscriber_id)
                .eq("tenant_id", self.tenant_id)
                .execute()
            )

        try:
            response = await self._execute("update_profile", query, timeout)
        except TenantGateError as e:
            return self._failed("profile update", e)
        if not response.data:
            return AuthResult(error=ProfileNotFound(subscriber_id, self.tenant_id))
        return AuthResult(data=response.data[0])

    async def get_session(self, timeout: float | None = None) -> AuthResult:
        """The current session, re-verified against this tenant.

        Returns:
            ``AuthResult(session, None)`` for a session of this tenant,
            ``AuthResult(None, None)`` when there is no session, and
            ``AuthResult(None, TenantMismatch)`` when the session was
            issued for another tenant.
        """
        try:
            session = await self._execute("get_session", self._client.auth.get_session, timeout)
        except TenantGateError as e:
            return self._failed("session", e)
        if session is None:
            return AuthResult()

        claim = session_tenant_id(session)
        if claim != self.tenant_id:
            logger.warning(f"Session tenant mismatch: expected {self.tenant_id}, got {claim}")
            return AuthResult(error=TenantMismatch(self.tenant_id, claim))
        return AuthResult(data=session)

    async def get_user(self, access_token: str | None, timeout: float | None = None) -> AuthResult:
        """The user an access token belongs to, re-verified against this tenant.

        Identity comes from the token, never from a session held on the
        shared tenant client.

        Returns:
            ``AuthResult(user, None)`` for a user of this tenant,
            ``AuthResult(None, Unauthenticated)`` for a missing or rejected
            token, and ``AuthResult(None, TenantMismatch)`` for a user of
            another tenant.
        """
        if not access_token:
            return AuthResult(error=Unauthenticated("Missing access token"))
        try:
            response = await self._execute(
                "get_user", lambda: self._client.auth.get_user(access_token), timeout
            )
        except TenantGateError as e:
            return self._failed("user lookup", e)
        user = getattr(response, "user", None)
        if user is None:
            return AuthResult(error=Unauthenticated("Access token has no user"))

        claim = user_tenant_id(user)
        if claim != self.tenant_id:
            logger.warning(f"Token tenant mismatch: expected {self.tenant_id}, got {claim}")
            return AuthResult(error=TenantMismatch(self.tenant_id, claim))
        return AuthResult(data=user)

    async def sign_out(
        self, access_token: str | None = None, timeout: float | None = None
    ) -> AuthResult:
        """End a session. Signing out without a session succeeds.

        With ``access_token`` only that token's session is revoked; the
        shared client's own session is left alone.
        """

        def sign_out():
            try:
                if access_token:
                    self._client.auth.admin.sign_out(access_token)
                else:
                    self._client.auth.sign_out()
            except AuthSessionMissingError:
                logger.debug(f"Tenant {self.tenant_id}: sign out without a session")
            except AuthApiError as e:
                if e.status not in (401, 403, 404):
                    raise
                logger.debug(f"Tenant {self.tenant_id}: token already signed out")

        logger.info(f"Tenant {self.tenant_id}: signing out")
        try:
            await self._execute("sign_out", sign_out, timeout)
        except TenantGateError as e:
            return self._failed("sign out", e)
        return AuthResult()

    def on_auth_state_change(self, callback: Callable[[str, Any], None]) -> Any:
        """Subscribe to auth events; returns the subscription handle."""
        return self._client.auth.on_auth_state_change(callback)
