"""
Error taxonomy for tenant isolation and quota governance.

Every error carries enough context to diagnose a failure without
reproducing it, and none of them ever include credential material
in their message or dictionary form.

Hierarchy:
    TenantGateError
    ├── ConfigurationError     operator-facing misconfiguration
    ├── TenantMismatch         session claims a different tenant
    ├── QuotaExceeded          metered action denied
    ├── UpstreamUnavailable    Supabase could not be reached
    │   └── OperationTimeout   call exceeded its deadline
    ├── AuthServiceError       Supabase rejected an auth/profile call
    ├── Unauthenticated        no valid access token on the request
    ├── InvalidRequest         caller input rejected before any upstream call
    ├── ProfileNotFound        no profile for (subscriber, tenant)
    └── UsageRecordCorrupted   stored usage is not interpretable
"""

from __future__ import annotations

from typing import Any


class TenantGateError(Exception):
    """Base class for all tenantgate errors."""

    code = "tenantgate_error"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"error": self.code, "message": str(self)}


class ConfigurationError(TenantGateError):
    """Raised for unsupported isolation levels, bad redirect URLs or providers.

    These are operator-facing. The HTTP layer logs the message and returns
    a generic error to subscribers.
    """

    code = "configuration_error"


class TenantMismatch(TenantGateError):
    """A session's tenant claim does not match the requesting tenant.

    This is deliberately not an "unauthenticated" condition: callers must
    be able to tell "log in" apart from "you are logged in elsewhere".

    Attributes:
        expected_tenant_id: The tenant the request is operating under.
        actual_tenant_id: The tenant claimed by the session (may be None
            when the session carries no claim at all).
    """

    code = "tenant_mismatch"

    def __init__(self, expected_tenant_id: str, actual_tenant_id: str | None):
        self.expected_tenant_id = expected_tenant_id
        self.actual_tenant_id = actual_tenant_id
        super().__init__(
            f"Session tenant mismatch: expected {expected_tenant_id}, "
            f"got {actual_tenant_id}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "expected_tenant_id": self.expected_tenant_id,
            "actual_tenant_id": self.actual_tenant_id,
            "reauthenticate": True,
            "message": str(self),
        }


class QuotaExceeded(TenantGateError):
    """Raised when a subscriber exceeds their monthly quota.

    Only raised by ``QuotaEnforcer.consume_or_raise``; the regular check
    returns a ``Denied`` value instead.

    Attributes:
        subscriber_id: The subscriber that hit the limit.
        tenant_id: The subscriber's tenant.
        tier_id: The subscriber's tier.
        limit: The monthly quota.
        consumed: Calls consumed this period.

    Example:
        try:
            await enforcer.consume_or_raise(subscriber)
        except QuotaExceeded as e:
            return f"Limit reached: {e.consumed}/{e.limit}"
    """

    code = "quota_exceeded"

    def __init__(
        self,
        subscriber_id: str,
        limit: int,
        consumed: int,
        tenant_id: str | None = None,
        tier_id: str | None = None,
    ):
        self.subscriber_id = subscriber_id
        self.tenant_id = tenant_id
        self.tier_id = tier_id
        self.limit = limit
        self.consumed = consumed
        super().__init__(
            f"Subscriber {subscriber_id} exceeded monthly quota "
            f"(limit: {limit}, consumed: {consumed})"
        )

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.consumed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "subscriber_id": self.subscriber_id,
            "tenant_id": self.tenant_id,
            "tier_id": self.tier_id,
            "limit": self.limit,
            "consumed": self.consumed,
            "remaining": self.remaining,
            "message": str(self),
        }


class UpstreamUnavailable(TenantGateError):
    """Supabase (auth, PostgREST or RPC) could not be reached."""

    code = "upstream_unavailable"


class OperationTimeout(UpstreamUnavailable):
    """An upstream call did not complete within its timeout.

    Attributes:
        operation: Name of the operation that timed out.
        timeout: The deadline in seconds.
    """

    code = "timeout"

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class AuthServiceError(TenantGateError):
    """Supabase answered but rejected the auth or profile request."""

    code = "auth_error"


class ProfileNotFound(TenantGateError):
    """No profile exists for this subscriber within this tenant.

    A profile belonging to another tenant is reported exactly like one
    that does not exist.
    """

    code = "profile_not_found"

    def __init__(self, subscriber_id: str, tenant_id: str):
        self.subscriber_id = subscriber_id
        self.tenant_id = tenant_id
        super().__init__(f"Profile {subscriber_id} not found for tenant {tenant_id}")


class UsageRecordCorrupted(TenantGateError):
    """A stored usage record cannot be interpreted (unknown tier, bad counter)."""

    code = "usage_record_corrupted"

    def __init__(
        self,
        reason: str,
        subscriber_id: str,
        tenant_id: str | None = None,
        tier_id: str | None = None,
    ):
        self.reason = reason
        self.subscriber_id = subscriber_id
        self.tenant_id = tenant_id
        self.tier_id = tier_id
        super().__init__(
            f"Corrupted usage record for subscriber {subscriber_id} "
            f"(tenant: {tenant_id}, tier: {tier_id}): {reason}"
        )


class Unauthenticated(TenantGateError):
    """The request carries no access token, or the token was rejected."""

    code = "unauthenticated"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "reauthenticate": True, "message": str(self)}


class InvalidRequest(TenantGateError):
    """Caller input was rejected before reaching Supabase (e.g. an empty email)."""

    code = "invalid_request"
