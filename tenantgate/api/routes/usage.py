"""Usage quota endpoints.

Subscribers see and spend only their own quota; the privileged role may
act on any subscriber of the tenant.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tenantgate.api.deps import get_auth_service, get_current_subscriber, get_enforcer
from tenantgate.multitenancy.auth import TenantAuthService
from tenantgate.multitenancy.quotas import DEFAULT_ACTION, Denied, QuotaEnforcer, Subscriber

router = APIRouter(prefix="/api/usage", tags=["usage"])


class ConsumePayload(BaseModel):
    action: str = Field(default=DEFAULT_ACTION, min_length=1, max_length=64)


async def _target(
    subscriber_id: str,
    caller: Subscriber,
    auth: TenantAuthService,
    enforcer: QuotaEnforcer,
) -> Subscriber:
    """The subscriber a request acts on, within the request's tenant."""
    if subscriber_id == caller.id:
        return caller
    if not enforcer.is_privileged(caller):
        raise PermissionError("Subscribers may only access their own usage.")
    result = await auth.get_profile(subscriber_id)
    if result.error is not None:
        raise result.error
    return Subscriber.from_profile(result.data)


@router.get("/{subscriber_id}")
async def usage_report(
    subscriber_id: str,
    caller: Subscriber = Depends(get_current_subscriber),
    auth: TenantAuthService = Depends(get_auth_service),
    enforcer: QuotaEnforcer = Depends(get_enforcer),
) -> dict:
    subscriber = await _target(subscriber_id, caller, auth, enforcer)
    return await enforcer.get_usage_report(subscriber)


@router.post("/{subscriber_id}/consume")
async def consume(
    subscriber_id: str,
    payload: ConsumePayload | None = None,
    caller: Subscriber = Depends(get_current_subscriber),
    auth: TenantAuthService = Depends(get_auth_service),
    enforcer: QuotaEnforcer = Depends(get_enforcer),
) -> dict:
    """Admit and count one metered action, or fail with 429/503."""
    subscriber = await _target(subscriber_id, caller, auth, enforcer)
    action = payload.action if payload else DEFAULT_ACTION
    decision = await enforcer.check_and_maybe_consume(subscriber, action)
    if isinstance(decision, Denied):
        raise decision.to_error()
    return decision.to_dict()
