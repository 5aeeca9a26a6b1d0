"""FastAPI dependencies resolving the request's tenant, caller, auth service and enforcer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tenantgate.multitenancy.auth import TenantAuthService
from tenantgate.multitenancy.context import TenantContextData, get_context_data
from tenantgate.multitenancy.quotas import QuotaEnforcer, Subscriber
from tenantgate.multitenancy.registry import get_registry
from tenantgate.multitenancy.stores import SupabaseUsageStore

bearer_scheme = HTTPBearer(auto_error=False)


async def get_tenant() -> TenantContextData:
    """The tenant set by ``TenantMiddleware``; 400 if the request carried none."""
    data = get_context_data()
    if data is None:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-ID header.")
    if not data.tenant_domain:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-Domain header.")
    return data


async def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    return credentials.credentials if credentials else None


async def get_auth_service(tenant: TenantContextData = Depends(get_tenant)) -> TenantAuthService:
    return TenantAuthService(
        tenant.tenant_id,
        tenant.tenant_domain,
        tenant.isolation_level,
        registry=get_registry(),
    )


async def get_current_subscriber(
    auth: TenantAuthService = Depends(get_auth_service),
    access_token: str | None = Depends(get_access_token),
) -> Subscriber:
    """The caller, from their bearer token and their profile in this tenant.

    Raises ``Unauthenticated`` or ``TenantMismatch`` (both 401) when the
    token is missing, rejected or issued for another tenant.
    """
    user = await auth.get_user(access_token)
    if user.error is not None:
        raise user.error
    profile = await auth.get_profile(user.data.id)
    if profile.error is not None:
        raise profile.error
    return Subscriber.from_profile(profile.data)


async def get_enforcer(
    request: Request,
    tenant: TenantContextData = Depends(get_tenant),
) -> QuotaEnforcer:
    """One enforcer per tenant and isolation level, kept on the app state."""
    enforcers: dict[str, QuotaEnforcer] = request.app.state.enforcers
    key = f"{tenant.tenant_id}-{tenant.isolation_level.value}"
    if key not in enforcers:
        client = get_registry().get_client(
            tenant.tenant_id, tenant.tenant_domain, tenant.isolation_level
        )
        enforcers[key] = QuotaEnforcer(SupabaseUsageStore(client, tenant.tenant_id))
    return enforcers[key]
