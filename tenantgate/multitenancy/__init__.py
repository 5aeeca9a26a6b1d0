"""
Tenant isolation and usage-quota governance.

Key Components:
    - IsolationLevel / Tenant: tenant model and Supabase config resolution
    - TenantClientRegistry: one cached Supabase client per tenant and level
    - TenantAuthService: sign-in, profiles and sessions bound to a tenant
    - Tier catalog: quotas, feature flags and resource ceilings per tier
    - QuotaEnforcer: admits or denies metered actions against monthly quotas
    - TenantContext / TenantMiddleware: request-scoped tenant context

Example:
    from tenantgate.multitenancy import (
        QuotaEnforcer, Subscriber, TenantAuthService, InMemoryUsageStore,
    )

    auth = TenantAuthService("acme", "acme.example")
    enforcer = QuotaEnforcer(InMemoryUsageStore())
    decision = await enforcer.check_and_maybe_consume(
        Subscriber(id="u1", tenant_id="acme", tier_id="starter")
    )
"""

from tenantgate.multitenancy.errors import (
    AuthServiceError,
    ConfigurationError,
    InvalidRequest,
    OperationTimeout,
    ProfileNotFound,
    QuotaExceeded,
    TenantGateError,
    TenantMismatch,
    Unauthenticated,
    UpstreamUnavailable,
    UsageRecordCorrupted,
)
from tenantgate.multitenancy.tenant import (
    IsolationLevel,
    Tenant,
    TenantAuthConfiguration,
    TenantSupabaseConfig,
    configure_tenant_auth,
    resolve_tenant_config,
)
from tenantgate.multitenancy.tiers import (
    Feature,
    Tier,
    TierDefinition,
    has_feature,
    limits_for,
    rank_at_least,
    upgrade_recommendation,
)
from tenantgate.multitenancy.registry import (
    TenantClientRegistry,
    get_registry,
)
from tenantgate.multitenancy.auth import (
    AuthResult,
    TenantAuthService,
)
from tenantgate.multitenancy.stores import (
    InMemoryUsageStore,
    SupabaseUsageStore,
    UsageEvent,
    UsageRecord,
    UsageStore,
)
from tenantgate.multitenancy.quotas import (
    Admitted,
    Denied,
    QuotaEnforcer,
    Subscriber,
    UsageState,
)
from tenantgate.multitenancy.context import (
    TenantContext,
    TenantMiddleware,
    get_current_tenant,
)

__all__ = [
    # Errors
    "AuthServiceError",
    "ConfigurationError",
    "InvalidRequest",
    "OperationTimeout",
    "ProfileNotFound",
    "QuotaExceeded",
    "TenantGateError",
    "TenantMismatch",
    "Unauthenticated",
    "UpstreamUnavailable",
    "UsageRecordCorrupted",
    # Tenant
    "IsolationLevel",
    "Tenant",
    "TenantAuthConfiguration",
    "TenantSupabaseConfig",
    "configure_tenant_auth",
    "resolve_tenant_config",
    # Tiers
    "Feature",
    "Tier",
    "TierDefinition",
    "has_feature",
    "limits_for",
    "rank_at_least",
    "upgrade_recommendation",
    # Clients and auth
    "TenantClientRegistry",
    "get_registry",
    "AuthResult",
    "TenantAuthService",
    # Usage
    "InMemoryUsageStore",
    "SupabaseUsageStore",
    "UsageEvent",
    "UsageRecord",
    "UsageStore",
    "Admitted",
    "Denied",
    "QuotaEnforcer",
    "Subscriber",
    "UsageState",
    # Context
    "TenantContext",
    "TenantMiddleware",
    "get_current_tenant",
]
