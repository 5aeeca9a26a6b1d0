from tenantgate.models.tenant import (
    Profile,
    TenantRecord,
    TenantScopedMixin,
    UsageEventRow,
    UsageRecordRow,
)

__all__ = [
    "Profile",
    "TenantRecord",
    "TenantScopedMixin",
    "UsageEventRow",
    "UsageRecordRow",
]
