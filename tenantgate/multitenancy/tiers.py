"""
Subscription tier catalog.

A fixed, ordered table of tier definitions. Each tier bundles a monthly
usage quota, a set of feature flags and resource ceilings. The catalog is
static: it is built once at import time and never mutated.

Tier order (used for "at least tier X" checks):
    free < starter < growth < professional < enterprise < legacyEnterprise

Unlimited values use the ``UNLIMITED`` sentinel (-1). Unknown tier ids
resolve to ``free``, the most restrictive real tier, never to unlimited.

Example:
    from tenantgate.multitenancy.tiers import limits_for, has_feature, rank_at_least

    tier = limits_for("growth")
    tier.monthly_quota               # 500
    has_feature("starter", "export_data")   # True
    rank_at_least("growth", "starter")      # True
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

UNLIMITED = -1

# Usage percentage at which an upgrade is suggested.
UPGRADE_THRESHOLD_PERCENT = 80


class Tier(str, Enum):
    """Subscription tiers, declared in rank order."""

    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
    LEGACY_ENTERPRISE = "legacyEnterprise"


class Feature(str, Enum):
    """Named boolean feature flags carried by every tier."""

    BASIC_AI = "basic_ai"
    ADVANCED_AI = "advanced_ai"
    PREMIUM_AI = "premium_ai"
    REAL_TIME_ANALYTICS = "real_time_analytics"
    CUSTOM_TEMPLATES = "custom_templates"
    PRIORITY_SUPPORT = "priority_support"
    WHITE_LABEL = "white_label"
    CUSTOM_INTEGRATIONS = "custom_integrations"
    MONTHLY_CONSULTATION = "monthly_consultation"
    COMPETITOR_TRACKING = "competitor_tracking"
    BULK_OPERATIONS = "bulk_operations"
    EXPORT_DATA = "export_data"
    API_ACCESS = "api_access"
    CUSTOM_REPORTS = "custom_reports"


@dataclass(frozen=True)
class TierFeatures:
    """Feature flags for a tier. Every flag defaults to off."""

    basic_ai: bool = False
    advanced_ai: bool = False
    premium_ai: bool = False
    real_time_analytics: bool = False
    custom_templates: bool = False
    priority_support: bool = False
    white_label: bool = False
    custom_integrations: bool = False
    monthly_consultation: bool = False
    competitor_tracking: bool = False
    bulk_operations: bool = False
    export_data: bool = False
    api_access: bool = False
    custom_reports: bool = False

    def enabled(self) -> list[str]:
        """Names of the flags that are switched on."""
        return [f.name for f in fields(self) if getattr(self, f.name)]


@dataclass(frozen=True)
class ResourceLimits:
    """Numeric resource ceilings. ``UNLIMITED`` (-1) lifts a ceiling."""

    max_projects: int
    max_team_members: int
    storage_gb: float
    email_reports_per_month: int
    max_custom_domains: int
    integrations: tuple[str, ...] = ()


@dataclass(frozen=True)
class TierDefinition:
    """A subscription tier.

    Attributes:
        id: The tier identifier.
        display_name: Human-readable plan name.
        price: Monthly price in dollars.
        monthly_quota: Metered actions per month, or ``UNLIMITED``.
        features: Boolean feature flags.
        limits: Resource ceilings.
    """

    id: Tier
    display_name: str
    price: int
    monthly_quota: int
    features: TierFeatures
    limits: ResourceLimits

    @property
    def price_in_cents(self) -> int:
        return self.price * 100

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_quota == UNLIMITED

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert the definition to a JSON-friendly dictionary."""
        return {
            "id": self.id.value,
            "display_name": self.display_name,
            "price": self.price,
            "price_in_cents": self.price_in_cents,
            "monthly_quota": self.monthly_quota,
            "features": asdict(self.features),
            "limits": {
                **asdict(self.limits),
                "integrations": list(self.limits.integrations),
            },
        }


_ALL_FEATURES = TierFeatures(**{f.value: True for f in Feature})

TIER_ORDER: tuple[Tier, ...] = tuple(Tier)

TIER_CATALOG: dict[Tier, TierDefinition] = {
    Tier.FREE: TierDefinition(
        id=Tier.FREE,
        display_name="Free",
        price=0,
        monthly_quota=10,
        features=TierFeatures(basic_ai=True),
        limits=ResourceLimits(
            max_projects=1,
            max_team_members=1,
            storage_gb=0.5,
            email_reports_per_month=2,
            max_custom_domains=1,
            integrations=("google-analytics",),
        ),
    ),
    Tier.STARTER: TierDefinition(
        id=Tier.STARTER,
        display_name="Starter",
        price=29,
        monthly_quota=100,
        features=TierFeatures(
            basic_ai=True,
            advanced_ai=True,
            real_time_analytics=True,
            custom_templates=True,
            export_data=True,
        ),
        limits=ResourceLimits(
            max_projects=3,
            max_team_members=2,
            storage_gb=5,
            email_reports_per_month=10,
            max_custom_domains=3,
            integrations=("google-analytics", "google-search-console", "mailchimp"),
        ),
    ),
    Tier.GROWTH: TierDefinition(
        id=Tier.GROWTH,
        display_name="Growth",
        price=99,
        monthly_quota=500,
        features=TierFeatures(
            basic_ai=True,
            advanced_ai=True,
            premium_ai=True,
            real_time_analytics=True,
            custom_templates=True,
            priority_support=True,
            competitor_tracking=True,
            bulk_operations=True,
            export_data=True,
            api_access=True,
            custom_reports=True,
        ),
        limits=ResourceLimits(
            max_projects=10,
            max_team_members=5,
            storage_gb=25,
            email_reports_per_month=50,
            max_custom_domains=10,
            integrations=(
                "google-analytics", "google-search-console", "mailchimp",
                "facebook-ads", "hubspot",
            ),
        ),
    ),
    Tier.PROFESSIONAL: TierDefinition(
        id=Tier.PROFESSIONAL,
        display_name="Professional",
        price=199,
        monthly_quota=1000,
        features=TierFeatures(
            basic_ai=True,
            advanced_ai=True,
            premium_ai=True,
            real_time_analytics=True,
            custom_templates=True,
            priority_support=True,
            white_label=True,
            competitor_tracking=True,
            bulk_operations=True,
            export_data=True,
            api_access=True,
            custom_reports=True,
        ),
        limits=ResourceLimits(
            max_projects=25,
            max_team_members=10,
            storage_gb=100,
            email_reports_per_month=100,
            max_custom_domains=25,
            integrations=(
                "google-analytics", "google-search-console", "mailchimp",
                "facebook-ads", "hubspot", "zapier",
            ),
        ),
    ),
    Tier.ENTERPRISE: TierDefinition(
        id=Tier.ENTERPRISE,
        display_name="Enterprise",
        price=299,
        monthly_quota=UNLIMITED,
        features=_ALL_FEATURES,
        limits=ResourceLimits(
            max_projects=UNLIMITED,
            max_team_members=UNLIMITED,
            storage_gb=500,
            email_reports_per_month=UNLIMITED,
            max_custom_domains=UNLIMITED,
            integrations=("all",),
        ),
    ),
    Tier.LEGACY_ENTERPRISE: TierDefinition(
        id=Tier.LEGACY_ENTERPRISE,
        display_name="Legacy Enterprise",
        price=1000,
        monthly_quota=UNLIMITED,
        features=_ALL_FEATURES,
        limits=ResourceLimits(
            max_projects=UNLIMITED,
            max_team_members=UNLIMITED,
            storage_gb=1000,
            email_reports_per_month=UNLIMITED,
            max_custom_domains=UNLIMITED,
            integrations=("all",),
        ),
    ),
}

# One-step upgrade suggestions. growth jumps straight to enterprise;
# professional is never suggested.
UPGRADE_RECOMMENDATIONS: dict[Tier, Tier] = {
    Tier.FREE: Tier.STARTER,
    Tier.STARTER: Tier.GROWTH,
    Tier.GROWTH: Tier.ENTERPRISE,
}


def parse_tier(tier_id: str | Tier) -> Tier | None:
    """Return the ``Tier`` for an id, or None when it is not in the catalog."""
    if isinstance(tier_id, Tier):
        return tier_id
    try:
        return Tier(tier_id)
    except ValueError:
        return None


def limits_for(tier_id: str | Tier) -> TierDefinition:
    """Get the definition for a tier, falling back to ``free``.

    Args:
        tier_id: The tier id (string or ``Tier``).

    Returns:
        The matching definition, or the free definition for unknown ids.
    """
    tier = parse_tier(tier_id)
    if tier is None:
        logger.warning(f"Unknown tier id {tier_id!r}, falling back to free")
        return TIER_CATALOG[Tier.FREE]
    return TIER_CATALOG[tier]


def has_feature(tier_id: str | Tier, feature: str | Feature) -> bool:
    """Check whether a tier has a feature flag switched on.

    Unknown feature names are reported as absent.
    """
    name = feature.value if isinstance(feature, Feature) else feature
    try:
        Feature(name)
    except ValueError:
        logger.debug(f"Unknown feature flag {name!r}")
        return False
    return getattr(limits_for(tier_id).features, name)


def rank_of(tier_id: str | Tier) -> int:
    """Position of a tier in the catalog order; unknown ids rank as free."""
    tier = parse_tier(tier_id) or Tier.FREE
    return TIER_ORDER.index(tier)


def rank_at_least(tier_id: str | Tier, required_tier_id: str | Tier) -> bool:
    """True iff ``tier_id`` ranks at or above ``required_tier_id``."""
    return rank_of(tier_id) >= rank_of(required_tier_id)


def is_unlimited(tier_id: str | Tier) -> bool:
    return limits_for(tier_id).is_unlimited


def can_use_quota(tier_id: str | Tier, current_usage: int) -> bool:
    """Whether one more metered action fits in the tier's monthly quota."""
    tier = limits_for(tier_id)
    if tier.is_unlimited:
        return True
    return current_usage < tier.monthly_quota


def remaining_calls(tier_id: str | Tier, current_usage: int) -> int:
    """Calls left this period, or ``UNLIMITED``."""
    tier = limits_for(tier_id)
    if tier.is_unlimited:
        return UNLIMITED
    return max(0, tier.monthly_quota - current_usage)


def usage_percentage(tier_id: str | Tier, current_usage: int) -> float:
    """Usage as a percentage of quota, capped at 100 (0 for unlimited tiers)."""
    tier = limits_for(tier_id)
    if tier.is_unlimited or tier.monthly_quota == 0:
        return 0.0
    return min(100.0, (current_usage / tier.monthly_quota) * 100)


def upgrade_recommendation(tier_id: str | Tier, current_usage: int) -> Tier | None:
    """Suggest the next tier once usage reaches the upgrade threshold.

    Only the tiers in ``UPGRADE_RECOMMENDATIONS`` ever get a suggestion;
    ids outside the catalog get none.
    """
    tier = parse_tier(tier_id)
    if tier is None or tier not in UPGRADE_RECOMMENDATIONS:
        return None
    if usage_percentage(tier, current_usage) >= UPGRADE_THRESHOLD_PERCENT:
        return UPGRADE_RECOMMENDATIONS[tier]
    return None


def can_create_project(tier_id: str | Tier, current_count: int) -> bool:
    ceiling = limits_for(tier_id).limits.max_projects
    return ceiling == UNLIMITED or current_count < ceiling


def can_add_team_member(tier_id: str | Tier, current_count: int) -> bool:
    ceiling = limits_for(tier_id).limits.max_team_members
    return ceiling == UNLIMITED or current_count < ceiling


def format_usage_display(tier_id: str | Tier, current_usage: int) -> str:
    """Render usage as ``"42 / 100"`` or ``"42 / Unlimited"``."""
    tier = limits_for(tier_id)
    if tier.is_unlimited:
        return f"{current_usage} / Unlimited"
    return f"{current_usage} / {tier.monthly_quota}"


def all_tiers() -> list[TierDefinition]:
    """Every tier definition in rank order."""
    return [TIER_CATALOG[t] for t in TIER_ORDER]


def upgrade_path(tier_id: str | Tier) -> list[TierDefinition]:
    """All tiers ranked above the given one (unknown ids rank as free)."""
    return all_tiers()[rank_of(tier_id) + 1:]
