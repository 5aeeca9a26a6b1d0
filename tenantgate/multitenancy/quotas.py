"""
Monthly usage quota enforcement.

Every metered action (an AI assistant call, by default) passes through
``QuotaEnforcer.check_and_maybe_consume``. The enforcer decides whether
the subscriber may proceed and, if so, counts the action against the
monthly quota of the subscriber's tier.

Rules:
    - The privileged role is always admitted and never counted, but each
      action is still written to the audit trail.
    - Counters roll over monthly on the configured reset day.
    - Unlimited tiers are always admitted; their counter still moves so
      usage can be reported.
    - Finite tiers are admitted only while the counter is below the quota,
      using an atomic conditional increment in the store.
    - If the store cannot be reached the action is denied.

Example:
    from tenantgate.multitenancy.quotas import QuotaEnforcer, Subscriber
    from tenantgate.multitenancy.stores import InMemoryUsageStore

    enforcer = QuotaEnforcer(InMemoryUsageStore())
    decision = await enforcer.check_and_maybe_consume(
        Subscriber(id="u1", tenant_id="acme", role="user", tier_id="free")
    )
    if not decision.admitted:
        return decision.to_error().to_dict()
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable
import asyncio
import logging

import httpx

from tenantgate.config.settings import Settings, settings as default_settings
from tenantgate.multitenancy.errors import (
    QuotaExceeded,
    UpstreamUnavailable,
    UsageRecordCorrupted,
)
from tenantgate.multitenancy.stores import UsageEvent, UsageRecord, UsageStore
from tenantgate.multitenancy.tiers import (
    TIER_CATALOG,
    UNLIMITED,
    TierDefinition,
    format_usage_display,
    parse_tier,
    upgrade_recommendation,
    usage_percentage,
)
from tenantgate.multitenancy.usage import (
    current_period_start,
    days_until_reset,
    next_reset_date,
    should_reset,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "ai_assistant"

# Store failures that cause a fail-closed denial.
_UPSTREAM_FAILURES = (UpstreamUnavailable, httpx.TransportError, OSError, asyncio.TimeoutError)


class UsageState(str, Enum):
    """Where a subscriber stands against their quota."""

    WITHIN_LIMIT = "within_limit"
    AT_LIMIT = "at_limit"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class Subscriber:
    """An authenticated end user acting within a tenant.

    Attributes:
        id: Subscriber (auth user) id.
        tenant_id: The tenant the subscriber belongs to.
        role: Role from the subscriber's profile.
        tier_id: Subscription tier id.
    """

    id: str
    tenant_id: str
    role: str = "user"
    tier_id: str = "free"

    @classmethod
    def from_profile(cls, profile: dict[str, Any]) -> "Subscriber":
        """Build a subscriber from a ``profiles`` row."""
        return cls(
            id=profile["id"],
            tenant_id=profile["tenant_id"],
            role=profile.get("role") or "user",
            tier_id=profile.get("tier_id") or "free",
        )


@dataclass(frozen=True)
class Admitted:
    """The action may proceed.

    Attributes:
        subscriber_id: The subscriber.
        action: The metered action.
        consumed: Calls consumed this period after this action.
        limit: Monthly quota (-1 for unlimited).
        remaining: Calls left this period (-1 for unlimited).
        accounted_cost: Calls charged for this action (0 for the privileged role).
        upgrade_recommendation: Suggested next tier, if usage is high.
        privileged: Admitted through the privileged-role bypass.
    """

    subscriber_id: str
    action: str
    consumed: int
    limit: int
    remaining: int
    accounted_cost: int = 1
    upgrade_recommendation: str | None = None
    privileged: bool = False

    admitted = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "admitted": True,
            "subscriber_id": self.subscriber_id,
            "action": self.action,
            "consumed": self.consumed,
            "limit": self.limit,
            "remaining": self.remaining,
            "accounted_cost": self.accounted_cost,
            "upgrade_recommendation": self.upgrade_recommendation,
            "privileged": self.privileged,
        }


@dataclass(frozen=True)
class Denied:
    """The action must not proceed.

    ``reason`` is ``"quota_exceeded"`` or ``"upstream_unavailable"``.
    """

    subscriber_id: str
    action: str
    reason: str
    limit: int | None = None
    consumed: int | None = None
    remaining: int = 0
    tenant_id: str | None = None
    tier_id: str | None = None

    admitted = False

    def to_error(self) -> QuotaExceeded | UpstreamUnavailable:
        """The exception equivalent of this denial."""
        if self.reason == "quota_exceeded":
            return QuotaExceeded(
                subscriber_id=self.subscriber_id,
                limit=self.limit,
                consumed=self.consumed,
                tenant_id=self.tenant_id,
                tier_id=self.tier_id,
            )
        return UpstreamUnavailable(
            f"Usage store unavailable; {self.action} denied for subscriber {self.subscriber_id}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "admitted": False,
            "subscriber_id": self.subscriber_id,
            "action": self.action,
            "reason": self.reason,
            "limit": self.limit,
            "consumed": self.consumed,
            "remaining": self.remaining,
        }


@dataclass
class QuotaWarning:
    """Warning when a subscriber's usage crosses the threshold.

    Attributes:
        subscriber_id: The subscriber approaching the limit.
        tenant_id: The subscriber's tenant.
        tier_id: The subscriber's tier.
        consumed: Calls consumed this period.
        limit: The monthly quota.
        threshold_percent: The warning threshold (e.g., 80%).
        generated_at: When the warning was generated.
    """

    subscriber_id: str
    tenant_id: str
    tier_id: str
    consumed: int
    limit: int
    threshold_percent: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def usage_percent(self) -> float:
        """Calculate usage as a percentage of limit."""
        if self.limit <= 0:
            return 100.0
        return (self.consumed / self.limit) * 100


class QuotaEnforcer:
    """Admits or denies metered actions against monthly tier quotas.

    Args:
        store: Where usage records and audit events live.
        config: Settings (privileged role, reset day, warning threshold).
        clock: Returns the current UTC time, for tests.

    Example:
        enforcer = QuotaEnforcer(store)

        try:
            await enforcer.consume_or_raise(subscriber)
        except QuotaExceeded:
            ...

        report = await enforcer.get_usage_report(subscriber)
    """

    def __init__(
        self,
        store: UsageStore,
        config: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        config = config or default_settings
        self._store = store
        self.privileged_role = config.PRIVILEGED_ROLE
        self.reset_day = config.USAGE_RESET_DAY
        self.warning_threshold = config.USAGE_WARNING_THRESHOLD
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._warnings: list[QuotaWarning] = []
        # Period (last_reset) each subscriber was last warned for.
        self._warned: dict[str, datetime] = {}

    @property
    def store(self) -> UsageStore:
        return self._store

    def is_privileged(self, subscriber: Subscriber) -> bool:
        return subscriber.role == self.privileged_role

    def _definition_for(self, subscriber: Subscriber, record: UsageRecord) -> TierDefinition:
        """Validate a record and return the tier it is metered against."""
        tier = parse_tier(subscriber.tier_id)
        if tier is None or parse_tier(record.tier_id) is None:
            bad_tier = subscriber.tier_id if tier is None else record.tier_id
            return self._corrupted("unknown tier id", subscriber, bad_tier)
        if record.calls_consumed < 0:
            return self._corrupted(
                f"negative counter ({record.calls_consumed})", subscriber, subscriber.tier_id
            )
        return TIER_CATALOG[tier]

    def _corrupted(self, reason: str, subscriber: Subscriber, tier_id: str):
        logger.error(
            f"Corrupted usage record: tenant={subscriber.tenant_id} "
            f"subscriber={subscriber.id} tier={tier_id}: {reason}"
        )
        raise UsageRecordCorrupted(
            reason, subscriber.id, tenant_id=subscriber.tenant_id, tier_id=tier_id
        )

    async def _load_record(self, subscriber: Subscriber) -> UsageRecord:
        """Fetch (or open) the subscriber's record, rolling the period over if due."""
        now = self._clock()
        record = await self._store.get(subscriber.id)
        if record is None:
            record = await self._store.create(
                UsageRecord(
                    subscriber_id=subscriber.id,
                    tenant_id=subscriber.tenant_id,
                    tier_id=subscriber.tier_id,
                    last_reset=current_period_start(self.reset_day, now),
                    next_reset=next_reset_date(self.reset_day, now),
                    reset_day=self.reset_day,
                )
            )
            logger.info(f"Opened usage record for subscriber {subscriber.id} ({subscriber.tenant_id})")

        if should_reset(record.last_reset, record.reset_day, now):
            applied = await self._store.reset(
                subscriber.id,
                expected_last_reset=record.last_reset,
                last_reset=current_period_start(record.reset_day, now),
                next_reset=next_reset_date(record.reset_day, now),
            )
            if applied:
                logger.info(f"Reset monthly usage for subscriber {subscriber.id}")
            record = await self._store.get(subscriber.id) or record
        return record

    async def _record_event(
        self, subscriber: Subscriber, action: str, cost: int, admitted: bool
    ) -> None:
        event = UsageEvent(
            subscriber_id=subscriber.id,
            tenant_id=subscriber.tenant_id,
            action=action,
            accounted_cost=cost,
            admitted=admitted,
            role=subscriber.role,
        )
        try:
            await self._store.record_event(event)
        except _UPSTREAM_FAILURES as e:
            logger.warning(f"Could not record usage event for {subscriber.id}: {e}")

    def _check_warning_threshold(
        self, subscriber: Subscriber, record: UsageRecord, consumed: int, limit: int
    ) -> None:
        if limit <= 0:
            return
        percent = (consumed / limit) * 100
        if percent < self.warning_threshold:
            return
        if self._warned.get(subscriber.id) == record.last_reset:
            return
        self._warned[subscriber.id] = record.last_reset
        self._warnings.append(
            QuotaWarning(
                subscriber_id=subscriber.id,
                tenant_id=subscriber.tenant_id,
                tier_id=subscriber.tier_id,
                consumed=consumed,
                limit=limit,
                threshold_percent=self.warning_threshold,
                generated_at=self._clock(),
            )
        )
        logger.warning(
            f"Quota warning for {subscriber.id} ({subscriber.tenant_id}): "
            f"{consumed}/{limit} calls ({percent:.1f}%)"
        )

    async def check_and_maybe_consume(
        self,
        subscriber: Subscriber,
        action: str = DEFAULT_ACTION,
    ) -> Admitted | Denied:
        """Decide whether a metered action may proceed, counting it if so.

        Args:
            subscriber: Who is acting.
            action: Name of the metered action.

        Returns:
            ``Admitted`` or ``Denied``. A denial leaves the counter unchanged.

        Raises:
            UsageRecordCorrupted: If the stored record cannot be interpreted
                or disappears mid-call.
        """
        if self.is_privileged(subscriber):
            await self._record_event(subscriber, action, cost=0, admitted=True)
            logger.debug(f"Privileged {action} by {subscriber.id}, not metered")
            return Admitted(
                subscriber_id=subscriber.id,
                action=action,
                consumed=0,
                limit=UNLIMITED,
                remaining=UNLIMITED,
                accounted_cost=0,
                privileged=True,
            )

        try:
            record = await self._load_record(subscriber)
            definition = self._definition_for(subscriber, record)
            limit = None if definition.is_unlimited else definition.monthly_quota
            result = await self._store.increment_if_below(subscriber.id, limit)
        except LookupError:
            self._corrupted("usage record vanished before increment", subscriber, subscriber.tier_id)
        except _UPSTREAM_FAILURES as e:
            logger.error(
                f"Usage store unavailable for {subscriber.id} ({subscriber.tenant_id}), "
                f"denying {action}: {e}"
            )
            return Denied(
                subscriber_id=subscriber.id,
                action=action,
                reason="upstream_unavailable",
                tenant_id=subscriber.tenant_id,
                tier_id=subscriber.tier_id,
            )

        quota = definition.monthly_quota
        if not result.applied:
            await self._record_event(subscriber, action, cost=0, admitted=False)
            logger.info(
                f"Quota exceeded for {subscriber.id} ({subscriber.tenant_id}): "
                f"{result.calls_consumed}/{quota}"
            )
            return Denied(
                subscriber_id=subscriber.id,
                action=action,
                reason="quota_exceeded",
                limit=quota,
                consumed=result.calls_consumed,
                remaining=0,
                tenant_id=subscriber.tenant_id,
                tier_id=subscriber.tier_id,
            )

        await self._record_event(subscriber, action, cost=1, admitted=True)
        self._check_warning_threshold(subscriber, record, result.calls_consumed, quota)
        recommendation = upgrade_recommendation(definition.id, result.calls_consumed)
        return Admitted(
            subscriber_id=subscriber.id,
            action=action,
            consumed=result.calls_consumed,
            limit=quota,
            remaining=UNLIMITED if definition.is_unlimited else max(0, quota - result.calls_consumed),
            accounted_cost=1,
            upgrade_recommendation=recommendation.value if recommendation else None,
        )

    async def consume_or_raise(
        self,
        subscriber: Subscriber,
        action: str = DEFAULT_ACTION,
    ) -> Admitted:
        """Like ``check_and_maybe_consume`` but raises on denial.

        Raises:
            QuotaExceeded: If the quota is used up.
            UpstreamUnavailable: If the store could not be reached.
        """
        decision = await self.check_and_maybe_consume(subscriber, action)
        if isinstance(decision, Denied):
            raise decision.to_error()
        return decision

    async def usage_state(self, subscriber: Subscriber) -> UsageState:
        """Classify the subscriber's usage without consuming anything."""
        if self.is_privileged(subscriber):
            return UsageState.UNLIMITED
        record = await self._load_record(subscriber)
        definition = self._definition_for(subscriber, record)
        if definition.is_unlimited:
            return UsageState.UNLIMITED
        if record.calls_consumed >= definition.monthly_quota:
            return UsageState.AT_LIMIT
        return UsageState.WITHIN_LIMIT

    async def get_usage_report(self, subscriber: Subscriber) -> dict[str, Any]:
        """Current-period usage for a subscriber.

        Returns:
            Dictionary with consumed calls, limit, remaining calls, percent
            used, a display string, the next reset and an upgrade
            recommendation.
        """
        now = self._clock()
        if self.is_privileged(subscriber):
            return {
                "subscriber_id": subscriber.id,
                "tenant_id": subscriber.tenant_id,
                "tier_id": subscriber.tier_id,
                "state": UsageState.UNLIMITED.value,
                "privileged": True,
                "consumed": 0,
                "limit": UNLIMITED,
                "remaining": UNLIMITED,
                "percent": 0.0,
                "display": "0 / Unlimited",
                "next_reset": next_reset_date(self.reset_day, now).isoformat(),
                "days_until_reset": days_until_reset(self.reset_day, now),
                "upgrade_recommendation": None,
            }

        record = await self._load_record(subscriber)
        definition = self._definition_for(subscriber, record)
        consumed = record.calls_consumed
        if definition.is_unlimited:
            state = UsageState.UNLIMITED
            remaining = UNLIMITED
        else:
            remaining = max(0, definition.monthly_quota - consumed)
            state = UsageState.AT_LIMIT if remaining == 0 else UsageState.WITHIN_LIMIT
        recommendation = upgrade_recommendation(definition.id, consumed)
        return {
            "subscriber_id": subscriber.id,
            "tenant_id": subscriber.tenant_id,
            "tier_id": definition.id.value,
            "state": state.value,
            "privileged": False,
            "consumed": consumed,
            "limit": definition.monthly_quota,
            "remaining": remaining,
            "percent": usage_percentage(definition.id, consumed),
            "display": format_usage_display(definition.id, consumed),
            "next_reset": next_reset_date(record.reset_day, now).isoformat(),
            "days_until_reset": days_until_reset(record.reset_day, now),
            "upgrade_recommendation": recommendation.value if recommendation else None,
        }

    def get_warnings(
        self,
        subscriber_id: str | None = None,
        tenant_id: str | None = None,
        since: datetime | None = None,
    ) -> list[QuotaWarning]:
        """Get quota warnings, optionally filtered."""
        warnings = self._warnings

        if subscriber_id:
            warnings = [w for w in warnings if w.subscriber_id == subscriber_id]

        if tenant_id:
            warnings = [w for w in warnings if w.tenant_id == tenant_id]

        if since:
            warnings = [w for w in warnings if w.generated_at >= since]

        return warnings

    def clear_warnings(self, tenant_id: str | None = None) -> int:
        """Clear quota warnings. Returns the number cleared."""
        if tenant_id:
            original = len(self._warnings)
            self._warnings = [w for w in self._warnings if w.tenant_id != tenant_id]
            return original - len(self._warnings)
        count = len(self._warnings)
        self._warnings = []
        return count

    def __repr__(self) -> str:
        return f"<QuotaEnforcer store={self._store!r} warnings={len(self._warnings)}>"
