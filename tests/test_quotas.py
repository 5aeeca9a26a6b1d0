"""Tests for tenantgate.multitenancy.quotas - the quota enforcer.

Tests cover:
- Admission and denial at the quota boundary for every finite tier
- Unlimited tiers and the privileged-role bypass
- Monthly rollover
- Fail-closed behaviour when the store is unreachable
- Corrupted usage records
- Threshold warnings and usage reports
- The acme end-to-end onboarding scenario
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from tenantgate.config.settings import Settings
from tenantgate.multitenancy.errors import (
    QuotaExceeded,
    UpstreamUnavailable,
    UsageRecordCorrupted,
)
from tenantgate.multitenancy.quotas import (
    DEFAULT_ACTION,
    Admitted,
    Denied,
    QuotaEnforcer,
    Subscriber,
    UsageState,
)
from tenantgate.multitenancy.stores import InMemoryUsageStore, UsageRecord
from tenantgate.multitenancy.tiers import UNLIMITED, limits_for
from tenantgate.multitenancy.usage import current_period_start, next_reset_date

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def config() -> Settings:
    return Settings(PRIVILEGED_ROLE="super_admin", USAGE_RESET_DAY=1, USAGE_WARNING_THRESHOLD=80)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def enforcer(store, config, clock) -> QuotaEnforcer:
    return QuotaEnforcer(store, config=config, clock=clock)


def seed(store: InMemoryUsageStore, subscriber: Subscriber, consumed: int, tier_id: str | None = None):
    """Put a current-period record for ``subscriber``."""
    return store.put(
        UsageRecord(
            subscriber_id=subscriber.id,
            tenant_id=subscriber.tenant_id,
            tier_id=tier_id or subscriber.tier_id,
            last_reset=current_period_start(1, NOW),
            next_reset=next_reset_date(1, NOW),
            calls_consumed=consumed,
        )
    )


# ===========================================================================
# Subscriber and decision values
# ===========================================================================

class TestValues:
    def test_subscriber_from_profile(self):
        subscriber = Subscriber.from_profile({"id": "u1", "tenant_id": "acme", "tier_id": "growth", "role": None})
        assert subscriber == Subscriber(id="u1", tenant_id="acme", role="user", tier_id="growth")

    def test_subscriber_defaults_to_free(self):
        assert Subscriber.from_profile({"id": "u1", "tenant_id": "acme"}).tier_id == "free"

    def test_admitted_flag(self):
        assert Admitted("u1", DEFAULT_ACTION, consumed=1, limit=10, remaining=9).admitted is True

    def test_denied_to_error_quota(self):
        denied = Denied("u1", DEFAULT_ACTION, "quota_exceeded", limit=10, consumed=10, tenant_id="acme")
        error = denied.to_error()
        assert isinstance(error, QuotaExceeded)
        assert error.to_dict()["remaining"] == 0
        assert error.tenant_id == "acme"

    def test_denied_to_error_upstream(self):
        assert isinstance(Denied("u1", DEFAULT_ACTION, "upstream_unavailable").to_error(), UpstreamUnavailable)


# ===========================================================================
# Finite tiers
# ===========================================================================

class TestFiniteTiers:
    """Admission up to the quota and denial after it."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier_id", ["free", "starter", "growth", "professional"])
    async def test_last_call_admitted_then_denied(self, enforcer, store, tier_id):
        quota = limits_for(tier_id).monthly_quota
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id=tier_id)
        await seed(store, subscriber, quota - 1)

        last = await enforcer.check_and_maybe_consume(subscriber)
        assert isinstance(last, Admitted)
        assert last.consumed == quota
        assert last.remaining == 0
        assert await enforcer.usage_state(subscriber) is UsageState.AT_LIMIT

        denied = await enforcer.check_and_maybe_consume(subscriber)
        assert isinstance(denied, Denied)
        assert denied.reason == "quota_exceeded"
        assert denied.limit == quota
        assert denied.consumed == quota
        assert (await store.get("u1")).calls_consumed == quota

    @pytest.mark.asyncio
    async def test_new_subscriber_gets_record(self, enforcer, store):
        subscriber = Subscriber(id="new", tenant_id="acme", tier_id="starter")
        decision = await enforcer.check_and_maybe_consume(subscriber)
        assert decision.admitted
        assert decision.consumed == 1
        record = await store.get("new")
        assert record.last_reset == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert record.next_reset == datetime(2026, 4, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_within_limit_state(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await seed(store, subscriber, 10)
        assert await enforcer.usage_state(subscriber) is UsageState.WITHIN_LIMIT

    @pytest.mark.asyncio
    async def test_concurrent_actions_never_exceed_quota(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        decisions = await asyncio.gather(
            *[enforcer.check_and_maybe_consume(subscriber) for _ in range(25)]
        )
        assert sum(d.admitted for d in decisions) == 10
        assert (await store.get("u1")).calls_consumed == 10

    @pytest.mark.asyncio
    async def test_denials_are_audited(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 10)
        await enforcer.check_and_maybe_consume(subscriber, "report_export")
        [event] = store.events("u1")
        assert event.admitted is False
        assert event.accounted_cost == 0
        assert event.action == "report_export"

    @pytest.mark.asyncio
    async def test_upgrade_recommendation_attached(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 7)
        decision = await enforcer.check_and_maybe_consume(subscriber)
        assert decision.upgrade_recommendation == "starter"

    @pytest.mark.asyncio
    async def test_consume_or_raise(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 10)
        with pytest.raises(QuotaExceeded) as exc_info:
            await enforcer.consume_or_raise(subscriber)
        assert exc_info.value.limit == 10
        assert exc_info.value.tier_id == "free"


# ===========================================================================
# Unlimited tiers and privileged role
# ===========================================================================

class TestUnlimitedAndPrivileged:
    """Unlimited tiers are never denied; the privileged role is never counted."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier_id", ["enterprise", "legacyEnterprise"])
    async def test_unlimited_always_admitted(self, enforcer, store, tier_id):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id=tier_id)
        await seed(store, subscriber, 1_000_000)
        for _ in range(5):
            decision = await enforcer.check_and_maybe_consume(subscriber)
            assert isinstance(decision, Admitted)
            assert decision.limit == UNLIMITED
            assert decision.remaining == UNLIMITED
        assert await enforcer.usage_state(subscriber) is UsageState.UNLIMITED

    @pytest.mark.asyncio
    async def test_unlimited_usage_still_counted(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="enterprise")
        await enforcer.check_and_maybe_consume(subscriber)
        await enforcer.check_and_maybe_consume(subscriber)
        assert (await store.get("u1")).calls_consumed == 2

    @pytest.mark.asyncio
    async def test_privileged_ten_thousand_actions(self, enforcer, store):
        admin = Subscriber(id="admin", tenant_id="acme", role="super_admin", tier_id="free")
        await seed(store, admin, 0)
        for _ in range(10_000):
            decision = await enforcer.check_and_maybe_consume(admin)
            assert decision.admitted
            assert decision.accounted_cost == 0
            assert decision.privileged
        assert (await store.get("admin")).calls_consumed == 0
        assert len(store.events("admin")) == 10_000

    @pytest.mark.asyncio
    async def test_privileged_bypass_ignores_store_outage(self, config, clock):
        store = AsyncMock()
        store.get.side_effect = UpstreamUnavailable("down")
        enforcer = QuotaEnforcer(store, config=config, clock=clock)
        admin = Subscriber(id="admin", tenant_id="acme", role="super_admin")
        assert (await enforcer.check_and_maybe_consume(admin)).admitted

    @pytest.mark.asyncio
    async def test_privileged_role_is_configurable(self, store, clock):
        enforcer = QuotaEnforcer(store, config=Settings(PRIVILEGED_ROLE="owner"), clock=clock)
        assert enforcer.is_privileged(Subscriber(id="u", tenant_id="acme", role="owner"))
        assert not enforcer.is_privileged(Subscriber(id="u", tenant_id="acme", role="super_admin"))


# ===========================================================================
# Rollover
# ===========================================================================

class TestRollover:
    """Counters reset once the reset day passes."""

    @pytest.mark.asyncio
    async def test_reset_restores_admission(self, enforcer, store, clock):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 10)
        assert not (await enforcer.check_and_maybe_consume(subscriber)).admitted

        clock.now = datetime(2026, 4, 1, tzinfo=timezone.utc)
        decision = await enforcer.check_and_maybe_consume(subscriber)
        assert decision.admitted
        assert decision.consumed == 1
        record = await store.get("u1")
        assert record.last_reset == datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert record.next_reset == datetime(2026, 5, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_no_reset_before_boundary(self, enforcer, store, clock):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 10)
        clock.now = datetime(2026, 3, 31, 23, 59, tzinfo=timezone.utc)
        assert not (await enforcer.check_and_maybe_consume(subscriber)).admitted

    @pytest.mark.asyncio
    async def test_concurrent_rollover_resets_once(self, enforcer, store, clock):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await seed(store, subscriber, 100)
        clock.now = datetime(2026, 4, 2, tzinfo=timezone.utc)
        decisions = await asyncio.gather(
            *[enforcer.check_and_maybe_consume(subscriber) for _ in range(5)]
        )
        assert all(d.admitted for d in decisions)
        assert (await store.get("u1")).calls_consumed == 5


# ===========================================================================
# Failure handling
# ===========================================================================

class TestFailures:
    """Fail-closed behaviour and corrupted records."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [UpstreamUnavailable("down"), ConnectionResetError("reset"), asyncio.TimeoutError()],
    )
    async def test_store_outage_denies(self, config, clock, error):
        store = AsyncMock()
        store.get.side_effect = error
        enforcer = QuotaEnforcer(store, config=config, clock=clock)
        decision = await enforcer.check_and_maybe_consume(Subscriber(id="u1", tenant_id="acme"))
        assert isinstance(decision, Denied)
        assert decision.reason == "upstream_unavailable"
        store.increment_if_below.assert_not_called()

    @pytest.mark.asyncio
    async def test_outage_raises_upstream_via_consume_or_raise(self, config, clock):
        store = AsyncMock()
        store.get.side_effect = UpstreamUnavailable("down")
        enforcer = QuotaEnforcer(store, config=config, clock=clock)
        with pytest.raises(UpstreamUnavailable):
            await enforcer.consume_or_raise(Subscriber(id="u1", tenant_id="acme"))

    @pytest.mark.asyncio
    async def test_unknown_record_tier_is_corruption(self, enforcer, store, caplog):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await seed(store, subscriber, 3, tier_id="platinum")
        with pytest.raises(UsageRecordCorrupted) as exc_info:
            await enforcer.check_and_maybe_consume(subscriber)
        assert exc_info.value.tier_id == "platinum"
        assert exc_info.value.tenant_id == "acme"
        assert "Corrupted usage record" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_subscriber_tier_is_corruption(self, enforcer):
        with pytest.raises(UsageRecordCorrupted):
            await enforcer.check_and_maybe_consume(
                Subscriber(id="u1", tenant_id="acme", tier_id="platinum")
            )

    @pytest.mark.asyncio
    async def test_negative_counter_is_corruption(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await seed(store, subscriber, -4)
        with pytest.raises(UsageRecordCorrupted, match="negative counter"):
            await enforcer.check_and_maybe_consume(subscriber)

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_change_decision(self, enforcer, store):
        store.record_event = AsyncMock(side_effect=UpstreamUnavailable("events down"))
        decision = await enforcer.check_and_maybe_consume(
            Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        )
        assert decision.admitted
        assert (await store.get("u1")).calls_consumed == 1

    @pytest.mark.asyncio
    async def test_record_vanishing_before_increment_is_corruption(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await seed(store, subscriber, 3)
        store.increment_if_below = AsyncMock(side_effect=LookupError("u1"))
        with pytest.raises(UsageRecordCorrupted, match="vanished"):
            await enforcer.check_and_maybe_consume(subscriber)


# ===========================================================================
# Warnings and reports
# ===========================================================================

class TestWarningsAndReports:
    """Threshold warnings and usage reports."""

    @pytest.mark.asyncio
    async def test_warning_once_per_period(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 7)
        for _ in range(3):
            await enforcer.check_and_maybe_consume(subscriber)
        warnings = enforcer.get_warnings(subscriber_id="u1")
        assert len(warnings) == 1
        assert warnings[0].consumed == 8
        assert warnings[0].usage_percent == 80.0

    @pytest.mark.asyncio
    async def test_warning_again_next_period(self, enforcer, store, clock):
        """Crossing the threshold in a new period warns again; one dedupe entry per subscriber."""
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="free")
        await seed(store, subscriber, 7)
        await enforcer.check_and_maybe_consume(subscriber)

        for month in (4, 5):
            clock.now = datetime(2026, month, 2, tzinfo=timezone.utc)
            for _ in range(9):
                await enforcer.check_and_maybe_consume(subscriber)

        assert len(enforcer.get_warnings(subscriber_id="u1")) == 3
        assert len(enforcer._warned) == 1

    @pytest.mark.asyncio
    async def test_no_warning_below_threshold(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await enforcer.check_and_maybe_consume(subscriber)
        assert enforcer.get_warnings() == []

    @pytest.mark.asyncio
    async def test_warning_filters_and_clear(self, enforcer, store, clock):
        for tenant in ("acme", "globex"):
            subscriber = Subscriber(id=f"{tenant}-u", tenant_id=tenant, tier_id="free")
            await seed(store, subscriber, 8)
            await enforcer.check_and_maybe_consume(subscriber)
        assert len(enforcer.get_warnings(tenant_id="acme")) == 1
        assert enforcer.get_warnings(since=NOW + timedelta(hours=1)) == []
        assert enforcer.clear_warnings(tenant_id="acme") == 1
        assert enforcer.clear_warnings() == 1

    @pytest.mark.asyncio
    async def test_usage_report(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await seed(store, subscriber, 85)
        report = await enforcer.get_usage_report(subscriber)
        assert report["consumed"] == 85
        assert report["limit"] == 100
        assert report["remaining"] == 15
        assert report["percent"] == 85.0
        assert report["display"] == "85 / 100"
        assert report["state"] == "within_limit"
        assert report["next_reset"] == "2026-04-01T00:00:00+00:00"
        assert report["upgrade_recommendation"] == "growth"

    @pytest.mark.asyncio
    async def test_usage_report_does_not_consume(self, enforcer, store):
        subscriber = Subscriber(id="u1", tenant_id="acme", tier_id="starter")
        await enforcer.get_usage_report(subscriber)
        assert (await store.get("u1")).calls_consumed == 0

    @pytest.mark.asyncio
    async def test_privileged_report(self, enforcer):
        admin = Subscriber(id="admin", tenant_id="acme", role="super_admin")
        report = await enforcer.get_usage_report(admin)
        assert report["privileged"] is True
        assert report["limit"] == UNLIMITED
        assert report["display"] == "0 / Unlimited"


# ===========================================================================
# End-to-end
# ===========================================================================

class TestAcmeScenario:
    """Tenant acme onboards a starter subscriber and exhausts the quota."""

    @pytest.mark.asyncio
    async def test_starter_quota_exhaustion_and_reset(self, enforcer, store, clock):
        subscriber = Subscriber(id="pat", tenant_id="acme", role="user", tier_id="starter")

        for i in range(100):
            decision = await enforcer.check_and_maybe_consume(subscriber, "ai_assistant")
            assert decision.admitted, f"action {i + 1} should be admitted"

        denied = await enforcer.check_and_maybe_consume(subscriber, "ai_assistant")
        assert isinstance(denied, Denied)
        assert denied.reason == "quota_exceeded"
        assert denied.limit == 100
        assert denied.consumed == 100

        clock.now = datetime(2026, 4, 1, 0, 0, tzinfo=timezone.utc)
        restored = await enforcer.check_and_maybe_consume(subscriber, "ai_assistant")
        assert isinstance(restored, Admitted)
        assert restored.consumed == 1
