"""
Persistence for per-subscriber usage counters.

The quota enforcer talks to a ``UsageStore``. Two implementations ship:

    - InMemoryUsageStore: process-local, for tests and single-worker setups.
    - SupabaseUsageStore: ``usage_records`` / ``usage_events`` tables through
      a tenant's Supabase client. Increments go through the
      ``consume_usage_quota`` Postgres function so the check and the
      increment are one statement.

Both guarantee that ``increment_if_below`` never moves a counter past its
limit, however many callers race.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar, runtime_checkable

import httpx
from supabase import PostgrestAPIError

from tenantgate.config.settings import settings
from tenantgate.multitenancy.errors import OperationTimeout, UpstreamUnavailable
from tenantgate.multitenancy.usage import as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

USAGE_RECORDS_TABLE = "usage_records"
USAGE_EVENTS_TABLE = "usage_events"
CONSUME_FUNCTION = "consume_usage_quota"


@dataclass
class UsageRecord:
    """Monthly usage counter for one subscriber.

    Attributes:
        subscriber_id: The subscriber.
        tenant_id: The subscriber's tenant.
        tier_id: Tier the record was opened under.
        calls_consumed: Metered calls this period.
        last_reset: Start of the current period.
        next_reset: When the period ends.
        reset_day: Day-of-month anchor for resets.
    """

    subscriber_id: str
    tenant_id: str
    tier_id: str
    last_reset: datetime
    next_reset: datetime
    calls_consumed: int = 0
    reset_day: int = 1

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UsageRecord":
        return cls(
            subscriber_id=row["subscriber_id"],
            tenant_id=row["tenant_id"],
            tier_id=row["tier_id"],
            calls_consumed=int(row["calls_consumed"]),
            last_reset=as_utc(row["last_reset"]),
            next_reset=as_utc(row["next_reset"]),
            reset_day=int(row.get("reset_day") or 1),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "tenant_id": self.tenant_id,
            "tier_id": self.tier_id,
            "calls_consumed": self.calls_consumed,
            "last_reset": self.last_reset.isoformat(),
            "next_reset": self.next_reset.isoformat(),
            "reset_day": self.reset_day,
        }


@dataclass
class UsageEvent:
    """Audit row for a metered action, admitted or not."""

    subscriber_id: str
    tenant_id: str
    action: str
    accounted_cost: int
    admitted: bool
    role: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "tenant_id": self.tenant_id,
            "action": self.action,
            "accounted_cost": self.accounted_cost,
            "admitted": self.admitted,
            "role": self.role,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class IncrementResult:
    """Outcome of a conditional increment.

    Attributes:
        applied: Whether the counter was incremented.
        calls_consumed: Counter value after the attempt.
    """

    applied: bool
    calls_consumed: int


@runtime_checkable
class UsageStore(Protocol):
    """Storage operations the quota enforcer relies on."""

    async def get(self, subscriber_id: str) -> UsageRecord | None: ...

    async def create(self, record: UsageRecord) -> UsageRecord:
        """Insert a record unless one exists; returns the stored record."""
        ...

    async def reset(
        self,
        subscriber_id: str,
        expected_last_reset: datetime,
        last_reset: datetime,
        next_reset: datetime,
    ) -> bool:
        """Zero the counter if ``last_reset`` still equals ``expected_last_reset``."""
        ...

    async def increment_if_below(self, subscriber_id: str, limit: int | None) -> IncrementResult:
        """Atomically add one call unless the counter has reached ``limit``.

        ``None`` means no limit.
        """
        ...

    async def record_event(self, event: UsageEvent) -> None: ...


class InMemoryUsageStore:
    """Usage store held in process memory.

    Each subscriber has its own asyncio lock, so reads and writes for one
    subscriber are serialised while different subscribers proceed
    independently.
    """

    def __init__(self):
        self._records: dict[str, UsageRecord] = {}
        self._events: list[UsageEvent] = []
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, subscriber_id: str) -> asyncio.Lock:
        if subscriber_id not in self._locks:
            self._locks[subscriber_id] = asyncio.Lock()
        return self._locks[subscriber_id]

    async def get(self, subscriber_id: str) -> UsageRecord | None:
        async with self._get_lock(subscriber_id):
            record = self._records.get(subscriber_id)
            return replace(record) if record else None

    async def create(self, record: UsageRecord) -> UsageRecord:
        async with self._get_lock(record.subscriber_id):
            existing = self._records.get(record.subscriber_id)
            if existing is None:
                existing = replace(record)
                self._records[record.subscriber_id] = existing
                logger.debug(f"Created usage record for {record.subscriber_id}")
            return replace(existing)

    async def put(self, record: UsageRecord) -> None:
        """Overwrite a record unconditionally (seeding and tests)."""
        async with self._get_lock(record.subscriber_id):
            self._records[record.subscriber_id] = replace(record)

    async def reset(
        self,
        subscriber_id: str,
        expected_last_reset: datetime,
        last_reset: datetime,
        next_reset: datetime,
    ) -> bool:
        async with self._get_lock(subscriber_id):
            record = self._records.get(subscriber_id)
            if record is None or record.last_reset != expected_last_reset:
                return False
            record.calls_consumed = 0
            record.last_reset = last_reset
            record.next_reset = next_reset
            return True

    async def increment_if_below(self, subscriber_id: str, limit: int | None) -> IncrementResult:
        async with self._get_lock(subscriber_id):
            record = self._records.get(subscriber_id)
            if record is None:
                raise LookupError(f"No usage record for subscriber {subscriber_id}")
            if limit is not None and record.calls_consumed >= limit:
                return IncrementResult(applied=False, calls_consumed=record.calls_consumed)
            record.calls_consumed += 1
            return IncrementResult(applied=True, calls_consumed=record.calls_consumed)

    async def record_event(self, event: UsageEvent) -> None:
        self._events.append(event)

    def events(self, subscriber_id: str | None = None) -> list[UsageEvent]:
        if subscriber_id is None:
            return list(self._events)
        return [e for e in self._events if e.subscriber_id == subscriber_id]

    def __repr__(self) -> str:
        return f"<InMemoryUsageStore records={len(self._records)} events={len(self._events)}>"


class SupabaseUsageStore:
    """Usage store backed by a tenant's Supabase project.

    All queries are filtered by the store's tenant id in addition to the
    row-level security policies on the tables.

    Args:
        client: A tenant-scoped Supabase client.
        tenant_id: The tenant whose records this store reads and writes.
        timeout: Per-call timeout in seconds.
    """

    def __init__(self, client: Any, tenant_id: str, timeout: float | None = None):
        self._client = client
        self.tenant_id = tenant_id
        self.timeout = settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout

    async def _execute(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), self.timeout)
        except asyncio.TimeoutError:
            raise OperationTimeout(operation, self.timeout) from None
        except PostgrestAPIError as e:
            raise UpstreamUnavailable(f"{operation} failed: {e.message or e.code}") from e
        except (httpx.TransportError, OSError) as e:
            raise UpstreamUnavailable(f"{operation} failed: {type(e).__name__}") from e

    def _records(self):
        return self._client.table(USAGE_RECORDS_TABLE)

    async def get(self, subscriber_id: str) -> UsageRecord | None:
        response = await self._execute(
            "usage_get",
            lambda: self._records()
            .select("*")
            .eq("subscriber_id", subscriber_id)
            .eq("tenant_id", self.tenant_id)
            .limit(1)
            .execute(),
        )
        return UsageRecord.from_row(response.data[0]) if response.data else None

    async def create(self, record: UsageRecord) -> UsageRecord:
        row = {**record.to_dict(), "tenant_id": self.tenant_id}
        await self._execute(
            "usage_create",
            lambda: self._records()
            .upsert(row, on_conflict="subscriber_id", ignore_duplicates=True)
            .execute(),
        )
        stored = await self.get(record.subscriber_id)
        return stored or record

    async def reset(
        self,
        subscriber_id: str,
        expected_last_reset: datetime,
        last_reset: datetime,
        next_reset: datetime,
    ) -> bool:
        changes = {
            "calls_consumed": 0,
            "last_reset": last_reset.isoformat(),
            "next_reset": next_reset.isoformat(),
        }
        response = await self._execute(
            "usage_reset",
            lambda: self._records()
            .update(changes)
            .eq("subscriber_id", subscriber_id)
            .eq("tenant_id", self.tenant_id)
            .eq("last_reset", expected_last_reset.isoformat())
            .execute(),
        )
        return bool(response.data)

    async def increment_if_below(self, subscriber_id: str, limit: int | None) -> IncrementResult:
        params = {
            "p_subscriber_id": subscriber_id,
            "p_tenant_id": self.tenant_id,
            "p_limit": limit,
        }
        response = await self._execute(
            "usage_increment", lambda: self._client.rpc(CONSUME_FUNCTION, params).execute()
        )
        rows = response.data
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise LookupError(f"No usage record for subscriber {subscriber_id}")
        return IncrementResult(
            applied=bool(rows[0]["applied"]),
            calls_consumed=int(rows[0]["calls_consumed"]),
        )

    async def record_event(self, event: UsageEvent) -> None:
        row = {**event.to_dict(), "tenant_id": self.tenant_id}
        await self._execute(
            "usage_event",
            lambda: self._client.table(USAGE_EVENTS_TABLE).insert(row).execute(),
        )
