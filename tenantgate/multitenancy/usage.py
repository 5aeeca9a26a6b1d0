"""
Monthly usage period arithmetic.

Pure functions: no I/O and no state. Every function takes an optional
``now`` so callers (and tests) can pin the clock; when omitted the current
UTC time is used. All returned datetimes are timezone-aware UTC and
boundaries fall at 00:00 UTC on the reset day.

A reset day past the end of a month (e.g. 31 in April) is clamped to that
month's last day.

Example:
    from tenantgate.multitenancy.usage import next_reset_date, should_reset

    next_reset_date(1)                         # 1st of next month
    should_reset(record.last_reset, reset_day=1)
"""

from __future__ import annotations

import calendar
import math
from datetime import datetime, timezone

_SECONDS_PER_DAY = 24 * 60 * 60


def _validate_reset_day(reset_day: int) -> None:
    if not 1 <= reset_day <= 31:
        raise ValueError(f"reset_day must be between 1 and 31, got {reset_day}")


def as_utc(value: datetime | str) -> datetime:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now(now: datetime | None) -> datetime:
    return datetime.now(timezone.utc) if now is None else as_utc(now)


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def reset_boundary(year: int, month: int, reset_day: int) -> datetime:
    """The reset instant for a given month, with the day clamped to month length."""
    _validate_reset_day(reset_day)
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(reset_day, last_day), tzinfo=timezone.utc)


def next_reset_date(reset_day: int, now: datetime | None = None) -> datetime:
    """The next date on which monthly counters roll over.

    If today is on or after this month's reset day, the next reset is in
    the following month; otherwise it is later this month. Rollover is
    boundary-inclusive: asking on the reset day itself yields next month.

    Args:
        reset_day: Day-of-month anchor (1-31).
        now: Reference time, defaults to the current UTC time.

    Returns:
        The next reset instant (00:00 UTC).
    """
    now = _now(now)
    candidate = reset_boundary(now.year, now.month, reset_day)
    if now.date() >= candidate.date():
        year, month = _add_months(now.year, now.month, 1)
        candidate = reset_boundary(year, month, reset_day)
    return candidate


def current_period_start(reset_day: int, now: datetime | None = None) -> datetime:
    """The most recent reset instant at or before ``now``."""
    now = _now(now)
    candidate = reset_boundary(now.year, now.month, reset_day)
    if candidate > now:
        year, month = _add_months(now.year, now.month, -1)
        candidate = reset_boundary(year, month, reset_day)
    return candidate


def days_until_reset(reset_day: int, now: datetime | None = None) -> int:
    """Whole days until the next reset, rounded up."""
    now = _now(now)
    remaining = next_reset_date(reset_day, now) - now
    return math.ceil(remaining.total_seconds() / _SECONDS_PER_DAY)


def should_reset(
    last_reset: datetime | str,
    reset_day: int,
    now: datetime | None = None,
) -> bool:
    """Whether the period that began at ``last_reset`` has ended.

    The period ends at ``reset_day`` (00:00 UTC) of the month after the
    month of ``last_reset``.

    Args:
        last_reset: When counters were last reset.
        reset_day: Day-of-month anchor (1-31).
        now: Reference time, defaults to the current UTC time.

    Returns:
        True if ``now`` is at or past the end of that period.
    """
    last = as_utc(last_reset)
    year, month = _add_months(last.year, last.month, 1)
    return _now(now) >= reset_boundary(year, month, reset_day)
