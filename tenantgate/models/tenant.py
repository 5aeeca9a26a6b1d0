"""Tenant governance SQLAlchemy models.

- **TenantRecord**: onboarded tenant with its domain and isolation level.
- **Profile**: subscriber profile, always scoped by ``tenant_id``.
- **UsageRecordRow**: monthly usage counter per subscriber.
- **UsageEventRow**: append-only audit of metered actions.

Every tenant-scoped table carries a ``tenant_id`` column and is protected
by a row-level security policy keyed on the ``X-Tenant-ID`` request
header (see ``migrations/versions/001_tenant_governance.py``).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    String,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from tenantgate.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# Mixin
# ---------------------------------------------------------------------------


class TenantScopedMixin:
    """Column mixin that adds an indexed ``tenant_id``."""

    tenant_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------


class TenantRecord(Base):
    """An onboarded tenant.

    Attributes
    ----------
    id:               Tenant identifier (e.g. ``acme``).
    domain:           Public hostname, unique.
    isolation_level:  One of ``database``, ``schema``, ``rls``.
    site_url:         ``https://<domain>``.
    redirect_urls:    Allowed post-login redirects.
    created_at:       UTC creation timestamp.
    """

    __tablename__ = "tenants"
    __table_args__ = (
        CheckConstraint(
            "isolation_level IN ('database', 'schema', 'rls')",
            name="ck_tenants_isolation_level",
        ),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    domain: Mapped[str] = mapped_column(String(253), nullable=False, unique=True)
    isolation_level: Mapped[str] = mapped_column(String(16), nullable=False, default="rls")
    site_url: Mapped[str] = mapped_column(String(512), nullable=False)
    redirect_urls: Mapped[list[str]] = mapped_column(ARRAY(String(512)), nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class Profile(Base, TenantScopedMixin):
    """Subscriber profile. ``id`` matches the Supabase auth user id."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_domain: Mapped[str | None] = mapped_column(String(253), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    tier_id: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


class UsageRecordRow(Base, TenantScopedMixin):
    """Monthly usage counter for one subscriber."""

    __tablename__ = "usage_records"
    __table_args__ = (
        CheckConstraint("calls_consumed >= 0", name="ck_usage_records_calls_non_negative"),
        CheckConstraint("reset_day BETWEEN 1 AND 31", name="ck_usage_records_reset_day"),
    )

    subscriber_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tier_id: Mapped[str] = mapped_column(String(32), nullable=False)
    calls_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_day: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    last_reset: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_reset: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class UsageEventRow(Base, TenantScopedMixin):
    """Audit row for a metered action."""

    __tablename__ = "usage_events"
    __table_args__ = (
        Index("ix_usage_events_subscriber_occurred", "subscriber_id", "occurred_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=_uuid)
    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    accounted_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    admitted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
