"""Tenant governance schema: tenants, profiles, usage counters, RLS.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TENANT_SCOPED_TABLES = ("profiles", "usage_records", "usage_events")

# Tenant of the current request: the X-Tenant-ID header PostgREST exposes
# as request.headers, or app.current_tenant for direct connections.
CURRENT_TENANT_FUNCTION = """
CREATE OR REPLACE FUNCTION current_tenant_id() RETURNS text
LANGUAGE sql STABLE AS $$
    SELECT COALESCE(
        NULLIF(current_setting('request.headers', true), '')::json ->> 'x-tenant-id',
        NULLIF(current_setting('app.current_tenant', true), '')
    )
$$;
"""

# Check and increment in one statement so concurrent callers can never
# push calls_consumed past p_limit. A NULL limit means unlimited.
CONSUME_FUNCTION = """
CREATE OR REPLACE FUNCTION consume_usage_quota(
    p_subscriber_id text,
    p_tenant_id text,
    p_limit integer
) RETURNS TABLE (applied boolean, calls_consumed integer)
LANGUAGE plpgsql AS $$
#variable_conflict use_column
DECLARE
    v_consumed integer;
BEGIN
    UPDATE usage_records AS r
       SET calls_consumed = r.calls_consumed + 1,
           updated_at = now()
     WHERE r.subscriber_id = p_subscriber_id
       AND r.tenant_id = p_tenant_id
       AND (p_limit IS NULL OR r.calls_consumed < p_limit)
    RETURNING r.calls_consumed INTO v_consumed;

    IF FOUND THEN
        RETURN QUERY SELECT true, v_consumed;
        RETURN;
    END IF;

    RETURN QUERY
        SELECT false, r.calls_consumed
          FROM usage_records AS r
         WHERE r.subscriber_id = p_subscriber_id
           AND r.tenant_id = p_tenant_id;
END;
$$;
"""


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("domain", sa.String(253), nullable=False, unique=True),
        sa.Column("isolation_level", sa.String(16), nullable=False, server_default="rls"),
        sa.Column("site_url", sa.String(512), nullable=False),
        sa.Column("redirect_urls", ARRAY(sa.String(512)), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "isolation_level IN ('database', 'schema', 'rls')",
            name="ck_tenants_isolation_level",
        ),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(128), nullable=False),
        sa.Column("tenant_domain", sa.String(253), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("full_name", sa.String(256), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="user"),
        sa.Column("tier_id", sa.String(32), nullable=False, server_default="free"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_tenant_id", "profiles", ["tenant_id"])

    op.create_table(
        "usage_records",
        sa.Column("subscriber_id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(128), nullable=False),
        sa.Column("tier_id", sa.String(32), nullable=False),
        sa.Column("calls_consumed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reset_day", sa.SmallInteger, nullable=False, server_default="1"),
        sa.Column("last_reset", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_reset", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("calls_consumed >= 0", name="ck_usage_records_calls_non_negative"),
        sa.CheckConstraint("reset_day BETWEEN 1 AND 31", name="ck_usage_records_reset_day"),
    )
    op.create_index("ix_usage_records_tenant_id", "usage_records", ["tenant_id"])

    op.create_table(
        "usage_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", sa.String(128), nullable=False),
        sa.Column("subscriber_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("accounted_cost", sa.Integer, nullable=False, server_default="1"),
        sa.Column("admitted", sa.Boolean, nullable=False),
        sa.Column("role", sa.String(32), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_usage_events_tenant_id", "usage_events", ["tenant_id"])
    op.create_index(
        "ix_usage_events_subscriber_occurred", "usage_events", ["subscriber_id", "occurred_at"]
    )

    op.execute(CURRENT_TENANT_FUNCTION)
    for table in TENANT_SCOPED_TABLES:
        op.execute(f'ALTER TABLE "{table}" ENABLE ROW LEVEL SECURITY')
        op.execute(f'ALTER TABLE "{table}" FORCE ROW LEVEL SECURITY')
        op.execute(
            f"""
            CREATE POLICY tenant_isolation_{table} ON "{table}"
            FOR ALL
            USING (tenant_id = current_tenant_id())
            WITH CHECK (tenant_id = current_tenant_id())
            """
        )

    op.execute(CONSUME_FUNCTION)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS consume_usage_quota(text, text, integer)")
    for table in TENANT_SCOPED_TABLES:
        op.execute(f'DROP POLICY IF EXISTS tenant_isolation_{table} ON "{table}"')
    op.execute("DROP FUNCTION IF EXISTS current_tenant_id()")

    op.drop_index("ix_usage_events_subscriber_occurred", table_name="usage_events")
    op.drop_index("ix_usage_events_tenant_id", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_index("ix_usage_records_tenant_id", table_name="usage_records")
    op.drop_table("usage_records")
    op.drop_index("ix_profiles_tenant_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("tenants")
