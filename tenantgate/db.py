"""SQLAlchemy declarative base for the tenantgate schema.

Runtime reads and writes go through Supabase (PostgREST); the ORM models
describe the same tables for migrations and for tooling that talks to
Postgres directly.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
