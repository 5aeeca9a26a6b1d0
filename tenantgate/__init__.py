"""tenantgate -- tenant isolation and usage-quota governance for Supabase-backed apps."""

__version__ = "0.1.0"
