"""tenantgate configuration via environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Supabase (shared defaults; per-tenant overrides live in TENANT_<ID>_* vars) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # --- Tenancy ---
    DEFAULT_ISOLATION_LEVEL: Literal["database", "schema", "rls"] = "rls"
    CLIENT_CACHE_MAX: int = 0
    CLIENT_CACHE_TTL_SECONDS: float = 0.0

    # --- Quotas ---
    PRIVILEGED_ROLE: str = "super_admin"
    USAGE_RESET_DAY: int = 1
    USAGE_WARNING_THRESHOLD: int = 80

    # --- Timeouts (seconds) ---
    AUTH_TIMEOUT_SECONDS: float = 10.0
    STORE_TIMEOUT_SECONDS: float = 5.0

    # --- Observability ---
    LOG_LEVEL: str = "INFO"

    # --- CORS ---
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("SUPABASE_URL", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    @field_validator("USAGE_RESET_DAY")
    @classmethod
    def _check_reset_day(cls, v: int) -> int:
        if not 1 <= v <= 31:
            raise ValueError("USAGE_RESET_DAY must be between 1 and 31")
        return v

    @field_validator("USAGE_WARNING_THRESHOLD")
    @classmethod
    def _check_threshold(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("USAGE_WARNING_THRESHOLD must be a percentage (1-100)")
        return v

    @field_validator("CLIENT_CACHE_MAX")
    @classmethod
    def _non_negative_cache(cls, v: int) -> int:
        if v < 0:
            raise ValueError("CLIENT_CACHE_MAX cannot be negative (0 disables the cap)")
        return v


settings = Settings()
