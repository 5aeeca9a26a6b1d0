"""Health check endpoint."""

from fastapi import APIRouter

from tenantgate import __version__
from tenantgate.config.settings import settings
from tenantgate.multitenancy.registry import get_registry

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "supabase_configured": bool(settings.SUPABASE_URL and settings.SUPABASE_ANON_KEY),
        "default_isolation_level": settings.DEFAULT_ISOLATION_LEVEL,
        "cached_clients": len(get_registry()),
    }
