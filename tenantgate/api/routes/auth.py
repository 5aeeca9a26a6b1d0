"""Tenant-scoped authentication endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tenantgate.api.deps import get_access_token, get_auth_service
from tenantgate.multitenancy.auth import AuthResult, TenantAuthService

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class MagicLinkPayload(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class SignUpPayload(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    full_name: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


def _unwrap(result: AuthResult) -> Any:
    if result.error is not None:
        raise result.error
    return result.data


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/magic-link")
async def send_magic_link(
    payload: MagicLinkPayload,
    auth: TenantAuthService = Depends(get_auth_service),
) -> dict:
    """Email a sign-in link to an existing subscriber of this tenant."""
    _unwrap(await auth.sign_in_with_link(payload.email))
    return {"sent": True, "tenant_id": auth.tenant_id}


@router.post("/signup")
async def sign_up(
    payload: SignUpPayload,
    auth: TenantAuthService = Depends(get_auth_service),
) -> dict:
    metadata = {**payload.metadata, "full_name": payload.full_name}
    _unwrap(await auth.sign_up_with_link(payload.email, metadata))
    return {"sent": True, "tenant_id": auth.tenant_id}


@router.get("/oauth/{provider}")
async def oauth_url(
    provider: str,
    auth: TenantAuthService = Depends(get_auth_service),
) -> dict:
    """Return the provider URL to redirect the browser to."""
    data = _unwrap(await auth.sign_in_with_oauth(provider))
    return {"provider": provider, "url": data.url}


@router.get("/session")
async def current_session(
    auth: TenantAuthService = Depends(get_auth_service),
    access_token: str | None = Depends(get_access_token),
) -> dict:
    """Who the bearer token belongs to; 401 for a rejected or foreign token."""
    if not access_token:
        return {"authenticated": False, "tenant_id": auth.tenant_id}
    user = _unwrap(await auth.get_user(access_token))
    return {
        "authenticated": True,
        "tenant_id": auth.tenant_id,
        "user_id": user.id,
        "email": user.email,
    }


@router.post("/logout")
async def logout(
    auth: TenantAuthService = Depends(get_auth_service),
    access_token: str | None = Depends(get_access_token),
) -> dict:
    if access_token:
        _unwrap(await auth.sign_out(access_token))
    return {"signed_out": True}
