"""Tests for tenantgate.multitenancy.context - request-scoped tenant context."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tenantgate.config.settings import Settings
from tenantgate.multitenancy.context import (
    TenantContext,
    TenantContextData,
    TenantMiddleware,
    _current_tenant,
    get_context_data,
    get_current_tenant,
    require_tenant,
    run_with_tenant_async,
    set_current_tenant,
    tenant_required,
)
from tenantgate.multitenancy.errors import ConfigurationError
from tenantgate.multitenancy.tenant import IsolationLevel


# ===========================================================================
# TenantContext
# ===========================================================================

class TestTenantContext:
    """Tests for the TenantContext context manager."""

    def test_no_tenant_by_default(self):
        assert get_current_tenant() is None
        assert get_context_data() is None

    def test_sync_context(self):
        with TenantContext("acme", "acme.example") as ctx:
            assert get_current_tenant() == "acme"
            assert get_context_data() is ctx.data
        assert get_current_tenant() is None

    @pytest.mark.asyncio
    async def test_async_context(self):
        async with TenantContext("acme", "acme.example", "schema"):
            data = get_context_data()
            assert data.tenant_domain == "acme.example"
            assert data.isolation_level is IsolationLevel.SCHEMA
        assert get_current_tenant() is None

    def test_nested_contexts_restore_outer(self):
        with TenantContext("acme"):
            with TenantContext("globex"):
                assert get_current_tenant() == "globex"
            assert get_current_tenant() == "acme"

    def test_context_restored_on_exception(self):
        with pytest.raises(KeyError):
            with TenantContext("acme"):
                raise KeyError("boom")
        assert get_current_tenant() is None

    def test_invalid_isolation_level(self):
        with pytest.raises(ConfigurationError):
            TenantContext("acme", isolation_level="quantum")

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_context(self):
        seen = {}

        async def worker(tenant_id: str):
            async with TenantContext(tenant_id):
                await asyncio.sleep(0.01)
                seen[tenant_id] = get_current_tenant()

        await asyncio.gather(worker("acme"), worker("globex"))
        assert seen == {"acme": "acme", "globex": "globex"}

    def test_set_current_tenant_token(self):
        token = set_current_tenant("acme")
        try:
            assert get_context_data().tenant_id == "acme"
        finally:
            _current_tenant.reset(token)

    def test_context_data_to_dict(self):
        data = TenantContextData(tenant_id="acme", tenant_domain="acme.example")
        assert data.to_dict()["isolation_level"] == "rls"


# ===========================================================================
# require_tenant / tenant_required
# ===========================================================================

class TestRequireTenant:
    def test_require_outside_context(self):
        with pytest.raises(RuntimeError, match="No tenant set"):
            require_tenant()

    def test_require_inside_context(self):
        with TenantContext("acme"):
            assert require_tenant().tenant_id == "acme"

    def test_decorator_sync(self):
        @tenant_required
        def handler():
            return get_current_tenant()

        with pytest.raises(RuntimeError):
            handler()
        with TenantContext("acme"):
            assert handler() == "acme"

    @pytest.mark.asyncio
    async def test_decorator_async(self):
        @tenant_required
        async def handler():
            return get_current_tenant()

        with pytest.raises(RuntimeError):
            await handler()
        async with TenantContext("acme"):
            assert await handler() == "acme"

    @pytest.mark.asyncio
    async def test_run_with_tenant_async(self):
        async def current():
            return get_current_tenant()

        assert await run_with_tenant_async("acme", "acme.example", current()) == "acme"
        assert get_current_tenant() is None


# ===========================================================================
# TenantMiddleware
# ===========================================================================

@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(TenantMiddleware)

    @app.get("/whoami")
    async def whoami():
        data = get_context_data()
        return data.to_dict() if data else {"tenant_id": None}

    return app


class TestTenantMiddleware:
    """Tests for header-driven tenant context."""

    @pytest.mark.asyncio
    async def test_headers_set_context(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get(
                "/whoami",
                headers={
                    "X-Tenant-ID": "acme",
                    "X-Tenant-Domain": "Acme.Example",
                    "X-Isolation-Level": "database",
                    "X-Request-ID": "req-1",
                },
            )
        body = response.json()
        assert body["tenant_id"] == "acme"
        assert body["tenant_domain"] == "acme.example"
        assert body["isolation_level"] == "database"
        assert body["request_id"] == "req-1"

    @pytest.mark.asyncio
    async def test_domain_falls_back_to_host(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://acme.example:8080") as client:
            response = await client.get("/whoami", headers={"X-Tenant-ID": "acme"})
        assert response.json()["tenant_domain"] == "acme.example"
        assert response.json()["isolation_level"] == "rls"

    @pytest.mark.asyncio
    async def test_no_tenant_header_passes_through(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/whoami")
        assert response.status_code == 200
        assert response.json() == {"tenant_id": None}

    @pytest.mark.asyncio
    async def test_invalid_isolation_level_rejected(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get(
                "/whoami", headers={"X-Tenant-ID": "acme", "X-Isolation-Level": "bogus"}
            )
        assert response.status_code == 400
        assert "Unsupported isolation level" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_missing_isolation_header_uses_configured_default(self, app):
        """Without X-Isolation-Level the deployment's DEFAULT_ISOLATION_LEVEL applies."""
        with patch("tenantgate.multitenancy.context.settings", Settings(DEFAULT_ISOLATION_LEVEL="schema")):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.get("/whoami", headers={"X-Tenant-ID": "acme"})
        assert response.status_code == 200
        assert response.json()["isolation_level"] == "schema"
