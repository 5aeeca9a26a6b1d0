"""Tests for the tenantgate CLI.

Tests cover:
- Main app commands (--help, --version)
- Tier commands (list, show)
- Tenant commands (config, check-auth)
- Usage commands (reset-date)
- Doctor commands (run, tenant)
"""

from __future__ import annotations

import io
import json
import os
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from tenantgate import __version__
from tenantgate.cli import app
from tenantgate.cli.output import print_json
from tenantgate.config.settings import Settings
from tenantgate.multitenancy.errors import ConfigurationError


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def runner() -> CliRunner:
    """Create a CliRunner for testing."""
    return CliRunner()


@pytest.fixture
def configured() -> Settings:
    """Settings with shared Supabase credentials filled in."""
    return Settings(
        SUPABASE_URL="https://shared.supabase.co",
        SUPABASE_ANON_KEY="anon-key-value",
        SUPABASE_SERVICE_KEY="service-key-value",
    )


@pytest.fixture
def unconfigured() -> Settings:
    return Settings(SUPABASE_URL="", SUPABASE_ANON_KEY="", SUPABASE_SERVICE_KEY="")


# ===========================================================================
# Main app
# ===========================================================================


class TestMainApp:
    """Tests for the top-level app."""

    def test_help(self, runner):
        """--help lists every command group."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("tiers", "tenant", "usage", "doctor", "serve"):
            assert group in result.output

    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"tenantgate version {__version__}" in result.output

    def test_serve_runs_uvicorn(self, runner):
        """serve hands the app import string to uvicorn."""
        with patch("uvicorn.run") as run:
            result = runner.invoke(app, ["serve", "--port", "9000"])
        assert result.exit_code == 0
        run.assert_called_once_with("tenantgate.main:app", host="127.0.0.1", port=9000, reload=False, workers=1)


# ===========================================================================
# Tiers
# ===========================================================================


class TestTierCommands:
    """Tests for tiers list/show."""

    def test_list_table(self, runner):
        result = runner.invoke(app, ["tiers", "list"])
        assert result.exit_code == 0
        assert "Subscription Tiers" in result.output
        assert "starter" in result.output

    def test_list_json(self, runner):
        result = runner.invoke(app, ["tiers", "list", "-o", "json"])
        assert result.exit_code == 0
        assert '"id": "free"' in result.output
        assert '"id": "legacyEnterprise"' in result.output

    def test_show_json(self, runner):
        """show -o json adds the recommended upgrade and the upgrade path."""
        result = runner.invoke(app, ["tiers", "show", "free", "-o", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["id"] == "free"
        assert data["monthly_quota"] == 10
        assert data["recommended_upgrade"] == "starter"
        assert data["upgrade_path"][0] == "starter"

    def test_show_top_tier_has_no_recommendation(self, runner):
        result = runner.invoke(app, ["tiers", "show", "professional", "-o", "json"])
        data = json.loads(result.output)
        assert data["recommended_upgrade"] is None

    def test_show_table(self, runner):
        result = runner.invoke(app, ["tiers", "show", "growth"])
        assert result.exit_code == 0
        assert "Monthly quota" in result.output
        assert "Recommended upgrade" in result.output

    def test_show_unknown_tier(self, runner):
        result = runner.invoke(app, ["tiers", "show", "platinum"])
        assert result.exit_code == 1
        assert "Unknown tier: platinum" in result.output


# ===========================================================================
# Tenant
# ===========================================================================


class TestTenantCommands:
    """Tests for tenant config/check-auth."""

    def test_config_masks_keys(self, runner, configured):
        with patch("tenantgate.multitenancy.tenant.default_settings", configured):
            result = runner.invoke(app, ["tenant", "config", "acme", "acme.example", "-o", "json"])
        assert result.exit_code == 0
        assert '"anon_key": "***"' in result.output
        assert "anon-key-value" not in result.output
        assert "service-key-value" not in result.output

    def test_config_schema_level(self, runner, configured):
        with patch("tenantgate.multitenancy.tenant.default_settings", configured):
            result = runner.invoke(
                app, ["tenant", "config", "acme", "acme.example", "-i", "schema", "-o", "json"]
            )
        assert '"schema_name": "tenant_acme"' in result.output

    def test_config_warns_without_url(self, runner, unconfigured):
        with patch("tenantgate.multitenancy.tenant.default_settings", unconfigured):
            result = runner.invoke(app, ["tenant", "config", "acme", "acme.example"])
        assert result.exit_code == 0
        assert "No Supabase URL" in result.output

    def test_config_bad_isolation(self, runner):
        result = runner.invoke(app, ["tenant", "config", "acme", "acme.example", "-i", "cluster"])
        assert result.exit_code == 1
        assert "Unsupported isolation level" in result.output

    def test_check_auth_valid(self, runner):
        result = runner.invoke(
            app,
            [
                "tenant", "check-auth", "acme", "acme.example",
                "-p", "email", "-p", "myspace",
                "-r", "https://acme.example/auth/callback",
                "-r", "https://evil.example/cb",
            ],
        )
        assert result.exit_code == 0
        assert "myspace" in result.output
        assert "evil.example" in result.output
        assert "is valid" in result.output

    def test_check_auth_json(self, runner):
        result = runner.invoke(
            app,
            [
                "tenant", "check-auth", "acme", "acme.example",
                "-p", "google", "-r", "https://acme.example/cb", "-o", "json",
            ],
        )
        data = json.loads(result.output)
        assert data["success"] is True
        assert data["providers"] == ["google"]

    def test_check_auth_no_valid_redirect(self, runner):
        result = runner.invoke(
            app,
            ["tenant", "check-auth", "acme", "acme.example", "-p", "email", "-r", "https://evil.example/cb"],
        )
        assert result.exit_code == 1
        assert "redirect URL" in result.output

    def test_check_auth_no_provider(self, runner):
        result = runner.invoke(
            app, ["tenant", "check-auth", "acme", "acme.example", "-r", "https://acme.example/cb"]
        )
        assert result.exit_code == 1


# ===========================================================================
# Usage
# ===========================================================================


class TestUsageCommands:
    """Tests for usage reset-date."""

    def test_reset_date_json(self, runner):
        result = runner.invoke(app, ["usage", "reset-date", "--at", "2026-03-01T10:00:00Z", "-o", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["reset_day"] == 1
        assert data["period_start"] == "2026-03-01T00:00:00+00:00"
        assert data["next_reset"] == "2026-04-01T00:00:00+00:00"

    def test_reset_date_clamped_day(self, runner):
        """Day 31 resets on the last day of a short month."""
        result = runner.invoke(
            app, ["usage", "reset-date", "-d", "31", "--at", "2026-02-10T00:00:00Z", "-o", "json"]
        )
        data = json.loads(result.output)
        assert data["next_reset"] == "2026-02-28T00:00:00+00:00"

    def test_reset_date_table(self, runner):
        result = runner.invoke(app, ["usage", "reset-date", "--at", "2026-03-01T10:00:00Z"])
        assert result.exit_code == 0
        assert "2026-04-01 00:00 UTC" in result.output
        assert "days" in result.output

    def test_reset_date_invalid_day(self, runner):
        result = runner.invoke(app, ["usage", "reset-date", "-d", "0"])
        assert result.exit_code == 1

    def test_reset_date_invalid_time(self, runner):
        result = runner.invoke(app, ["usage", "reset-date", "--at", "yesterday"])
        assert result.exit_code == 1


# ===========================================================================
# Doctor
# ===========================================================================


class TestDoctorCommands:
    """Tests for doctor run/tenant."""

    def test_run_all_pass(self, runner, configured):
        with patch("tenantgate.cli.doctor.settings", configured):
            result = runner.invoke(app, ["doctor", "run"])
        assert result.exit_code == 0
        assert "All 4 checks passed!" in result.output

    def test_run_missing_credentials(self, runner, unconfigured):
        with patch("tenantgate.cli.doctor.settings", unconfigured):
            result = runner.invoke(app, ["doctor", "run"])
        assert result.exit_code == 1
        assert "Missing SUPABASE_URL" in result.output
        assert "3 passed, 1 failed" in result.output

    def test_run_non_http_url(self, runner):
        settings = Settings(SUPABASE_URL="ftp://shared", SUPABASE_ANON_KEY="anon")
        with patch("tenantgate.cli.doctor.settings", settings):
            result = runner.invoke(app, ["doctor", "run", "-c", "supabase"])
        assert result.exit_code == 1

    def test_run_selected_checks_json(self, runner, configured):
        with patch("tenantgate.cli.doctor.settings", configured):
            result = runner.invoke(app, ["doctor", "run", "-c", "catalog,quotas", "-o", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [r["name"] for r in data["results"]] == ["Tier catalog", "Quotas"]
        assert data["results"][0]["message"] == "6 tiers"

    def test_run_unknown_check(self, runner):
        result = runner.invoke(app, ["doctor", "run", "-c", "bogus"])
        assert result.exit_code == 1
        assert "Unknown check" in result.output

    def test_tenant_rls(self, runner, configured):
        factory = MagicMock()
        with patch("tenantgate.multitenancy.tenant.default_settings", configured), \
                patch("tenantgate.cli.doctor.default_client_factory", factory):
            result = runner.invoke(app, ["doctor", "tenant", "acme", "acme.example"])
        assert result.exit_code == 0
        assert "All 2 checks passed!" in result.output
        url, key, _options = factory.call_args.args
        assert url == "https://shared.supabase.co"
        assert key == "anon-key-value"

    def test_tenant_database_with_dedicated_key(self, runner, configured):
        env = {"TENANT_ACME_SUPABASE_SERVICE_KEY": "tenant-secret-123"}
        with patch.dict(os.environ, env), \
                patch("tenantgate.multitenancy.tenant.default_settings", configured), \
                patch("tenantgate.cli.doctor.default_client_factory", MagicMock()):
            result = runner.invoke(app, ["doctor", "tenant", "acme", "acme.example", "-i", "database"])
        assert result.exit_code == 0
        assert "All 3 checks passed!" in result.output
        assert "tenant-secret-123" not in result.output

    def test_tenant_database_without_dedicated_key(self, runner, configured):
        with patch("tenantgate.multitenancy.tenant.default_settings", configured), \
                patch("tenantgate.cli.doctor.default_client_factory", MagicMock()):
            result = runner.invoke(
                app, ["doctor", "tenant", "nokeytenant", "nokey.example", "-i", "database", "-o", "json"]
            )
        assert result.exit_code == 1
        data = json.loads(result.output)
        credentials = next(r for r in data["results"] if r["name"] == "Credentials")
        assert credentials["passed"] is False

    def test_tenant_client_failure(self, runner, configured):
        factory = MagicMock(side_effect=ConfigurationError("Cannot create Supabase client"))
        with patch("tenantgate.multitenancy.tenant.default_settings", configured), \
                patch("tenantgate.cli.doctor.default_client_factory", factory):
            result = runner.invoke(app, ["doctor", "tenant", "acme", "acme.example"])
        assert result.exit_code == 1
        assert "1 passed, 1 failed" in result.output


# ===========================================================================
# Output helpers
# ===========================================================================


class TestOutputHelpers:
    """Tests for tenantgate.cli.output."""

    @pytest.mark.parametrize("highlight", [True, False])
    def test_print_json_keeps_long_lines_parseable(self, highlight):
        """Values wider than the terminal are not wrapped into invalid JSON."""
        buffer = io.StringIO()
        data = {"message": "x" * 200, "nested": {"path": "/".join(["segment"] * 30)}}
        with patch("tenantgate.cli.output.console", Console(file=buffer, width=40)):
            print_json(data, highlight=highlight)
        assert json.loads(buffer.getvalue()) == data
