"""
tenantgate CLI - Doctor Commands

Diagnostic checks for a tenantgate deployment: shared Supabase
credentials, quota settings, the tier catalog and per-tenant overrides.

Commands:
    run    - Run all diagnostic checks
    tenant - Check that one tenant resolves to a usable client
"""

from __future__ import annotations

from typing import Callable

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from tenantgate.cli import console, doctor_app
from tenantgate.cli.output import print_json, print_status, print_success, print_warning
from tenantgate.config.settings import settings
from tenantgate.multitenancy.errors import ConfigurationError
from tenantgate.multitenancy.registry import client_options_for, default_client_factory
from tenantgate.multitenancy.tenant import IsolationLevel, resolve_tenant_config, tenant_env_var
from tenantgate.multitenancy.tiers import TIER_CATALOG, UPGRADE_RECOMMENDATIONS, all_tiers, rank_of


class CheckResult:
    """Result of a diagnostic check."""

    def __init__(
        self,
        name: str,
        passed: bool,
        message: str,
        details: str | None = None,
    ):
        self.name = name
        self.passed = passed
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "details": self.details,
        }


CHECKS: dict[str, Callable[[], CheckResult]] = {}


def register_check(name: str) -> Callable:
    """Decorator to register a diagnostic check."""
    def decorator(func: Callable[[], CheckResult]) -> Callable[[], CheckResult]:
        CHECKS[name] = func
        return func
    return decorator


@register_check("supabase")
def check_supabase_settings() -> CheckResult:
    missing = [
        name for name in ("SUPABASE_URL", "SUPABASE_ANON_KEY")
        if not getattr(settings, name)
    ]
    if missing:
        return CheckResult(
            name="Supabase",
            passed=False,
            message=f"Missing {', '.join(missing)}",
            details="Set them in the environment or .env",
        )
    if not settings.SUPABASE_URL.startswith(("http://", "https://")):
        return CheckResult(name="Supabase", passed=False, message="SUPABASE_URL is not an http(s) URL")
    details = None if settings.SUPABASE_SERVICE_KEY else "SUPABASE_SERVICE_KEY not set"
    return CheckResult(name="Supabase", passed=True, message=settings.SUPABASE_URL, details=details)


@register_check("quotas")
def check_quota_settings() -> CheckResult:
    return CheckResult(
        name="Quotas",
        passed=True,
        message=(
            f"Reset on day {settings.USAGE_RESET_DAY}, "
            f"warn at {settings.USAGE_WARNING_THRESHOLD}%"
        ),
        details=f"Privileged role: {settings.PRIVILEGED_ROLE}",
    )


@register_check("catalog")
def check_tier_catalog() -> CheckResult:
    """Limited quotas must grow with rank and every upgrade must go up."""
    problems = []
    limited = [t for t in all_tiers() if not t.is_unlimited]
    for lower, higher in zip(limited, limited[1:]):
        if higher.monthly_quota <= lower.monthly_quota:
            problems.append(f"{higher.id.value} quota does not exceed {lower.id.value}")
    for tier, target in UPGRADE_RECOMMENDATIONS.items():
        if rank_of(target) <= rank_of(tier):
            problems.append(f"{tier.value} upgrades to lower tier {target.value}")

    if problems:
        return CheckResult(name="Tier catalog", passed=False, message=problems[0], details="; ".join(problems))
    return CheckResult(name="Tier catalog", passed=True, message=f"{len(TIER_CATALOG)} tiers")


@register_check("isolation")
def check_default_isolation() -> CheckResult:
    try:
        level = IsolationLevel.coerce(settings.DEFAULT_ISOLATION_LEVEL)
    except ConfigurationError as e:
        return CheckResult(name="Isolation", passed=False, message=str(e))
    return CheckResult(name="Isolation", passed=True, message=f"Default level: {level.value}")


def check_tenant(tenant_id: str, domain: str, isolation: str) -> list[CheckResult]:
    """Resolve a tenant and build (but do not use) its client."""
    try:
        config = resolve_tenant_config(tenant_id, domain, isolation)
    except ConfigurationError as e:
        return [CheckResult(name="Resolve", passed=False, message=str(e))]

    results = [CheckResult(name="Resolve", passed=True, message=config.url or "<no url>")]

    if config.isolation_level == IsolationLevel.DATABASE:
        overrides = [
            tenant_env_var(tenant_id, kind)
            for kind in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_KEY")
        ]
        results.append(CheckResult(
            name="Credentials",
            passed=bool(config.service_key),
            message="Dedicated service key set" if config.service_key else "No dedicated service key",
            details=f"Reads {', '.join(overrides)}",
        ))

    try:
        default_client_factory(config.url, config.anon_key, client_options_for(config))
    except ConfigurationError as e:
        results.append(CheckResult(name="Client", passed=False, message=str(e)))
    else:
        results.append(CheckResult(name="Client", passed=True, message="Client created"))
    return results


def _report(results: list[CheckResult], output: str, verbose: bool) -> None:
    if output == "json":
        print_json({"results": [r.to_dict() for r in results]})
    else:
        print_status([(r.name, r.passed, r.message) for r in results])
        if verbose:
            console.print()
            for r in results:
                if r.details:
                    console.print(f"  [dim]{r.name}:[/dim] {r.details}")
        console.print()

    passed = sum(1 for r in results if r.passed)
    failed = len(results) - passed
    if failed:
        if output != "json":
            print_warning(f"{passed} passed, {failed} failed")
        raise typer.Exit(1)
    if output != "json":
        print_success(f"All {passed} checks passed!")


@doctor_app.command("run")
def run_diagnostics(
    checks: str = typer.Option(
        "all",
        "--checks",
        "-c",
        help="Comma-separated checks to run: supabase, quotas, catalog, isolation.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show check details."),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json."),
) -> None:
    """Run the deployment diagnostic checks."""
    names = list(CHECKS) if checks == "all" else [c.strip() for c in checks.split(",") if c.strip()]

    results = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
        disable=output == "json",
    ) as progress:
        for name in names:
            task = progress.add_task(f"Checking {name}...", total=None)
            check = CHECKS.get(name)
            if check is None:
                results.append(CheckResult(name=name, passed=False, message="Unknown check"))
            else:
                results.append(check())
            progress.update(task, completed=True)

    _report(results, output, verbose)


@doctor_app.command("tenant")
def diagnose_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    domain: str = typer.Argument(..., help="Domain the tenant is served from."),
    isolation: str = typer.Option(
        settings.DEFAULT_ISOLATION_LEVEL,
        "--isolation",
        "-i",
        help="Isolation level: database, schema, rls.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show check details."),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json."),
) -> None:
    """Check that one tenant resolves to a usable client."""
    _report(check_tenant(tenant_id, domain, isolation), output, verbose)
