"""
tenantgate CLI - Tenant Commands

Commands:
    config     - Resolve the Supabase configuration a tenant would get
    check-auth - Validate auth providers and redirect URLs for a tenant
"""

from __future__ import annotations

from typing import Optional

import typer

from tenantgate.cli import console, tenant_app
from tenantgate.cli.output import print_error, print_json, print_success, print_table, print_warning
from tenantgate.config.settings import settings
from tenantgate.multitenancy.errors import ConfigurationError
from tenantgate.multitenancy.tenant import configure_tenant_auth, resolve_tenant_config


@tenant_app.command("config")
def show_config(
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    domain: str = typer.Argument(..., help="Domain the tenant is served from."),
    isolation: str = typer.Option(
        settings.DEFAULT_ISOLATION_LEVEL,
        "--isolation",
        "-i",
        help="Isolation level: database, schema, rls.",
    ),
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json.",
    ),
) -> None:
    """
    Show the resolved Supabase configuration for a tenant.

    Keys are always masked.
    """
    try:
        config = resolve_tenant_config(tenant_id, domain, isolation)
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)

    data = config.to_dict()
    if output == "json":
        print_json(data)
        return

    auth = data.pop("auth_settings")
    headers = data.pop("headers")
    rows = [[key, str(value) if value is not None else "-"] for key, value in data.items()]
    rows.append(["site_url", auth["site_url"]])
    rows.append(["redirect_urls", ", ".join(auth["redirect_urls"])])
    rows.append(["secret_ref", auth["secret_ref"]])
    rows.extend([[f"header {name}", value] for name, value in headers.items()])
    print_table(f"Tenant {tenant_id}", ["Setting", "Value"], rows, styles=["cyan", None])

    if not config.url:
        print_warning("No Supabase URL resolved for this tenant")


@tenant_app.command("check-auth")
def check_auth(
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    domain: str = typer.Argument(..., help="Domain the tenant is served from."),
    providers: Optional[list[str]] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Auth provider to enable (repeatable): email, github, google.",
    ),
    redirect_urls: Optional[list[str]] = typer.Option(
        None,
        "--redirect",
        "-r",
        help="Post-login redirect URL (repeatable).",
    ),
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json.",
    ),
) -> None:
    """Validate a tenant's auth providers and redirect URLs."""
    try:
        result = configure_tenant_auth(tenant_id, domain, providers or [], redirect_urls or [])
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if output == "json":
        print_json(result.to_dict())
        return

    console.print(f"Providers: [cyan]{', '.join(result.providers)}[/cyan]")
    for url in result.redirect_urls:
        console.print(f"  [green]+[/green] {url}")
    for provider in result.rejected_providers:
        print_warning(f"Ignored unsupported provider: {provider}")
    for url in result.rejected_redirect_urls:
        print_warning(f"Ignored redirect URL outside {domain}: {url}")
    print_success(f"Auth configuration for {tenant_id} is valid")
