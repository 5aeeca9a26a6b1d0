"""
tenantgate - Command Line Interface

Operator commands for inspecting the tier catalog, resolving tenant
configuration and checking that a deployment is wired up correctly.

Usage:
    $ tenantgate --help
    $ tenantgate tiers list
    $ tenantgate tenant config acme acme.example.com --isolation database
    $ tenantgate doctor run

Sub-command Groups:
    tiers  - Subscription tier catalog
    tenant - Tenant configuration and auth settings
    usage  - Usage period arithmetic
    doctor - Deployment diagnostics
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console

from tenantgate import __version__

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="tenantgate",
    help="tenantgate - tenant isolation and usage quota governance",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

tiers_app = typer.Typer(
    name="tiers",
    help="Subscription tier catalog commands",
    no_args_is_help=True,
)

tenant_app = typer.Typer(
    name="tenant",
    help="Tenant configuration commands",
    no_args_is_help=True,
)

usage_app = typer.Typer(
    name="usage",
    help="Usage period commands",
    no_args_is_help=True,
)

doctor_app = typer.Typer(
    name="doctor",
    help="Deployment diagnostic commands",
    no_args_is_help=True,
)

app.add_typer(tiers_app, name="tiers")
app.add_typer(tenant_app, name="tenant")
app.add_typer(usage_app, name="usage")
app.add_typer(doctor_app, name="doctor")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"tenantgate version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    tenantgate - tenant isolation and usage quota governance

    Use --help on any subcommand for detailed information.
    """


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to."),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development."),
    workers: int = typer.Option(1, "--workers", "-w", help="Number of worker processes."),
) -> None:
    """Start the tenantgate API server."""
    import uvicorn

    console.print(f"Starting tenantgate on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run("tenantgate.main:app", host=host, port=port, reload=reload, workers=workers)


# Imported last: the command modules import the sub-apps defined above.
def _register_subcommands() -> None:
    """Register all subcommand modules."""
    from tenantgate.cli import doctor  # noqa: F401
    from tenantgate.cli import tenant  # noqa: F401
    from tenantgate.cli import tiers  # noqa: F401
    from tenantgate.cli import usage  # noqa: F401


_register_subcommands()

__all__ = [
    "app",
    "tiers_app",
    "tenant_app",
    "usage_app",
    "doctor_app",
    "console",
    "err_console",
    "__version__",
]


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
