"""
tenantgate CLI - Usage Commands

Commands:
    reset-date - Show when monthly counters next roll over
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import typer

from tenantgate.cli import console, usage_app
from tenantgate.cli.output import print_error, print_json
from tenantgate.config.settings import settings
from tenantgate.multitenancy.usage import (
    as_utc,
    current_period_start,
    days_until_reset,
    next_reset_date,
)


@usage_app.command("reset-date")
def reset_date(
    reset_day: int = typer.Option(
        settings.USAGE_RESET_DAY,
        "--reset-day",
        "-d",
        help="Day of month counters reset on (1-31).",
    ),
    at: Optional[str] = typer.Option(
        None,
        "--at",
        help="Reference time as ISO 8601 (defaults to now, UTC).",
    ),
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json.",
    ),
) -> None:
    """Show the current usage period and the next reset date."""
    try:
        now = as_utc(at) if at else None
        start = current_period_start(reset_day, now)
        next_reset = next_reset_date(reset_day, now)
        days = days_until_reset(reset_day, now)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if output == "json":
        print_json({
            "reset_day": reset_day,
            "period_start": start.isoformat(),
            "next_reset": next_reset.isoformat(),
            "days_until_reset": days,
        })
        return

    console.print(f"Period started: [cyan]{_fmt(start)}[/cyan]")
    console.print(f"Next reset:     [cyan]{_fmt(next_reset)}[/cyan] ({days} days)")


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")
