"""
tenantgate CLI - Rich Output Helpers

Functions:
    print_table   - Print a formatted table
    print_status  - Print status checks with pass/fail indicators
    print_json    - Print formatted JSON
    print_error   - Print error message
    print_success - Print success message
    print_warning - Print warning message
"""

from __future__ import annotations

import json
from typing import Any, Optional

from rich.json import JSON
from rich.table import Table

from tenantgate.cli import console, err_console

STATUS_PASS = "[green]✓[/green]"
STATUS_FAIL = "[red]✗[/red]"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    styles: Optional[list[str]] = None,
    show_lines: bool = False,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows (list of lists)
        styles: Optional column styles
        show_lines: Whether to show row separator lines
    """
    table = Table(title=title, show_lines=show_lines)

    for i, col in enumerate(columns):
        style = styles[i] if styles and i < len(styles) else None
        table.add_column(col, style=style)

    for row in rows:
        padded_row = list(row) + [""] * (len(columns) - len(row))
        table.add_row(*padded_row[:len(columns)])

    console.print(table)


def print_status(checks: list[tuple[str, bool, str]], title: Optional[str] = None) -> None:
    """
    Print status checks with pass/fail indicators.

    Args:
        checks: List of (name, passed, message) tuples
        title: Optional title for the status list
    """
    if title:
        console.print(f"[bold]{title}[/bold]")
        console.print()

    for name, passed, message in checks:
        icon = STATUS_PASS if passed else STATUS_FAIL
        color = "green" if passed else "red"
        console.print(f"  {icon} [cyan]{name}[/cyan]: [{color}]{message}[/{color}]")


def print_json(data: Any, indent: int = 2, highlight: bool = True) -> None:
    """Print ``data`` as JSON, syntax highlighted unless ``highlight`` is off."""
    json_str = json.dumps(data, indent=indent, default=str)
    if highlight:
        console.print(JSON(json_str), soft_wrap=True)
    else:
        console.print(json_str, highlight=False, soft_wrap=True)


def print_error(
    message: str,
    hint: Optional[str] = None,
) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_success(message: str) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
