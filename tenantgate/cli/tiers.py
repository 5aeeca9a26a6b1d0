"""
tenantgate CLI - Tier Commands

Commands:
    list - Show every tier with its price and monthly quota
    show - Show one tier's features, limits and upgrade path
"""

from __future__ import annotations

import typer

from tenantgate.cli import console, tiers_app
from tenantgate.cli.output import print_error, print_json, print_table
from tenantgate.multitenancy.tiers import (
    TIER_CATALOG,
    UPGRADE_RECOMMENDATIONS,
    TierDefinition,
    all_tiers,
    parse_tier,
    upgrade_path,
)


def _quota_label(tier: TierDefinition) -> str:
    return "Unlimited" if tier.is_unlimited else str(tier.monthly_quota)


def _ceiling_label(value: int) -> str:
    return "Unlimited" if value == -1 else str(value)


@tiers_app.command("list")
def list_tiers(
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json.",
    ),
) -> None:
    """List the subscription tiers in rank order."""
    tiers = all_tiers()

    if output == "json":
        print_json([t.to_dict() for t in tiers])
        return

    rows = [
        [
            t.id.value,
            t.display_name,
            f"${t.price}",
            _quota_label(t),
            _ceiling_label(t.limits.max_projects),
            _ceiling_label(t.limits.max_team_members),
        ]
        for t in tiers
    ]
    print_table(
        "Subscription Tiers",
        ["Tier", "Name", "Price", "Monthly quota", "Projects", "Team"],
        rows,
        styles=["cyan", None, "green", "bold", None, None],
    )


@tiers_app.command("show")
def show_tier(
    tier_id: str = typer.Argument(..., help="Tier id, e.g. growth."),
    output: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json.",
    ),
) -> None:
    """Show the features, limits and upgrade path of one tier."""
    tier = parse_tier(tier_id)
    if tier is None:
        print_error(f"Unknown tier: {tier_id}", hint="Run 'tenantgate tiers list'.")
        raise typer.Exit(1)

    definition = TIER_CATALOG[tier]
    recommended = UPGRADE_RECOMMENDATIONS.get(tier)

    if output == "json":
        data = definition.to_dict()
        data["recommended_upgrade"] = recommended.value if recommended else None
        data["upgrade_path"] = [t.id.value for t in upgrade_path(tier)]
        print_json(data)
        return

    console.print(f"[bold]{definition.display_name}[/bold] ({tier.value})")
    console.print(f"  Price: ${definition.price}/month")
    console.print(f"  Monthly quota: {_quota_label(definition)}")
    console.print(f"  Storage: {definition.limits.storage_gb} GB")
    console.print()

    enabled = definition.features.enabled()
    console.print("[bold]Features[/bold]")
    for name in enabled:
        console.print(f"  [green]+[/green] {name}")
    if not enabled:
        console.print("  [dim]none[/dim]")
    console.print()

    path = upgrade_path(tier)
    if recommended:
        console.print(f"Recommended upgrade: [cyan]{recommended.value}[/cyan]")
    if path:
        console.print("Upgrade path: " + " -> ".join(t.id.value for t in path))
