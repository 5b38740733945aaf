"""Prices command: show the price table used for cost attribution."""

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from costguard.core.errors import PricingError
from costguard.core.pricing import PricingRegistry
from costguard.core.refresh import PriceRefresher
from costguard.utils.helpers import format_cost

console = Console()


@click.command()
@click.option(
    "--refresh",
    is_flag=True,
    help="Refresh prices from the cache or remote source first"
)
@click.option(
    "--model", "-m",
    help="Show the price a model resolves to"
)
@click.pass_context
def prices(ctx, refresh, model):
    """Show model prices (dollars per 1K tokens).

    Examples:

        \b
        # Full price table
        costguard prices

        \b
        # Price charged for a versioned model name
        costguard prices --model gpt-4o-2024-08-06
    """
    settings = ctx.obj.get("settings")

    try:
        registry = PricingRegistry(pricing_file_path=settings.pricing_file_path)
    except (PricingError, OSError) as e:
        click.echo(f"Error loading pricing: {e}", err=True)
        sys.exit(1)

    if refresh:
        refresher = PriceRefresher(
            registry,
            cache_path=str(settings.get_price_cache_path()),
            cache_ttl_seconds=settings.price_cache_ttl_seconds,
            source_url=settings.price_source_url,
        )
        if asyncio.run(refresher.refresh()):
            console.print("[green]Prices refreshed.[/green]")
        else:
            console.print("[yellow]Prices not refreshed, showing current table.[/yellow]")

    table = Table(title="Model Prices", show_header=True, header_style="bold cyan")
    table.add_column("Model", style="green", width=30)
    table.add_column("Input ($/1K tokens)", justify="right", style="yellow")
    table.add_column("Output ($/1K tokens)", justify="right", style="yellow")

    if model:
        entry = registry.lookup(model)
        label = model if entry.model == model else f"{model} -> {entry.model}"
        table.add_row(label, format_cost(entry.input_cost_per_1k, 6), format_cost(entry.output_cost_per_1k, 6))
    else:
        for entry in registry.entries():
            table.add_row(entry.model, format_cost(entry.input_cost_per_1k, 6), format_cost(entry.output_cost_per_1k, 6))

    console.print(table)
