"""Budget commands: inspect and reset a budget shared through Redis."""

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from costguard.core.ledger import SharedLedger
from costguard.utils.helpers import format_cost

console = Console()


def _ledger(settings, redis_url, key) -> SharedLedger:
    url = redis_url or settings.redis_url
    if not url:
        click.echo("Error: no Redis URL (use --redis or COSTGUARD_REDIS_URL)", err=True)
        sys.exit(1)
    return SharedLedger(url=url, key=key or settings.shared_key, ttl_seconds=settings.shared_ttl_seconds)


async def _read_total(ledger: SharedLedger):
    try:
        return await ledger.shared_total()
    finally:
        await ledger.aclose()


async def _reset(ledger: SharedLedger) -> None:
    try:
        await ledger.reset()
    finally:
        await ledger.aclose()


@click.group()
def budget():
    """Inspect or reset a shared budget."""


@budget.command()
@click.option("--redis", "redis_url", help="Redis URL (default: settings redis_url)")
@click.option("--key", "-k", help="Budget counter key (default: settings shared_key)")
@click.pass_context
def show(ctx, redis_url, key):
    """Show the running total of a shared budget.

    Examples:

        \b
        costguard budget show --redis redis://localhost:6379/0
    """
    settings = ctx.obj.get("settings")
    ledger = _ledger(settings, redis_url, key)

    total = asyncio.run(_read_total(ledger))
    if total is None:
        click.echo("Error: shared budget unreachable", err=True)
        sys.exit(1)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="cyan", width=12)
    table.add_column("Value", style="bold")
    table.add_row("Key", ledger.key)
    table.add_row("Spent", f"[green]{format_cost(total)}[/green]")
    table.add_row("Limit", format_cost(settings.limit, 2))
    console.print(table)


@budget.command()
@click.option("--redis", "redis_url", help="Redis URL (default: settings redis_url)")
@click.option("--key", "-k", help="Budget counter key (default: settings shared_key)")
@click.pass_context
def reset(ctx, redis_url, key):
    """Delete the shared budget counter, starting a new session for every process."""
    settings = ctx.obj.get("settings")
    ledger = _ledger(settings, redis_url, key)
    asyncio.run(_reset(ledger))
    console.print(f"[green]Shared budget {ledger.key} reset.[/green]")
