"""Main CLI entry point for CostGuard."""

import logging

import click

from costguard import __version__
from costguard.config.settings import Settings


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file"
)
@click.option("--log-level", default="WARNING", help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx, config, log_level):
    """CostGuard - budget circuit breaker for LLM API spend.

    Inspect the price table and manage shared budgets.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)

    if config:
        ctx.obj["settings"] = Settings.load_from_file(config)
    else:
        ctx.obj["settings"] = Settings()


from costguard.cli.prices_cmd import prices
from costguard.cli.budget_cmd import budget

cli.add_command(prices)
cli.add_command(budget)


if __name__ == "__main__":
    cli()
