"""CLI entry point for the bulk email classifier."""

import logging

import click
from dotenv import load_dotenv

from mailsort.config import ClassifierConfig

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Classify Gmail messages into nine categories and label them."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    ctx.obj = ClassifierConfig.from_env()


# Import and register commands after cli is defined to avoid circular imports.
from mailsort.cli.commands import classify, labels  # noqa: E402

cli.add_command(classify)
cli.add_command(labels)
