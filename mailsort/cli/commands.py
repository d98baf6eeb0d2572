"""CLI command implementations — classify a page of mail, manage category labels."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AbstractAsyncContextManager

import click
from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from mailsort.config import ClassifierConfig
from mailsort.errors import LabelCreationError
from mailsort.labels.reconciler import LabelReconciler
from mailsort.mcp.gmail_client import MCPError, gmail_client
from mailsort.mcp.types import Mailbox
from mailsort.pipeline.batch import BatchRunState
from mailsort.pipeline.bulk import (
    BulkAnalyzeRequest,
    BulkAnalyzeResponse,
    MailboxFactory,
    run_bulk_analysis,
)
from mailsort.processing.orchestrator import ClassificationOrchestrator
from mailsort.processing.types import AIModel, Provider

logger = logging.getLogger(__name__)
console = Console(width=200)

_PRIORITY_STYLE = {"high": "red", "medium": "yellow", "low": "dim"}


def gmail_factory(config: ClassifierConfig) -> MailboxFactory:
    """Mailbox factory backed by workspace-mcp.

    workspace-mcp keeps its own OAuth credentials, so the request tokens only
    gate the run and are not forwarded.
    """

    def factory(access_token: str, refresh_token: str | None) -> AbstractAsyncContextManager[Mailbox]:
        return gmail_client(
            label_retries=config.label_retries,
            retry_delay=config.label_retry_delay,
        )

    return factory


# ── classify ───────────────────────────────────────────────────────────────────


@click.command()
@click.option("--query", default="", help="Gmail search filter, e.g. 'in:inbox newer_than:7d'.")
@click.option("--max-emails", default=100, show_default=True, help="Messages to fetch (max 50 per page).")
@click.option("--page-token", default=None, help="Continuation token from a previous run.")
@click.option("--batch-size", default=None, type=int, help="Messages classified concurrently.")
@click.option("--apply-labels/--no-apply-labels", default=False, show_default=True)
@click.option("--skip-classified/--no-skip-classified", default=True, show_default=True)
@click.option(
    "--ai-model",
    type=click.Choice([m.value for m in AIModel]),
    default=AIModel.AUTO.value,
    show_default=True,
)
@click.option("--access-token", envvar="GMAIL_ACCESS_TOKEN", default=None, help="Gmail access token.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw response as JSON.")
@click.pass_obj
def classify(
    config: ClassifierConfig,
    query: str,
    max_emails: int,
    page_token: str | None,
    batch_size: int | None,
    apply_labels: bool,
    skip_classified: bool,
    ai_model: str,
    access_token: str | None,
    as_json: bool,
) -> None:
    """Classify one page of messages and optionally apply category labels."""
    request = BulkAnalyzeRequest(
        access_token=access_token,
        max_emails=max_emails,
        apply_labels=apply_labels,
        skip_classified=skip_classified,
        query=query,
        page_token=page_token,
        batch_size=batch_size or config.batch_size,
        ai_model=AIModel(ai_model),
    )
    response = asyncio.run(_classify_async(config, request, show_progress=not as_json))

    if as_json:
        click.echo(json.dumps(response.to_dict(), indent=2))
    else:
        _print_response(response)
    if not response.success:
        raise SystemExit(1)


async def _classify_async(
    config: ClassifierConfig, request: BulkAnalyzeRequest, show_progress: bool
) -> BulkAnalyzeResponse:
    orchestrator = ClassificationOrchestrator.from_config(config)
    if not show_progress:
        return await run_bulk_analysis(request, gmail_factory(config), orchestrator)

    if not any(orchestrator.is_configured(p) for p in (Provider.PRIMARY, Provider.SECONDARY)):
        console.print("[yellow]No AI provider configured; classifying with keyword rules only.[/yellow]")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Classifying...", total=100)

        def on_progress(state: BatchRunState) -> None:
            progress.update(
                task,
                completed=state.progress,
                description=f"Classifying — batch {state.batches_completed}",
            )

        return await run_bulk_analysis(
            request, gmail_factory(config), orchestrator, on_progress=on_progress
        )


def _print_response(response: BulkAnalyzeResponse) -> None:
    if not response.success:
        console.print(f"[red]{response.error}[/red]")
        return

    results = response.state.results
    if results:
        table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
        table.add_column("Subject", max_width=40)
        table.add_column("From", max_width=26)
        table.add_column("Category", width=22)
        table.add_column("Conf", width=5)
        table.add_column("Priority", width=8)
        table.add_column("Via", width=9)
        table.add_column("Label", max_width=32)

        for r in results:
            c = r.classification
            style = _PRIORITY_STYLE.get(c.priority.value, "")
            if r.error:
                label = f"[red]{r.error}[/red]"
            elif r.already_classified:
                label = "[dim]already classified[/dim]"
            else:
                label = r.applied_label or ""
            table.add_row(
                r.subject,
                r.sender,
                c.category.value,
                f"{c.confidence:.2f}",
                f"[{style}]{c.priority.value}[/{style}]" if style else c.priority.value,
                c.provider_used.value,
                label,
            )
        console.print(table)

    s = response.summary()
    console.print(
        f"\n[green]{response.message}.[/green] "
        f"{s['classified']} classified, "
        f"[dim]{s['skippedAlreadyClassified']} skipped,[/dim] "
        f"{s['highPriority']} high priority"
        + (f", [red]{s['errors']} error(s)[/red]" if s["errors"] else "")
        + "."
    )
    if response.next_page_token:
        console.print(f"  Next page: [bold]--page-token {response.next_page_token}[/bold]")


# ── labels ─────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def labels(config: ClassifierConfig) -> None:
    """Create any missing category labels and show the label mapping."""
    try:
        mapping = asyncio.run(_labels_async(config))
    except (LabelCreationError, MCPError, ValueError) as exc:
        console.print(f"[red]Gmail error: {exc}[/red]")
        raise SystemExit(1) from exc

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Label")
    table.add_column("ID", style="dim")
    for name, label_id in mapping.items():
        table.add_row(name, label_id)
    console.print(table)


async def _labels_async(config: ClassifierConfig) -> dict[str, str]:
    async with gmail_client(
        label_retries=config.label_retries, retry_delay=config.label_retry_delay
    ) as gmail:
        return await LabelReconciler(gmail).ensure_labels()
