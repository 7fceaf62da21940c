"""Command line entry point for the digest archive."""

import sys

import click
from rich.console import Console
from rich.table import Table

from .dependencies import (
    get_ingestion_service,
    get_job_runs_repository,
    get_search_service,
    get_settings,
)
from .logging_config import configure_application_logging
from .services.search_service import display_category_name

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Digest Archive - ingest weekly digest issues and search their articles."""
    pass


@click.command()
@click.option(
    "--mode",
    "-m",
    type=click.Choice(["weekly", "backfill"]),
    default=None,
    help="weekly processes the latest issue only; backfill processes every issue.",
)
@click.option("--document-id", "-d", default=None, help="Override the configured document id.")
def ingest(mode, document_id):
    """Run one ingestion pass over the digest document."""
    settings = get_settings()
    configure_application_logging(settings, console_stream=sys.stderr)

    document_id = document_id or settings.document_id
    if not document_id:
        raise click.UsageError("No document id: pass --document-id or set DIGEST_ARCHIVE_DOCUMENT_ID.")

    result = get_ingestion_service().run(
        mode=mode or settings.ingest_default_mode,
        document_id=document_id,
    )

    if not result.succeeded:
        console.print(
            f"[red]Ingestion failed[/red] ({result.error_category}): {result.error_message}"
        )
        console.print(f"  Run: {result.run_id}")
        raise SystemExit(1)

    console.print(f"[green]Ingestion complete[/green] ({result.mode})")
    console.print(f"  Run: {result.run_id}")
    console.print(f"  Issues found: {result.total_issues_found}")
    console.print(f"  Processed: {result.processed}")
    console.print(f"  Unchanged: {result.skipped_unchanged}")
    if result.recent_issue_dates:
        console.print(f"  Recent issues: {', '.join(result.recent_issue_dates)}")


@click.command()
@click.option("--limit", "-n", default=10, show_default=True, help="Number of runs to show.")
def runs(limit: int):
    """List recent ingestion runs."""
    records = get_job_runs_repository().list_recent_runs(limit=limit)

    if not records:
        console.print("[yellow]No runs recorded[/yellow]")
        return

    table = Table(title="Ingestion runs")
    table.add_column("Run")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Processed", justify="right")
    table.add_column("Error")

    for record in records:
        status_style = {"success": "green", "failure": "red"}.get(record.status, "yellow")
        table.add_row(
            record.run_id,
            record.job_type,
            f"[{status_style}]{record.status}[/{status_style}]",
            record.started_at.isoformat(timespec="seconds"),
            "" if record.processed_count is None else str(record.processed_count),
            record.error_category or "",
        )

    console.print(table)


@click.command()
@click.argument("term")
@click.option("--limit", "-n", default=20, show_default=True, help="Maximum number of hits.")
def search(term: str, limit: int):
    """Search archived articles by keyword."""
    try:
        hits = get_search_service().search(term, limit=limit)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="TERM") from exc

    console.print(f"Searching for: [cyan]{term}[/cyan]\n")

    if not hits:
        console.print("[yellow]No results found[/yellow]")
        return

    for hit in hits:
        console.print(
            f"[bold]{hit.article.title}[/bold] "
            f"[dim]{hit.issue_date.isoformat()} / {display_category_name(hit)}[/dim]"
        )
        console.print(f"  {hit.article.source_url}")


main.add_command(ingest)
main.add_command(runs)
main.add_command(search)


if __name__ == "__main__":
    main()
