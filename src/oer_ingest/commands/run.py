"""Run command implementation."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from oer_ingest.config import PipelineSettings
from oer_ingest.core.pipeline import PipelineOrchestrator, load_manifest
from oer_ingest.models.output import BookStatus, RunSummary

STATUS_STYLES = {
    BookStatus.COMPLETE: "[green]complete[/]",
    BookStatus.INCOMPLETE: "[yellow]incomplete[/]",
    BookStatus.FAILED: "[red]failed[/]",
    BookStatus.SKIPPED: "[dim]skipped[/]",
}


def display_summary(summary: RunSummary, console: Console) -> None:
    """Summary panel plus per-book table."""
    complete = summary.count(BookStatus.COMPLETE)
    incomplete = summary.count(BookStatus.INCOMPLETE)
    failed = summary.count(BookStatus.FAILED)
    skipped = summary.count(BookStatus.SKIPPED)

    if failed:
        border = "red"
        headline = f"[red]{failed} book(s) failed and need attention[/]"
    elif incomplete:
        border = "yellow"
        headline = f"[yellow]{incomplete} book(s) incomplete, partial output usable[/]"
    else:
        border = "green"
        headline = "[green]All books processed[/]"

    console.print()
    console.print(
        Panel(
            f"{headline}\n\n"
            f"[dim]Complete:[/] {complete}\n"
            f"[dim]Incomplete:[/] {incomplete}\n"
            f"[dim]Failed:[/] {failed}\n"
            f"[dim]Skipped:[/] {skipped}",
            title="Run Summary",
            border_style=border,
        )
    )

    if not summary.books:
        return

    console.print()
    table = Table(title="Books", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="white", max_width=40)
    table.add_column("Status", justify="center")
    table.add_column("Sections", justify="right", style="green")
    table.add_column("Skipped phases", style="dim")
    table.add_column("Notes", style="dim", max_width=50)

    for i, book in enumerate(summary.books, 1):
        display_title = book.title[:37] + "..." if len(book.title) > 40 else book.title
        table.add_row(
            str(i),
            display_title,
            STATUS_STYLES[book.status],
            str(book.sections) if book.sections else "—",
            ", ".join(book.skipped_phases) or "—",
            escape(book.message),
        )

    console.print(table)
    console.print()


def execute_run(
    settings: PipelineSettings,
    console: Console,
    force: bool = False,
) -> RunSummary:
    """Execute the run command.

    Raises:
        ManifestError: the manifest is missing or invalid
    """
    entries = load_manifest(settings.manifest_path)
    if not entries:
        console.print(f"[yellow]No books listed in {settings.manifest_path}[/]")
        return RunSummary()

    console.print(f"[dim]Manifest:[/] {settings.manifest_path} ({len(entries)} book(s))")
    console.print(f"[dim]Model:[/] {settings.model}")

    orchestrator = PipelineOrchestrator(settings, force=force)
    summary = orchestrator.run(entries)

    display_summary(summary, console)
    return summary
