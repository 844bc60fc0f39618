"""Status command implementation."""

from dataclasses import dataclass

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from oer_ingest.checkpoint.log import CheckpointLog
from oer_ingest.config import PipelineSettings
from oer_ingest.core.ordering import list_content_images
from oer_ingest.core.pipeline import load_manifest
from oer_ingest.errors import CheckpointError
from oer_ingest.models.book import ManifestEntry


@dataclass
class BookProgress:
    """Which artifacts exist on disk for one manifest book."""

    title: str
    filename: str
    has_source: bool
    has_cover: bool
    image_count: int | None  # None when the images directory is missing
    has_analysis: bool
    has_reconstruction: bool
    checkpointed_sections: int
    checkpoint_readable: bool
    is_finalized: bool


def get_book_progress(settings: PipelineSettings, entry: ManifestEntry) -> BookProgress:
    paths = settings.paths_for(entry)

    checkpoint = CheckpointLog(paths.log_file)
    try:
        sections = checkpoint.count()
        readable = True
    except CheckpointError:
        sections = 0
        readable = False

    return BookProgress(
        title=entry.title,
        filename=entry.filename,
        has_source=paths.source_pdf.exists(),
        has_cover=paths.cover_file.exists(),
        image_count=len(list_content_images(paths.images_dir)) if paths.images_dir.is_dir() else None,
        has_analysis=paths.analysis_file.exists(),
        has_reconstruction=paths.reconstructed_file.exists(),
        checkpointed_sections=sections,
        checkpoint_readable=readable,
        is_finalized=paths.final_file.exists(),
    )


def _mark(flag: bool) -> str:
    return "[green]✓[/]" if flag else "[dim]—[/]"


def display_status(settings: PipelineSettings, books: list[BookProgress], console: Console) -> None:
    """Display status in a formatted way."""
    finalized = sum(1 for b in books if b.is_finalized)
    in_progress = sum(1 for b in books if not b.is_finalized and b.checkpointed_sections)

    console.print()
    console.print(
        Panel(
            f"[dim]Manifest:[/] {settings.manifest_path}\n"
            f"[dim]Output directory:[/] {settings.output_dir}\n"
            f"[dim]Public directory:[/] {settings.public_dir}\n\n"
            f"[dim]Books:[/] {len(books)}\n"
            f"[dim]Finalized:[/] {finalized}\n"
            f"[dim]Structuring in progress:[/] {in_progress}",
            title="Library Status",
            border_style="green",
        )
    )

    if not books:
        console.print()
        return

    console.print()
    table = Table(title="Book Details", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="white", max_width=40)
    table.add_column("PDF", justify="center", width=4)
    table.add_column("Cover", justify="center", width=5)
    table.add_column("Images", justify="right", width=6)
    table.add_column("Analysis", justify="center", width=8)
    table.add_column("Text", justify="center", width=4)
    table.add_column("Sections", justify="right", style="green", width=8)
    table.add_column("Final", justify="center", width=5)

    for i, book in enumerate(books, 1):
        display_title = book.title[:37] + "..." if len(book.title) > 40 else book.title
        if not book.checkpoint_readable:
            sections = "[red]corrupt[/]"
        else:
            sections = str(book.checkpointed_sections) if book.checkpointed_sections else "—"

        table.add_row(
            str(i),
            display_title,
            _mark(book.has_source),
            _mark(book.has_cover),
            str(book.image_count) if book.image_count is not None else "—",
            _mark(book.has_analysis),
            _mark(book.has_reconstruction),
            sections,
            _mark(book.is_finalized),
        )

    console.print(table)

    # Next steps hint
    console.print()
    remaining = len(books) - finalized
    if remaining:
        console.print(
            f"[dim]Next step:[/] Run [cyan]oer-ingest run[/] to process {remaining} remaining book(s)"
        )
    else:
        console.print(f"[green]Complete![/] Final artifacts are in [cyan]{settings.output_dir}[/]")
    console.print()


def execute_status(
    settings: PipelineSettings,
    console: Console,
) -> None:
    """Execute the status command."""
    entries = load_manifest(settings.manifest_path)
    books = [get_book_progress(settings, entry) for entry in entries]
    display_status(settings, books, console)
