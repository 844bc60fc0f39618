"""Main CLI application."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from oer_ingest.config import PipelineSettings, load_settings
from oer_ingest.errors import ManifestError

app = typer.Typer(
    name="oer-ingest",
    help="Turn open-textbook PDFs into structured, image-linked JSON sections.",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _settings(ctx: typer.Context) -> PipelineSettings:
    return ctx.obj


@app.callback()
def main(
    ctx: typer.Context,
    books_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--books-dir",
            help="Directory with the source PDFs and manifest.json (default: src/books)",
        ),
    ] = None,
    output_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--output-dir",
            "-o",
            help="Directory for analysis, text, checkpoint and final JSON files (default: src/lib)",
        ),
    ] = None,
    public_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--public-dir",
            help="Directory for extracted images and covers (default: public)",
        ),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option(
            "--model",
            "-m",
            help="Gemini model to use (default: gemini-2.5-flash)",
        ),
    ] = None,
    max_turns: Annotated[
        Optional[int],
        typer.Option(
            "--max-turns",
            help="Maximum structuring turns per book (default: 50)",
            min=1,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show debug logging",
        ),
    ] = False,
) -> None:
    """Turn open-textbook PDFs into structured, image-linked JSON sections."""
    setup_logging(verbose)
    try:
        ctx.obj = load_settings(
            books_dir=books_dir,
            output_dir=output_dir,
            public_dir=public_dir,
            model=model,
            max_turns=max_turns,
        )
    except Exception as e:
        console.print(f"[red]Invalid settings: {e}[/]")
        raise typer.Exit(1)


@app.command()
def run(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Re-process books whose final output already exists",
        ),
    ] = False,
) -> None:
    """Process every book in the manifest end to end.

    Phases whose output already exists are skipped, and structuring resumes
    from each book's checkpoint log. Exits with code 1 if any book failed.
    """
    from oer_ingest.commands.run import execute_run

    try:
        summary = execute_run(settings=_settings(ctx), console=console, force=force)
    except ManifestError as e:
        console.print(f"[red]Error: {e}[/]")
        console.print("[dim]Create manifest.json in the books directory or pass --books-dir.[/]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    if summary.has_failures:
        raise typer.Exit(1)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show which artifacts exist for every book in the manifest."""
    try:
        from oer_ingest.commands.status import execute_status

        execute_status(settings=_settings(ctx), console=console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def analyze(
    pdf_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the source PDF",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    output_file: Annotated[
        Path,
        typer.Argument(help="Where to write the analysis JSON"),
    ],
) -> None:
    """Extract positioned text runs and image placements from a PDF."""
    try:
        from oer_ingest.core.content_analyzer import ContentStreamAnalyzer

        elements = ContentStreamAnalyzer(pdf_path).run(output_file)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    console.print(f"[green]Wrote {len(elements)} elements to {output_file}[/]")


@app.command()
def reconstruct(
    analysis_file: Annotated[
        Path,
        typer.Argument(
            help="Analysis JSON produced by 'oer-ingest analyze'",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    output_file: Annotated[
        Path,
        typer.Argument(help="Where to write the reading-order text"),
    ],
) -> None:
    """Rebuild reading-order text with image placeholders from an analysis file."""
    try:
        from oer_ingest.core.linear_reconstructor import LinearReconstructor

        image_count = LinearReconstructor(analysis_file).run(output_file)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    console.print(f"[green]Wrote {output_file} ({image_count} image placeholder(s))[/]")


@app.command()
def finalize(
    ctx: typer.Context,
    filename: Annotated[
        str,
        typer.Argument(help="Book filename as listed in manifest.json"),
    ],
) -> None:
    """Build a book's final JSON from its checkpoint log and extracted images."""
    settings = _settings(ctx)
    try:
        from oer_ingest.checkpoint.log import CheckpointLog
        from oer_ingest.core.finalizer import Finalizer
        from oer_ingest.core.pipeline import load_manifest

        entry = next((e for e in load_manifest(settings.manifest_path) if e.filename == filename), None)
        if entry is None:
            console.print(f"[red]{filename} is not listed in {settings.manifest_path}[/]")
            raise typer.Exit(1)

        paths = settings.paths_for(entry)
        checkpoint = CheckpointLog(paths.log_file)
        if not checkpoint.exists():
            console.print(f"[red]No checkpoint log at {paths.log_file}[/]")
            console.print("[dim]Run 'oer-ingest run' to structure the book first.[/]")
            raise typer.Exit(1)

        sections = Finalizer(checkpoint, paths.images_dir, entry).run(paths.final_file)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    console.print()
    console.print(
        Panel(
            f"[bold]{entry.title}[/]\n\n"
            f"[dim]Sections:[/] {len(sections)}\n"
            f"[dim]Output file:[/] {paths.final_file}",
            title="Finalization Complete",
            border_style="green",
        )
    )


if __name__ == "__main__":
    app()
