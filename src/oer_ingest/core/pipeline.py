"""Per-book phase sequencing driven by the manifest."""

import logging
from pathlib import Path
from typing import Callable

from pydantic import TypeAdapter, ValidationError

from oer_ingest.checkpoint.log import CheckpointLog
from oer_ingest.config import BookPaths, PipelineSettings
from oer_ingest.core.asset_extractor import AssetExtractor
from oer_ingest.core.content_analyzer import ContentStreamAnalyzer
from oer_ingest.core.finalizer import Finalizer
from oer_ingest.core.linear_reconstructor import LinearReconstructor
from oer_ingest.core.structuring_agent import ChatClient, StructuringAgent
from oer_ingest.errors import IngestError, ManifestError
from oer_ingest.models.book import ManifestEntry
from oer_ingest.models.output import (
    BookOutcome,
    BookStatus,
    RunSummary,
    StructuringStatus,
)

log = logging.getLogger(__name__)

MANIFEST_ADAPTER = TypeAdapter(list[ManifestEntry])


def load_manifest(manifest_path: Path) -> list[ManifestEntry]:
    """Read manifest.json.

    Raises:
        ManifestError: file missing or not a list of book records
    """
    if not manifest_path.exists():
        raise ManifestError(f"manifest.json not found at {manifest_path}. Please create it.")
    try:
        return MANIFEST_ADAPTER.validate_json(manifest_path.read_bytes())
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {manifest_path}: {e}") from e


def default_chat_client(settings: PipelineSettings) -> ChatClient:
    from oer_ingest.core.gemini_chat import GeminiChatClient

    return GeminiChatClient(
        api_key=settings.require_api_key(),
        model=settings.model,
        temperature=settings.temperature,
        max_output_tokens=settings.max_output_tokens,
    )


class PipelineOrchestrator:
    """Run asset extraction, analysis, reconstruction, structuring and
    finalization for each manifest book, skipping work already on disk.

    A fatal error in one book is recorded and the run moves on to the next.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        chat_client_factory: Callable[[PipelineSettings], ChatClient] = default_chat_client,
        force: bool = False,
    ):
        self.settings = settings
        self.chat_client_factory = chat_client_factory
        self.force = force

    def run(self, entries: list[ManifestEntry] | None = None) -> RunSummary:
        """Process every book. Raises ManifestError if the manifest is unusable."""
        if entries is None:
            entries = load_manifest(self.settings.manifest_path)

        summary = RunSummary()
        if not entries:
            log.info("No books listed in the manifest")
            return summary

        log.info(f"Found {len(entries)} book(s) in the manifest")
        self.settings.output_dir.mkdir(parents=True, exist_ok=True)

        for entry in entries:
            log.info(f"--- Processing book: \"{entry.title}\" ---")
            try:
                outcome = self.process_book(entry)
            except IngestError as e:
                log.error(f"Book \"{entry.title}\" failed: {e}")
                outcome = BookOutcome(
                    title=entry.title,
                    filename=entry.filename,
                    status=BookStatus.FAILED,
                    message=str(e),
                )
            except Exception as e:
                log.exception(f"Unexpected error while processing \"{entry.title}\"")
                outcome = BookOutcome(
                    title=entry.title,
                    filename=entry.filename,
                    status=BookStatus.FAILED,
                    message=f"Unexpected error: {e}",
                )
            summary.books.append(outcome)

        return summary

    def _skip_phase(self, name: str, artifact: Path, skipped: list[str]) -> bool:
        if artifact.exists():
            log.info(f"Skipping {name}: {artifact.name} already exists")
            skipped.append(name)
            return True
        return False

    def process_book(self, entry: ManifestEntry) -> BookOutcome:
        paths: BookPaths = self.settings.paths_for(entry)

        if paths.final_file.exists() and not self.force:
            log.info(f"Skipping book: final output {paths.final_file.name} already exists")
            return BookOutcome(
                title=entry.title,
                filename=entry.filename,
                status=BookStatus.SKIPPED,
                message="final output already exists",
            )

        if not paths.source_pdf.exists():
            log.warning(f"Skipping book: source PDF {paths.source_pdf} not found")
            return BookOutcome(
                title=entry.title,
                filename=entry.filename,
                status=BookStatus.SKIPPED,
                message=f"source PDF not found: {entry.filename}",
            )

        skipped: list[str] = []

        if not self._skip_phase("assets", paths.images_dir, skipped):
            AssetExtractor(paths.source_pdf, paths.identifier).run(paths.images_dir, paths.covers_dir)

        if not self._skip_phase("analysis", paths.analysis_file, skipped):
            ContentStreamAnalyzer(paths.source_pdf).run(paths.analysis_file)

        if not self._skip_phase("reconstruction", paths.reconstructed_file, skipped):
            LinearReconstructor(paths.analysis_file).run(paths.reconstructed_file)

        # Structuring always runs: the checkpoint log is its own resume point
        checkpoint = CheckpointLog(paths.log_file)
        agent = StructuringAgent(
            client=self.chat_client_factory(self.settings),
            checkpoint=checkpoint,
            book_title=entry.title,
            max_turns=self.settings.max_turns,
        )
        book_text = paths.reconstructed_file.read_text(encoding="utf-8")
        result = agent.run(book_text)

        final = Finalizer(checkpoint, paths.images_dir, entry).run(paths.final_file)

        if result.status == StructuringStatus.INCOMPLETE:
            status = BookStatus.INCOMPLETE
            message = f"partial output usable; {result.reason}"
        else:
            status = BookStatus.COMPLETE
            message = result.reason

        log.info(f"Finished processing \"{entry.title}\": {len(final)} sections ({status.value})")
        return BookOutcome(
            title=entry.title,
            filename=entry.filename,
            status=status,
            message=message,
            sections=len(final),
            skipped_phases=skipped,
        )
