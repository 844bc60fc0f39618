"""Pipeline settings and per-book path derivation."""

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

from oer_ingest.errors import ConfigError
from oer_ingest.models.book import ManifestEntry

API_KEY_ENV = "GEMINI_API_KEY"
DEFAULT_MODEL = "gemini-2.5-flash"
MANIFEST_FILE = "manifest.json"


class PipelineSettings(BaseModel):
    """Directories, model parameters and credentials for a pipeline run."""

    books_dir: Path = Field(default=Path("src/books"), description="Source PDFs and manifest.json")
    output_dir: Path = Field(default=Path("src/lib"), description="Intermediate and final JSON/text artifacts")
    public_dir: Path = Field(default=Path("public"), description="Static assets (images, covers)")

    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_output_tokens: int = 65000
    max_turns: int = Field(default=50, ge=1)

    gemini_api_key: str = ""

    model_config = {
        "frozen": True,
    }

    @field_validator("books_dir", "output_dir", "public_dir")
    @classmethod
    def expand_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @field_validator("gemini_api_key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        return v.strip()

    @property
    def manifest_path(self) -> Path:
        return self.books_dir / MANIFEST_FILE

    @property
    def covers_dir(self) -> Path:
        return self.public_dir / "covers"

    def require_api_key(self) -> str:
        """Return the chat-service credential or fail loudly."""
        if not self.gemini_api_key:
            raise ConfigError(
                f"{API_KEY_ENV} is not set. Export it or add it to a .env file."
            )
        return self.gemini_api_key

    def paths_for(self, entry: ManifestEntry) -> "BookPaths":
        return BookPaths.derive(self, entry)


class BookPaths(BaseModel):
    """Every artifact location for one book, derived from its filename."""

    identifier: str
    source_pdf: Path
    images_dir: Path
    covers_dir: Path
    analysis_file: Path
    reconstructed_file: Path
    log_file: Path
    final_file: Path

    @classmethod
    def derive(cls, settings: PipelineSettings, entry: ManifestEntry) -> "BookPaths":
        ident = entry.identifier
        return cls(
            identifier=ident,
            source_pdf=settings.books_dir / entry.filename,
            images_dir=settings.public_dir / f"{ident}-images",
            covers_dir=settings.covers_dir,
            analysis_file=settings.output_dir / f"{ident}-analysis.json",
            reconstructed_file=settings.output_dir / f"{ident}-reconstructed.txt",
            log_file=settings.output_dir / f"{ident}-structured.log.jsonl",
            final_file=settings.output_dir / f"oer-library-{ident}.json",
        )

    @property
    def cover_file(self) -> Path:
        return self.covers_dir / f"{self.identifier}.png"


def load_settings(**overrides) -> PipelineSettings:
    """Build settings from the environment (and .env), then apply overrides.

    Overrides set to None are ignored so CLI options can be passed straight through.
    """
    load_dotenv(find_dotenv(usecwd=True))
    values = {"gemini_api_key": os.environ.get(API_KEY_ENV, "")}
    values.update({k: v for k, v in overrides.items() if v is not None})
    return PipelineSettings(**values)
