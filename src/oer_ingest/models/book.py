"""Data models for manifest input and structured book output."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ManifestEntry(BaseModel):
    """One book to ingest, as listed in manifest.json."""

    filename: str
    title: str
    year: int | str | None = None
    license: str | None = None
    source: str | None = None

    @property
    def identifier(self) -> str:
        """Per-book prefix used for every derived path (filename stem)."""
        return Path(self.filename).stem


class StructuredSection(BaseModel):
    """One subsection of one chapter, as returned by the model."""

    model_config = ConfigDict(populate_by_name=True)

    book_title: str = Field(default="", alias="bookTitle")
    chapter_title: str = Field(alias="chapterTitle")
    subsection_title: str = Field(default="", alias="subsectionTitle")
    content: str  # Markdown, placeholder tokens kept verbatim

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True)


class FinalSection(StructuredSection):
    """Structured section with resolved images and book-level metadata."""

    year: int | str | None = None
    license: str | None = None
    source: str | None = None
