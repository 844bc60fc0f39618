"""Data models for phase and run results."""

from enum import Enum

from pydantic import BaseModel, Field


class StructuringStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


class StructuringResult(BaseModel):
    """Outcome of one structuring session."""

    status: StructuringStatus
    turns: int
    sections_added: int
    total_sections: int
    reason: str = ""


class BookStatus(str, Enum):
    """Final state of a book after a pipeline run."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"  # Turn cap hit, partial output usable
    FAILED = "failed"  # Needs attention
    SKIPPED = "skipped"


class BookOutcome(BaseModel):
    """Per-book line of the run summary."""

    title: str
    filename: str
    status: BookStatus
    message: str = ""
    sections: int = 0
    skipped_phases: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Everything the run command reports back."""

    books: list[BookOutcome] = Field(default_factory=list)

    def count(self, status: BookStatus) -> int:
        return sum(1 for book in self.books if book.status == status)

    @property
    def has_failures(self) -> bool:
        return self.count(BookStatus.FAILED) > 0
