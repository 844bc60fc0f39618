"""Data models."""

from oer_ingest.models.book import (
    FinalSection,
    ManifestEntry,
    StructuredSection,
)
from oer_ingest.models.elements import (
    ElementKind,
    PositionedElement,
)
from oer_ingest.models.output import (
    BookOutcome,
    BookStatus,
    RunSummary,
    StructuringResult,
    StructuringStatus,
)

__all__ = [
    # Layout models
    "ElementKind",
    "PositionedElement",
    # Book models
    "ManifestEntry",
    "StructuredSection",
    "FinalSection",
    # Result models
    "StructuringStatus",
    "StructuringResult",
    "BookStatus",
    "BookOutcome",
    "RunSummary",
]
