"""Data models for positioned page content."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ElementKind(str, Enum):
    """What a positioned element stands for."""

    TEXT = "text"
    IMAGE = "image"


class PositionedElement(BaseModel):
    """A text run or image placement with absolute page coordinates.

    ``y`` is measured from the top edge of the page. ``page`` is 1-based.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: ElementKind = Field(alias="type")
    page: int
    x: float
    y: float
    width: float
    height: float
    content: str | None = None  # Text runs only

    @property
    def bottom(self) -> float:
        return self.y + self.height
