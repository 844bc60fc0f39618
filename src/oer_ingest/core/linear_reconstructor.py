"""Serialize positioned elements into one reading-order text stream."""

import logging
from functools import cmp_to_key
from pathlib import Path

from oer_ingest.core.artifacts import write_atomic
from oer_ingest.core.content_analyzer import load_elements
from oer_ingest.core.ordering import format_placeholder
from oer_ingest.models.elements import ElementKind, PositionedElement

log = logging.getLogger(__name__)

# Elements whose y differs by at most this much are on the same line
SAME_LINE_TOLERANCE = 5.0
# Vertical gap (strictly greater) that starts a new paragraph
PARAGRAPH_Y_THRESHOLD = 10.0

PARAGRAPH_BREAK = "\n\n"


def page_marker(page: int) -> str:
    return f"\n\n--- PAGE {page} ---\n\n"


def _reading_order(a: PositionedElement, b: PositionedElement) -> float:
    if a.page != b.page:
        return a.page - b.page
    if abs(a.y - b.y) > SAME_LINE_TOLERANCE:
        return a.y - b.y
    return a.x - b.x


def sort_reading_order(elements: list[PositionedElement]) -> list[PositionedElement]:
    """Page, then line (y within tolerance), then x. Single-column layouts only."""
    return sorted(elements, key=cmp_to_key(_reading_order))


def reconstruct(elements: list[PositionedElement]) -> tuple[str, int]:
    """Build the linear document.

    Returns:
        (text, number of image placeholders emitted)
    """
    parts: list[str] = []
    image_counter = 0
    previous: PositionedElement | None = None

    def ends_with_space() -> bool:
        return not parts or parts[-1][-1:].isspace()

    for element in sort_reading_order(elements):
        if previous is not None:
            if element.page > previous.page:
                parts.append(page_marker(element.page))
            elif element.y - previous.bottom > PARAGRAPH_Y_THRESHOLD:
                parts.append(PARAGRAPH_BREAK)

        if element.kind == ElementKind.TEXT:
            content = element.content or ""
            if not ends_with_space():
                parts.append(" ")
            if content:
                parts.append(content)
        else:
            image_counter += 1
            parts.append(f"{PARAGRAPH_BREAK}{format_placeholder(image_counter)}{PARAGRAPH_BREAK}")

        previous = element

    return "".join(parts), image_counter


class LinearReconstructor:
    """Turn an analysis artifact into the reconstruction artifact."""

    def __init__(self, analysis_file: Path):
        self.analysis_file = analysis_file

    def run(self, output_file: Path) -> int:
        elements = load_elements(self.analysis_file)
        text, image_count = reconstruct(elements)

        write_atomic(output_file, text)

        log.info(f"Linear reconstruction complete: {len(text):,} characters, {image_count} image placeholder(s)")
        return image_count
