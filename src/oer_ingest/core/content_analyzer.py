"""Per-page content analysis: positioned text runs and image placements."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

# Suppress warnings about malformed PDF object references from PDF libraries
logging.getLogger("pdfminer").setLevel(logging.ERROR)
logging.getLogger("pypdf").setLevel(logging.ERROR)

import pdfplumber
import pypdf
from pydantic import TypeAdapter
from pypdf.errors import EmptyFileError, FileNotDecryptedError, PdfReadError
from pypdf.generic import ContentStream

from oer_ingest.core.artifacts import write_atomic
from oer_ingest.errors import AnalysisError
from oer_ingest.models.elements import ElementKind, PositionedElement

log = logging.getLogger(__name__)

Matrix = tuple[float, float, float, float, float, float]

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

# Images smaller than this on either axis are decorative glyphs/icons
MIN_IMAGE_SIZE = 50.0

# Guards against self-referencing Form XObjects
MAX_FORM_DEPTH = 12

ELEMENT_LIST = TypeAdapter(list[PositionedElement])


@dataclass
class TextItem:
    """A text run as placed on the page.

    ``transform`` is a 6-component matrix whose translation (e, f) is the run's
    anchor in bottom-left-origin page space.
    """

    text: str
    transform: Matrix
    width: float
    height: float


# =============================================================================
# Text items
# =============================================================================


def text_items_from_page(page) -> list[TextItem]:
    """Extract word runs from a pdfplumber page, anchored at their lower edge."""
    items = []
    page_height = float(page.height)

    for word in page.extract_words(use_text_flow=True):
        x0 = float(word["x0"])
        top = float(word["top"])
        bottom = float(word["bottom"])
        items.append(
            TextItem(
                text=word["text"],
                transform=(1.0, 0.0, 0.0, 1.0, x0, page_height - bottom),
                width=float(word["x1"]) - x0,
                height=bottom - top,
            )
        )

    return items


def text_elements(items: Iterable[TextItem], page_number: int, page_height: float) -> list[PositionedElement]:
    """One element per text item, flipped to top-left origin. No merging."""
    elements = []
    for item in items:
        tx, ty = item.transform[4], item.transform[5]
        elements.append(
            PositionedElement(
                kind=ElementKind.TEXT,
                content=item.text,
                page=page_number,
                x=tx,
                y=page_height - ty,
                width=item.width,
                height=item.height,
            )
        )
    return elements


# =============================================================================
# Paint operators
# =============================================================================


class XObjects(Protocol):
    """Named XObjects visible from one content stream."""

    def is_image(self, name: str) -> bool: ...

    def form(self, name: str) -> "tuple[Iterable[tuple[str, list]], XObjects] | None":
        """Operators and nested scope of a Form XObject, or None."""


def _as_matrix(operands: list) -> Matrix:
    values = [float(v) for v in operands[:6]]
    if len(values) != 6:
        raise ValueError(f"cm expects 6 operands, got {len(operands)}")
    return tuple(values)  # type: ignore[return-value]


def image_elements(
    operations: Iterable[tuple[str, list]],
    page_number: int,
    page_height: float,
    xobjects: XObjects,
) -> list[PositionedElement]:
    """Walk paint operators with a save/restore matrix stack.

    ``cm`` replaces the current matrix instead of composing with it, which is
    only correct for unnested, axis-aligned placements. Form XObjects are
    flattened into the walk: their operators run against the same stack.
    """
    elements = []
    stack: list[Matrix] = []
    current: Matrix = IDENTITY

    def walk(ops: Iterable[tuple[str, list]], scope: XObjects, depth: int) -> None:
        nonlocal current

        for operator, operands in ops:
            if operator == "q":
                stack.append(current)
            elif operator == "Q":
                current = stack.pop() if stack else IDENTITY
            elif operator == "cm":
                try:
                    current = _as_matrix(operands)
                except (TypeError, ValueError) as e:
                    log.debug(f"Page {page_number}: ignoring malformed cm operands: {e}")
            elif operator == "Do" and operands:
                name = str(operands[0])
                if scope.is_image(name):
                    element = _placed_image(current, page_number, page_height)
                    if element is not None:
                        elements.append(element)
                    continue

                form = scope.form(name)
                if form is None:
                    continue
                if depth >= MAX_FORM_DEPTH:
                    log.debug(f"Page {page_number}: form {name} nested too deeply, skipped")
                    continue
                form_ops, form_scope = form
                walk(form_ops, form_scope, depth + 1)

    walk(operations, xobjects, 0)
    return elements


def _placed_image(matrix: Matrix, page_number: int, page_height: float) -> PositionedElement | None:
    scale_x, _, _, scale_y, translate_x, translate_y = matrix
    width, height = abs(scale_x), abs(scale_y)
    if width < MIN_IMAGE_SIZE or height < MIN_IMAGE_SIZE:
        return None

    return PositionedElement(
        kind=ElementKind.IMAGE,
        page=page_number,
        x=translate_x,
        y=page_height - translate_y - height,
        width=width,
        height=height,
    )


def _decoded(operations: list) -> list[tuple[str, list]]:
    result = []
    for operands, operator in operations:
        if isinstance(operator, bytes):
            operator = operator.decode("latin-1")
        result.append((operator, operands))
    return result


def paint_operations(page: pypdf.PageObject) -> list[tuple[str, list]]:
    """(operator, operands) pairs from a pypdf page's content stream."""
    contents = page.get_contents()
    if contents is None:
        return []
    return _decoded(contents.operations)


class ResourceXObjects:
    """XObjects of one pypdf /Resources dictionary.

    A form without its own /Resources inherits the enclosing scope.
    """

    def __init__(self, reader: pypdf.PdfReader, resources, parent: "ResourceXObjects | None" = None):
        self.reader = reader
        self._objects: dict[str, object] = dict(parent._objects) if parent is not None else {}

        if resources is None:
            return
        xobjects = resources.get_object().get("/XObject")
        if xobjects is None:
            return
        for name, ref in xobjects.get_object().items():
            try:
                self._objects[str(name)] = ref.get_object()
            except (AttributeError, PdfReadError):
                continue

    @classmethod
    def for_page(cls, reader: pypdf.PdfReader, page: pypdf.PageObject) -> "ResourceXObjects":
        return cls(reader, page.get("/Resources"))

    def _subtype(self, name: str) -> str | None:
        obj = self._objects.get(name)
        if obj is None or not hasattr(obj, "get"):
            return None
        return obj.get("/Subtype")

    def is_image(self, name: str) -> bool:
        return self._subtype(name) == "/Image"

    def form(self, name: str) -> "tuple[list[tuple[str, list]], ResourceXObjects] | None":
        if self._subtype(name) != "/Form":
            return None
        stream = self._objects[name]
        try:
            operations = _decoded(ContentStream(stream, self.reader).operations)
        except PdfReadError as e:
            log.debug(f"Could not read form {name}: {e}")
            return None
        return operations, ResourceXObjects(self.reader, stream.get("/Resources"), parent=self)


# =============================================================================
# Analyzer
# =============================================================================


def save_elements(elements: list[PositionedElement], path: Path) -> None:
    write_atomic(path, ELEMENT_LIST.dump_json(elements, indent=2, by_alias=True, exclude_none=True))


def load_elements(path: Path) -> list[PositionedElement]:
    return ELEMENT_LIST.validate_json(path.read_bytes())


class ContentStreamAnalyzer:
    """Produce the page-ordered PositionedElement list for a PDF."""

    def __init__(self, pdf_path: Path):
        self.path = pdf_path

        try:
            self._reader = pypdf.PdfReader(str(pdf_path))
        except FileNotDecryptedError as e:
            raise AnalysisError("PDF is encrypted. Please decrypt first.") from e
        except EmptyFileError as e:
            raise AnalysisError("PDF file is empty.") from e
        except PdfReadError as e:
            raise AnalysisError(f"PDF appears corrupted: {e}") from e

    def analyze(self) -> list[PositionedElement]:
        elements: list[PositionedElement] = []

        with pdfplumber.open(str(self.path)) as pdf:
            for page_number, (plumber_page, pdf_page) in enumerate(
                zip(pdf.pages, self._reader.pages), start=1
            ):
                page_height = float(plumber_page.height)
                elements.extend(
                    text_elements(text_items_from_page(plumber_page), page_number, page_height)
                )

                elements.extend(
                    image_elements(
                        paint_operations(pdf_page),
                        page_number,
                        page_height,
                        ResourceXObjects.for_page(self._reader, pdf_page),
                    )
                )

        return elements

    def run(self, output_file: Path) -> list[PositionedElement]:
        """Analyze and write the analysis artifact."""
        elements = self.analyze()
        save_elements(elements, output_file)
        image_count = sum(1 for e in elements if e.kind == ElementKind.IMAGE)
        log.info(
            f"Content analysis complete: {len(elements)} elements, "
            f"{image_count} image placement(s)"
        )
        return elements
