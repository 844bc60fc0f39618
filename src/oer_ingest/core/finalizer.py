"""Resolve image placeholders and attach book metadata to checkpointed sections."""

import json
import logging
from pathlib import Path

from oer_ingest.checkpoint.log import CheckpointLog
from oer_ingest.core.artifacts import write_atomic
from oer_ingest.core.ordering import PLACEHOLDER_PATTERN, list_content_images
from oer_ingest.models.book import FinalSection, ManifestEntry, StructuredSection

log = logging.getLogger(__name__)


def image_reference(images_dir_name: str, image_name: str, book_title: str, number: int) -> str:
    return f'<img src="/{images_dir_name}/{image_name}" alt="{book_title} - Image {number}">'


def resolve_placeholders(
    content: str,
    image_names: list[str],
    images_dir_name: str,
    book_title: str,
) -> str:
    """Replace placeholder ``n`` with a reference to the ``n``-th image.

    Tokens pointing past the end of the listing are left as they are.
    """

    def replace(match) -> str:
        number = int(match.group(1) or match.group(2))
        index = number - 1
        if 0 <= index < len(image_names):
            return image_reference(images_dir_name, image_names[index], book_title, number)
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, content)


def finalize_sections(
    sections: list[StructuredSection],
    image_names: list[str],
    images_dir_name: str,
    entry: ManifestEntry,
) -> list[FinalSection]:
    """One FinalSection per checkpointed section, in log order."""
    return [
        FinalSection(
            book_title=entry.title,
            chapter_title=section.chapter_title,
            subsection_title=section.subsection_title,
            content=resolve_placeholders(section.content, image_names, images_dir_name, entry.title),
            year=entry.year,
            license=entry.license,
            source=entry.source,
        )
        for section in sections
    ]


class Finalizer:
    """Produce the final artifact for one book."""

    def __init__(self, checkpoint: CheckpointLog, images_dir: Path, entry: ManifestEntry):
        self.checkpoint = checkpoint
        self.images_dir = images_dir
        self.entry = entry

    def build(self) -> list[FinalSection]:
        sections, _ = self.checkpoint.load_all()
        image_names = [p.name for p in list_content_images(self.images_dir)]
        final = finalize_sections(sections, image_names, self.images_dir.name, self.entry)

        unresolved = sum(len(PLACEHOLDER_PATTERN.findall(s.content)) for s in final)
        if unresolved:
            log.warning(f"{unresolved} image placeholder(s) left unresolved ({len(image_names)} image files available)")
        return final

    def run(self, output_file: Path) -> list[FinalSection]:
        final = self.build()
        payload = [section.model_dump(mode="json", by_alias=True) for section in final]
        write_atomic(output_file, json.dumps(payload, indent=2, ensure_ascii=False))
        log.info(f"Finalization complete: {len(final)} sections written to {output_file.name}")
        return final
