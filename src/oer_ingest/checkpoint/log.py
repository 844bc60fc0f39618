"""Append-only checkpoint log of structured sections (one JSON object per line)."""

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from oer_ingest.errors import CheckpointError
from oer_ingest.models.book import StructuredSection

log = logging.getLogger(__name__)


class CheckpointLog:
    """Durable progress record for one book's structuring session.

    The file is only ever appended to. Everything the structuring agent needs to
    resume is reconstructible from it.
    """

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def append(self, records: list[StructuredSection]) -> None:
        """Append records, one line each, and flush them to disk."""
        if not records:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.exists():
            self._repair_tail()

        payload = "\n".join(record.to_json_line() for record in records) + "\n"
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())

        log.info(f"Checkpoint updated for chapter: \"{records[0].chapter_title}\" (+{len(records)} sections)")

    def load_all(self) -> tuple[list[StructuredSection], StructuredSection | None]:
        """Read every record. Returns (records, last record or None)."""
        if not self.path.exists():
            return [], None

        lines = [line for line in self.path.read_text(encoding="utf-8").split("\n") if line.strip()]
        records: list[StructuredSection] = []

        for line_num, line in enumerate(lines, 1):
            try:
                records.append(StructuredSection.model_validate_json(line))
            except ValidationError as e:
                if line_num == len(lines):
                    log.warning(f"Ignoring torn final line {line_num} in {self.path.name}")
                    break
                raise CheckpointError(f"{self.path}: line {line_num} is not a valid section record: {e}") from e

        return records, (records[-1] if records else None)

    def count(self) -> int:
        records, _ = self.load_all()
        return len(records)

    def _repair_tail(self) -> None:
        """Terminate the last line if it is a complete record, otherwise cut it
        (a write interrupted by a crash) back to the last newline."""
        with open(self.path, "rb+") as f:
            data = f.read()
            if data.endswith(b"\n"):
                return
            keep = data.rfind(b"\n") + 1
            tail = data[keep:]
            if not tail.strip() or self._is_record(tail):
                f.write(b"\n")
                return
            log.warning(f"Discarding {len(tail)} bytes of incomplete record at the end of {self.path.name}")
            f.truncate(keep)

    @staticmethod
    def _is_record(line: bytes) -> bool:
        try:
            StructuredSection.model_validate_json(line)
        except ValidationError:
            return False
        return True
