"""Atomic writes for phase artifacts.

Phases are skipped when their artifact exists, so an artifact must never be
visible half-written.
"""

from pathlib import Path


def write_atomic(path: Path, data: str | bytes) -> None:
    """Write to a sibling temp file, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_file = path.with_name(f"{path.name}.tmp")
    try:
        if isinstance(data, bytes):
            temp_file.write_bytes(data)
        else:
            temp_file.write_text(data, encoding="utf-8")
        temp_file.replace(path)
    except Exception:
        if temp_file.exists():
            temp_file.unlink()
        raise
