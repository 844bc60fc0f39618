"""Shared ordering contract between placeholder numbering and image files.

Placeholders are numbered 1..N in the order images are met during reconstruction;
the finalizer maps placeholder ``n`` to the ``n``-th content image file under
``natural_sort_key``. Both sides import from here so the two orders cannot drift.
"""

import re
from pathlib import Path

PLACEHOLDER_TEMPLATE = "[IMAGE_PLACEHOLDER_{n}]"

# Bracketed form first; the bare form covers tokens the model unwrapped
PLACEHOLDER_PATTERN = re.compile(r"\[IMAGE_PLACEHOLDER_(\d+)\]|\bIMAGE_PLACEHOLDER_(\d+)\b")

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif")

_DIGITS = re.compile(r"(\d+)")


def format_placeholder(n: int) -> str:
    return PLACEHOLDER_TEMPLATE.format(n=n)


def natural_sort_key(name: str) -> tuple:
    """Case-insensitive key comparing digit runs numerically.

    Examples:
        book-img-2.png < book-img-10.png
        Book-img-001.jpg == book-img-001.JPG (ties broken by the raw name)
    """
    parts = _DIGITS.split(name.lower())
    key = tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in parts if part != "")
    return key, name


def list_content_images(images_dir: Path) -> list[Path]:
    """Content image files in placeholder order."""
    if not images_dir.is_dir():
        return []
    files = [p for p in images_dir.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES]
    return sorted(files, key=lambda p: natural_sort_key(p.name))
