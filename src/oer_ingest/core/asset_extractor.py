"""Cover and content image extraction using the Poppler command-line tools."""

import logging
import shutil
import subprocess
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from oer_ingest.core.ordering import list_content_images
from oer_ingest.errors import AssetExtractionError

log = logging.getLogger(__name__)


@dataclass
class ImageInfo:
    """Dimensions and channel count of one extracted image file."""

    path: Path
    width: int
    height: int
    channels: int


def channel_count(img: Image.Image) -> int:
    """Bands after palette expansion: an indexed-colour image counts as RGB(A)."""
    if img.mode in ("P", "PA"):
        return 4 if img.mode == "PA" or "transparency" in img.info else 3
    return len(img.getbands())


def read_image_info(path: Path) -> ImageInfo | None:
    """Read size and channel count. Returns None for files Pillow cannot open."""
    try:
        with Image.open(path) as img:
            return ImageInfo(
                path=path,
                width=img.width,
                height=img.height,
                channels=channel_count(img),
            )
    except (UnidentifiedImageError, OSError):
        return None


def find_mask_duplicates(images: list[ImageInfo]) -> list[Path]:
    """Pick single-channel images that shadow a color image of the same size.

    Images are grouped by exact (width, height). A group is only touched when it
    has more than one image and at least one of them has 3+ channels; then every
    1-channel image in it is a soft-mask byproduct.
    """
    groups: dict[tuple[int, int], list[ImageInfo]] = defaultdict(list)
    for info in images:
        groups[(info.width, info.height)].append(info)

    doomed: list[Path] = []
    for group in groups.values():
        if len(group) < 2:
            continue
        if not any(info.channels >= 3 for info in group):
            continue
        doomed.extend(info.path for info in group if info.channels == 1)
    return doomed


def cleanup_image_masks(images_dir: Path) -> int:
    """Delete soft-mask duplicates from an extraction directory.

    Returns the number of files removed. Failures here are non-critical.
    """
    infos = []
    for path in sorted(images_dir.iterdir()):
        if not path.is_file():
            continue
        info = read_image_info(path)
        if info is not None:
            infos.append(info)

    removed = 0
    for path in find_mask_duplicates(infos):
        try:
            path.unlink()
            removed += 1
        except OSError as e:
            log.warning(f"Could not remove mask image {path.name}: {e}")

    if removed:
        log.info(f"Removed {removed} mask image(s) from {images_dir.name}")
    return removed


class AssetExtractor:
    """Pull the cover raster and embedded images out of a PDF."""

    COVER_TOOL = "pdftoppm"
    IMAGES_TOOL = "pdfimages"
    TIMEOUT_SECONDS = 600

    def __init__(self, pdf_path: Path, identifier: str):
        self.pdf_path = pdf_path
        self.identifier = identifier

    def _run_tool(self, args: list[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=self.TIMEOUT_SECONDS,
        )

    def generate_cover(self, covers_dir: Path) -> Path | None:
        """Render page 1 as ``<covers_dir>/<identifier>.png``.

        Best-effort: any failure is logged and None is returned.
        """
        log.info("Generating cover image...")
        output_base = covers_dir / self.identifier
        cmd = [
            self.COVER_TOOL,
            "-f", "1", "-l", "1",
            "-png", "-singlefile",
            str(self.pdf_path),
            str(output_base),
        ]

        try:
            covers_dir.mkdir(parents=True, exist_ok=True)
            result = self._run_tool(cmd)
        except (OSError, subprocess.SubprocessError) as e:
            log.warning(
                f"Could not generate cover for {self.pdf_path.name}: {e}. "
                f"Continuing without a cover (is {self.COVER_TOOL} from Poppler on PATH?)"
            )
            return None

        if result.returncode != 0:
            log.warning(
                f"Could not generate cover for {self.pdf_path.name}: "
                f"{(result.stderr or result.stdout or 'unknown error').strip()}. Continuing without a cover."
            )
            return None

        cover_path = output_base.with_suffix(".png")
        log.info(f"Cover image saved to {cover_path}")
        return cover_path

    def extract_content_images(self, images_dir: Path) -> list[Path]:
        """Extract every embedded image into a fresh ``images_dir``.

        Raises:
            AssetExtractionError: the extraction tool could not be run or failed
        """
        log.info("Extracting content images...")
        # Extract into a staging dir so images_dir only ever appears complete
        staging_dir = images_dir.with_name(f".{images_dir.name}.partial")
        shutil.rmtree(staging_dir, ignore_errors=True)
        staging_dir.mkdir(parents=True, exist_ok=True)

        prefix = staging_dir / f"{self.identifier}-img"
        cmd = [self.IMAGES_TOOL, "-j", "-png", str(self.pdf_path), str(prefix)]

        try:
            result = self._run_tool(cmd)
        except subprocess.TimeoutExpired as e:
            raise AssetExtractionError(
                f"{self.IMAGES_TOOL} timed out after {self.TIMEOUT_SECONDS}s"
            ) from e
        except OSError as e:
            raise AssetExtractionError(f"Failed to execute {self.IMAGES_TOOL}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            # Non-zero exit with only warnings on stderr still produced the images
            if not stderr or "error" in stderr.lower():
                raise AssetExtractionError(
                    f"{self.IMAGES_TOOL} exited with code {result.returncode}: {stderr or 'no output'}"
                )
            log.warning(f"{self.IMAGES_TOOL} reported warnings: {stderr}")

        try:
            cleanup_image_masks(staging_dir)
        except OSError as e:
            log.warning(f"Could not complete image mask cleanup: {e}")

        shutil.rmtree(images_dir, ignore_errors=True)
        staging_dir.rename(images_dir)
        return list_content_images(images_dir)

    def run(self, images_dir: Path, covers_dir: Path) -> list[Path]:
        """Cover (best-effort) then content images (mandatory)."""
        self.generate_cover(covers_dir)
        images = self.extract_content_images(images_dir)
        log.info(f"Asset extraction complete: {len(images)} content image(s)")
        return images
