import subprocess
from pathlib import Path

import pytest
from PIL import Image

from oer_ingest.core import asset_extractor
from oer_ingest.core.asset_extractor import (
    AssetExtractor,
    ImageInfo,
    cleanup_image_masks,
    find_mask_duplicates,
)
from oer_ingest.errors import AssetExtractionError


def _png(path: Path, mode: str, size: tuple[int, int]) -> Path:
    Image.new(mode, size).save(path)
    return path


def _completed(args, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr=stderr)


# ---------------------------------------------------------------------------
# Mask cleanup
# ---------------------------------------------------------------------------


def test_mask_next_to_color_image_is_removed(tmp_path):
    color = _png(tmp_path / "b-img-000.png", "RGB", (120, 80))
    mask = _png(tmp_path / "b-img-001.png", "L", (120, 80))
    other = _png(tmp_path / "b-img-002.png", "L", (64, 64))

    removed = cleanup_image_masks(tmp_path)

    assert removed == 1
    assert color.exists()
    assert not mask.exists()
    assert other.exists()


def test_palette_image_is_not_mistaken_for_a_mask(tmp_path):
    color = _png(tmp_path / "b-img-000.png", "RGB", (120, 80))
    indexed = _png(tmp_path / "b-img-001.png", "P", (120, 80))
    mask = _png(tmp_path / "b-img-002.png", "L", (120, 80))

    removed = cleanup_image_masks(tmp_path)

    assert removed == 1
    assert color.exists()
    assert indexed.exists()
    assert not mask.exists()


def test_single_image_groups_are_never_touched():
    images = [
        ImageInfo(path=Path("gray.png"), width=10, height=10, channels=1),
        ImageInfo(path=Path("rgb.png"), width=20, height=20, channels=3),
        ImageInfo(path=Path("rgba.png"), width=30, height=30, channels=4),
    ]

    assert find_mask_duplicates(images) == []


def test_group_without_color_image_is_kept():
    images = [
        ImageInfo(path=Path("a.png"), width=10, height=10, channels=1),
        ImageInfo(path=Path("b.png"), width=10, height=10, channels=1),
        ImageInfo(path=Path("c.png"), width=10, height=10, channels=2),
    ]

    assert find_mask_duplicates(images) == []


def test_only_single_channel_members_are_masks():
    images = [
        ImageInfo(path=Path("rgba.png"), width=10, height=10, channels=4),
        ImageInfo(path=Path("la.png"), width=10, height=10, channels=2),
        ImageInfo(path=Path("l.png"), width=10, height=10, channels=1),
    ]

    assert find_mask_duplicates(images) == [Path("l.png")]


def test_unreadable_files_are_ignored(tmp_path):
    (tmp_path / "b-img-000.png").write_bytes(b"not an image")
    _png(tmp_path / "b-img-001.png", "RGB", (5, 5))

    assert cleanup_image_masks(tmp_path) == 0
    assert (tmp_path / "b-img-000.png").exists()


# ---------------------------------------------------------------------------
# Poppler tool invocations
# ---------------------------------------------------------------------------


def test_cover_failure_is_not_fatal(tmp_path, monkeypatch):
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")
    monkeypatch.setattr(
        extractor, "_run_tool", lambda args: _completed(args, returncode=1, stderr="Syntax Error")
    )

    assert extractor.generate_cover(tmp_path / "covers") is None


def test_missing_cover_tool_is_not_fatal(tmp_path, monkeypatch):
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")

    def _raise(args):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(extractor, "_run_tool", _raise)

    assert extractor.generate_cover(tmp_path / "covers") is None


def test_cover_command_renders_first_page(tmp_path, monkeypatch):
    calls = []
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")
    monkeypatch.setattr(extractor, "_run_tool", lambda args: calls.append(args) or _completed(args))

    cover = extractor.generate_cover(tmp_path / "covers")

    assert cover == tmp_path / "covers" / "book.png"
    assert calls[0][:7] == ["pdftoppm", "-f", "1", "-l", "1", "-png", "-singlefile"]
    assert calls[0][-1] == str(tmp_path / "covers" / "book")


def _fake_pdfimages(returncode=0, stderr=""):
    def _run(args):
        assert args[:3] == ["pdfimages", "-j", "-png"]
        prefix = Path(args[-1])
        _png(prefix.parent / f"{prefix.name}-000.png", "RGB", (100, 100))
        _png(prefix.parent / f"{prefix.name}-001.png", "L", (100, 100))
        _png(prefix.parent / f"{prefix.name}-010.png", "RGB", (60, 60))
        _png(prefix.parent / f"{prefix.name}-002.png", "RGB", (70, 60))
        return _completed(args, returncode=returncode, stderr=stderr)

    return _run


def test_extract_content_images_replaces_directory(tmp_path, monkeypatch):
    images_dir = tmp_path / "public" / "book-images"
    images_dir.mkdir(parents=True)
    (images_dir / "stale.png").write_bytes(b"")
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")
    monkeypatch.setattr(extractor, "_run_tool", _fake_pdfimages())

    images = extractor.extract_content_images(images_dir)

    assert [p.name for p in images] == ["book-img-000.png", "book-img-002.png", "book-img-010.png"]
    assert not (images_dir / "stale.png").exists()
    assert not (tmp_path / "public" / ".book-images.partial").exists()


def test_nonzero_exit_with_only_warnings_is_success(tmp_path, monkeypatch):
    images_dir = tmp_path / "book-images"
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")
    monkeypatch.setattr(
        extractor, "_run_tool", _fake_pdfimages(returncode=1, stderr="Warning: bad annotation")
    )

    assert len(extractor.extract_content_images(images_dir)) == 3


@pytest.mark.parametrize("stderr", ["", "Syntax Error: Couldn't read xref table"])
def test_extraction_failure_is_fatal(tmp_path, monkeypatch, stderr):
    images_dir = tmp_path / "book-images"
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")
    monkeypatch.setattr(extractor, "_run_tool", lambda args: _completed(args, returncode=99, stderr=stderr))

    with pytest.raises(AssetExtractionError):
        extractor.extract_content_images(images_dir)
    assert not images_dir.exists()


def test_extraction_timeout_is_fatal(tmp_path, monkeypatch):
    def _timeout(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs.get("timeout"))

    monkeypatch.setattr(asset_extractor.subprocess, "run", _timeout)
    extractor = AssetExtractor(tmp_path / "book.pdf", "book")

    with pytest.raises(AssetExtractionError, match="timed out"):
        extractor.extract_content_images(tmp_path / "book-images")


def test_run_continues_without_cover(tmp_path, monkeypatch):
    def _run(args):
        if args[0] == "pdftoppm":
            return _completed(args, returncode=1, stderr="boom")
        return _fake_pdfimages()(args)

    extractor = AssetExtractor(tmp_path / "book.pdf", "book")
    monkeypatch.setattr(extractor, "_run_tool", _run)

    images = extractor.run(tmp_path / "book-images", tmp_path / "covers")

    assert len(images) == 3
