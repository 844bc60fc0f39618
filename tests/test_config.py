from pathlib import Path

import pytest

from oer_ingest.config import load_settings
from oer_ingest.errors import ConfigError
from oer_ingest.models.book import ManifestEntry


def test_load_settings_reads_key_and_ignores_unset_overrides(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GEMINI_API_KEY", "  secret  ")

    settings = load_settings(model=None, max_turns=7, output_dir=tmp_path / "out")

    assert settings.gemini_api_key == "secret"
    assert settings.model == "gemini-2.5-flash"
    assert settings.max_turns == 7
    assert settings.output_dir == tmp_path / "out"
    assert settings.books_dir == Path("src/books")


def test_dotenv_file_supplies_key(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    (tmp_path / ".env").write_text("GEMINI_API_KEY=from-dotenv\n", encoding="utf-8")

    assert load_settings().require_api_key() == "from-dotenv"


def test_missing_key_raises_config_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(ConfigError):
        load_settings().require_api_key()


def test_book_paths_derive_from_filename_stem(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings(books_dir=Path("b"), output_dir=Path("o"), public_dir=Path("p"))

    paths = settings.paths_for(ManifestEntry(filename="intro-bio.pdf", title="Intro Bio"))

    assert paths.source_pdf == Path("b/intro-bio.pdf")
    assert paths.images_dir == Path("p/intro-bio-images")
    assert paths.cover_file == Path("p/covers/intro-bio.png")
    assert paths.analysis_file == Path("o/intro-bio-analysis.json")
    assert paths.reconstructed_file == Path("o/intro-bio-reconstructed.txt")
    assert paths.log_file == Path("o/intro-bio-structured.log.jsonl")
    assert paths.final_file == Path("o/oer-library-intro-bio.json")
