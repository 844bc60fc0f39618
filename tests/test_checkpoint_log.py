import pytest

from oer_ingest.checkpoint.log import CheckpointLog
from oer_ingest.errors import CheckpointError
from oer_ingest.models.book import StructuredSection


def _section(chapter: str, subsection: str = "", content: str = "text") -> StructuredSection:
    return StructuredSection(
        book_title="Biology",
        chapter_title=chapter,
        subsection_title=subsection,
        content=content,
    )


def test_empty_log_loads_nothing(tmp_path):
    log = CheckpointLog(tmp_path / "book-structured.log.jsonl")

    assert not log.exists()
    assert log.load_all() == ([], None)
    assert log.count() == 0


def test_append_writes_one_aliased_json_object_per_line(tmp_path):
    path = tmp_path / "lib" / "book-structured.log.jsonl"
    log = CheckpointLog(path)

    log.append([_section("Chapter 1", "1.1"), _section("Chapter 1", "1.2")])
    log.append([_section("Chapter 2", "2.1")])

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert lines[0].startswith('{"bookTitle":"Biology","chapterTitle":"Chapter 1"')

    records, last = log.load_all()
    assert [r.subsection_title for r in records] == ["1.1", "1.2", "2.1"]
    assert last == _section("Chapter 2", "2.1")


def test_append_nothing_does_not_create_file(tmp_path):
    log = CheckpointLog(tmp_path / "book-structured.log.jsonl")

    log.append([])

    assert not log.path.exists()


def test_torn_final_line_is_ignored_and_next_append_starts_fresh(tmp_path):
    log = CheckpointLog(tmp_path / "book-structured.log.jsonl")
    log.append([_section("Chapter 1")])
    with open(log.path, "a", encoding="utf-8") as f:
        f.write('{"bookTitle": "Biology", "chapterTi')

    records, last = log.load_all()
    assert len(records) == 1
    assert last.chapter_title == "Chapter 1"

    log.append([_section("Chapter 2")])

    records, last = log.load_all()
    assert [r.chapter_title for r in records] == ["Chapter 1", "Chapter 2"]


def test_corrupt_interior_line_raises(tmp_path):
    log = CheckpointLog(tmp_path / "book-structured.log.jsonl")
    log.path.write_text(
        _section("Chapter 1").to_json_line() + "\nnot json\n" + _section("Chapter 2").to_json_line() + "\n",
        encoding="utf-8",
    )

    with pytest.raises(CheckpointError):
        log.load_all()


def test_unterminated_complete_record_survives_next_append(tmp_path):
    log = CheckpointLog(tmp_path / "book-structured.log.jsonl")
    log.path.write_text(_section("Chapter 1").to_json_line(), encoding="utf-8")

    assert [r.chapter_title for r in log.load_all()[0]] == ["Chapter 1"]

    log.append([_section("Chapter 2")])

    records, last = log.load_all()
    assert [r.chapter_title for r in records] == ["Chapter 1", "Chapter 2"]
    assert last.chapter_title == "Chapter 2"
    assert len(log.path.read_text(encoding="utf-8").splitlines()) == 2
