from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from core.schemas import ImportedChapter
from services.editor_service import EditorSession
from services.import_service import import_chapters, read_import_file, segment_document, title_from_path


def _pairs(chapters: list[ImportedChapter]) -> list[tuple[str, str]]:
    return [(c.title, c.content) for c in chapters]


def test_heading_strategy_splits_on_h1_and_h2() -> None:
    chapters = segment_document("# A\nhello\n## B\nworld", "heading")
    assert _pairs(chapters) == [("A", "hello"), ("B", "world")]


def test_heading_strategy_keeps_preamble_and_ignores_h3() -> None:
    text = "intro text\n# One\nbody\n### not a chapter\nmore\n# Empty\n\n"
    chapters = segment_document(text)
    assert _pairs(chapters) == [
        ("Untitled", "intro text"),
        ("One", "body\n### not a chapter\nmore"),
    ]


def test_scene_break_strategy_numbers_chapters() -> None:
    text = "first\n***\nsecond\n---\n\n###\nthird"
    chapters = segment_document(text, "sceneBreak")
    assert _pairs(chapters) == [("Chapter 1", "first"), ("Chapter 2", "second"), ("Chapter 3", "third")]


def test_single_strategy_and_fallback() -> None:
    assert _pairs(segment_document("all of it", "single")) == [("Imported Chapter", "all of it")]
    assert _pairs(segment_document("x", "single", title="Mine")) == [("Mine", "x")]
    assert _pairs(segment_document("   \n", "heading")) == [("Untitled", "   \n")]
    assert len(segment_document("", "scene_break")) == 1


def test_crlf_is_normalised() -> None:
    chapters = segment_document("# A\r\nhello\r\n# B\r\nworld\r\n")
    assert _pairs(chapters) == [("A", "hello"), ("B", "world")]


def test_unknown_strategy_raises() -> None:
    with pytest.raises(ValueError):
        segment_document("text", "paragraph")


def test_read_import_file_and_title(tmp_path: Path) -> None:
    path = tmp_path / "my_first-draft.md"
    path.write_bytes("\ufeff# A\nhello".encode("utf-8"))
    assert read_import_file(str(path)) == "# A\nhello"
    assert title_from_path(str(path)) == "my first draft"


def test_import_chapters_creates_saved_nodes(backend, config) -> None:
    segments = segment_document("# A\nhello there\n# B\nworld")
    segments.append(ImportedChapter(title="Skipped", content="no", selected=False))

    async def scenario() -> EditorSession:
        editor = EditorSession(backend, config=config, record_history=False)
        await editor.open_project("/mem")
        nodes = await import_chapters(editor, segments)
        assert [n.title for n in nodes] == ["A", "B"]
        return editor

    editor = asyncio.run(scenario())
    titles = [editor.tree.get(i).title for i in editor.tree.chapter_ids_in_order()]
    assert titles == ["A", "B"]
    assert editor.total_word_count() == 3
    assert sorted(text for _, text in backend.saves) == ["hello there", "world"]
    assert editor.active_chapter is None
