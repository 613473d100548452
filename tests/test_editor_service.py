from __future__ import annotations

import asyncio
from typing import List

import pytest

from core.exceptions import ChapterNotFoundError, InvalidParentError, NodeNotFoundError, PersistFailure
from core.schemas import ManuscriptNode
from services.editor_service import EditorSession

QUIET = 0.05


def _editor(backend, config) -> EditorSession:
    return EditorSession(backend, config=config, record_history=False)


def test_typing_burst_produces_one_save_with_latest_text(backend, config) -> None:
    chapter_id = backend.add_saved_chapter("One", "")

    async def scenario() -> EditorSession:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(chapter_id)
        for text in ("H", "He", "Hel", "Hello", "Hello world"):
            editor.handle_input(text)
            await asyncio.sleep(QUIET / 5)
        assert editor.is_dirty
        await asyncio.sleep(QUIET * 4)
        return editor

    editor = asyncio.run(scenario())
    assert backend.saves == [(chapter_id, "Hello world")]
    assert not editor.is_dirty
    assert editor.state.session_word_count == 2
    assert editor.tree.get(chapter_id).word_count == 2
    assert backend.structure.nodes[chapter_id].word_count == 2


def test_failed_autosave_keeps_dirty_and_records_error(backend, config) -> None:
    chapter_id = backend.add_saved_chapter("One", "start")
    backend.fail_saves = True

    async def scenario() -> EditorSession:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(chapter_id)
        editor.handle_input("start again")
        await asyncio.sleep(QUIET * 3)
        return editor

    editor = asyncio.run(scenario())
    assert editor.is_dirty
    assert "disk full" in editor.state.last_save_error


def test_manual_save_raises_on_failure_and_snapshots_on_success(backend, config) -> None:
    chapter_id = backend.add_saved_chapter("One", "")

    async def scenario() -> None:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(chapter_id)
        editor.handle_input("words here")

        backend.fail_saves = True
        with pytest.raises(PersistFailure):
            await editor.save_now()
        assert editor.is_dirty

        backend.fail_saves = False
        snapshot = await editor.save_now()
        assert snapshot.endswith("manual.json")
        assert not editor.is_dirty
        assert not editor.autosave.pending

    asyncio.run(scenario())
    assert backend.saves == [(chapter_id, "words here")]


def test_switching_chapters_writes_dirty_text_to_old_chapter(backend, config) -> None:
    first = backend.add_saved_chapter("One", "alpha")
    second = backend.add_saved_chapter("Two", "beta")

    async def scenario() -> EditorSession:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(first)
        editor.handle_input("alpha edited")
        await editor.open_chapter(second)
        await editor.autosave.drain()
        await asyncio.sleep(QUIET * 3)
        return editor

    editor = asyncio.run(scenario())
    assert backend.saves == [(first, "alpha edited")]
    assert editor.active_chapter.id == second
    assert editor.active_chapter.text == "beta"
    assert not editor.is_dirty


def test_open_chapter_errors(backend, config) -> None:
    backend.structure.nodes["ghost"] = ManuscriptNode(id="ghost", title="Ghost")
    backend.structure.nodes["root"].children.append("ghost")
    backend.structure.order.append("ghost")

    async def scenario() -> None:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        with pytest.raises(ChapterNotFoundError):
            await editor.open_chapter("ghost")
        with pytest.raises(NodeNotFoundError):
            await editor.open_chapter("missing")

    asyncio.run(scenario())


def test_deletions_are_recorded_and_restorable(backend, config) -> None:
    chapter_id = backend.add_saved_chapter("One", "Hello cruel world")

    async def scenario() -> None:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(chapter_id)
        editor.handle_input("Hello world", cursor=6)
        fragments = editor.fragments()
        assert [f.text for f in fragments] == ["cruel "]

        restored = editor.restore_fragment(fragments[0].id)
        assert restored == "Hello cruel world"
        assert editor.fragments() == []
        assert not editor.is_dirty
        editor.autosave.cancel()

    asyncio.run(scenario())


def test_smart_punctuation_applies_on_input(backend, config) -> None:
    config["editor"]["smart_punctuation"] = True
    chapter_id = backend.add_saved_chapter("One", "")

    async def scenario() -> None:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(chapter_id)
        text, cursor = editor.handle_input('She said "', cursor=10)
        assert (text, cursor) == ("She said “", 10)
        text, cursor = editor.handle_input("She said “wait--", cursor=16)
        assert text == "She said “wait–"
        assert cursor == 15
        editor.autosave.cancel()

    asyncio.run(scenario())


def test_tree_operations_persist_structure(backend, config) -> None:
    async def scenario() -> EditorSession:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        part = await editor.add_container("Part One")
        chapter = await editor.create_chapter("Opening", parent_id=part.id)
        assert editor.active_chapter.id == chapter.id

        await editor.rename_node(chapter.id, "Prologue")
        assert editor.active_chapter.title == "Prologue"
        await editor.update_node_metadata(chapter.id, status="final")

        with pytest.raises(InvalidParentError):
            await editor.create_chapter("Orphan", parent_id="nope")

        removed = await editor.remove_node(part.id)
        assert set(removed) == {part.id, chapter.id}
        assert editor.active_chapter is None
        return editor

    editor = asyncio.run(scenario())
    assert list(backend.structure.nodes) == ["root"]
    assert backend.chapters == {}
    assert editor.total_word_count() == 0


def test_replace_all_marks_dirty(backend, config) -> None:
    chapter_id = backend.add_saved_chapter("One", "cat and cat")

    async def scenario() -> None:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(chapter_id)
        assert editor.replace_all("cat", "dog") == 2
        assert editor.active_chapter.text == "dog and dog"
        assert editor.is_dirty
        await editor.close()

    asyncio.run(scenario())
    assert backend.saves == [(chapter_id, "dog and dog")]


def test_search_uses_buffer_for_active_chapter(backend, config) -> None:
    first = backend.add_saved_chapter("One", "the wolf sleeps")
    second = backend.add_saved_chapter("Two", "no animals")

    async def scenario() -> None:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(second)
        editor.handle_input("a wolf appears")
        results = await editor.search("wolf")
        editor.autosave.cancel()
        assert [r.chapter_id for r in results] == [first, second]
        assert results[1].matches[0].line_content == "a wolf appears"

    asyncio.run(scenario())


def test_reopening_chapter_waits_for_switch_write(slow_backend, config) -> None:
    backend = slow_backend
    first = backend.add_saved_chapter("One", "alpha")
    second = backend.add_saved_chapter("Two", "beta")

    async def scenario() -> EditorSession:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(first)
        editor.handle_input("alpha edited")
        await editor.open_chapter(second)
        reopened = await editor.open_chapter(first)
        assert reopened.text == "alpha edited"
        assert not editor.is_dirty

        editor.handle_input("alpha edited!")
        await editor.close()
        return editor

    asyncio.run(scenario())
    assert backend.saves == [(first, "alpha edited"), (first, "alpha edited!")]
    assert backend.chapters[first].text == "alpha edited!"


def test_removing_chapter_during_autosave_leaves_no_file(slow_backend, config) -> None:
    backend = slow_backend
    first = backend.add_saved_chapter("One", "alpha")

    async def scenario() -> List[str]:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(first)
        editor.handle_input("alpha edited")
        # the autosave has fired and its write is still running
        await asyncio.sleep(QUIET * 2)
        removed = await editor.remove_node(first)
        await editor.close()
        return removed

    removed = asyncio.run(scenario())
    assert removed == [first]
    assert backend.saves == [(first, "alpha edited")]
    assert first not in backend.chapters
    assert first not in backend.structure.nodes


def test_removing_chapter_after_switch_leaves_no_file(slow_backend, config) -> None:
    backend = slow_backend
    first = backend.add_saved_chapter("One", "alpha")
    second = backend.add_saved_chapter("Two", "beta")

    async def scenario() -> EditorSession:
        editor = _editor(backend, config)
        await editor.open_project("/mem")
        await editor.open_chapter(first)
        editor.handle_input("alpha edited")
        await editor.open_chapter(second)
        await editor.remove_node(first)
        await editor.close()
        return editor

    editor = asyncio.run(scenario())
    assert first not in backend.chapters
    assert first not in editor.tree
    assert editor.active_chapter.id == second
