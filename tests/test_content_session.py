from __future__ import annotations

from core.content_session import ContentSession
from core.schemas import ChapterContent


def _open(text: str = "one two") -> ContentSession:
    session = ContentSession()
    session.reset()
    session.open(ChapterContent(id="c1", title="One", text=text))
    return session


def test_open_counts_words_and_clears_dirty() -> None:
    session = _open("alpha  beta\ngamma")
    assert session.chapter.word_count == 3
    assert session.is_dirty is False
    assert session.state.active_chapter_id == "c1"


def test_mutate_counts_only_positive_deltas() -> None:
    session = _open("one two")
    assert session.mutate("one two three four") == 2
    assert session.mutate("one") == 0
    assert session.mutate("one five") == 1
    assert session.state.session_word_count == 3
    assert session.chapter.word_count == 2


def test_repeated_mutation_with_same_text_is_idempotent() -> None:
    session = _open("one")
    session.mutate("one two")
    before = session.state.session_word_count
    session.mutate("one two")
    session.mutate("one two")
    assert session.state.session_word_count == before
    assert session.chapter.word_count == 2


def test_dirty_tracks_difference_from_persisted_text() -> None:
    session = _open("draft")
    session.mutate("draft more")
    assert session.is_dirty
    session.mutate("draft")
    assert not session.is_dirty


def test_mark_clean_ignores_stale_confirmation() -> None:
    session = _open("a")
    session.mutate("a b")
    session.mutate("a b c")

    session.mark_clean("c1", "a b")
    assert session.is_dirty

    session.mark_clean("other", "a b c")
    assert session.is_dirty

    session.mark_clean("c1", "a b c")
    assert not session.is_dirty
    assert session.state.last_saved_at is not None


def test_mutate_without_open_chapter_is_noop() -> None:
    session = ContentSession()
    assert session.mutate("anything") == 0
    assert session.is_dirty is False


def test_reset_starts_a_new_session() -> None:
    session = _open("x")
    session.mutate("x y z")
    session.reset()
    assert session.chapter is None
    assert session.state.session_word_count == 0
