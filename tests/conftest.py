from __future__ import annotations

import copy
import time
import uuid
from typing import Dict, List, Optional

import pytest

from core.backend import PersistenceBackend
from core.exceptions import ChapterNotFoundError, PersistFailure
from core.schemas import ChapterContent, ManuscriptNode, ManuscriptStructure, ProjectMetadata
from core.text_utils import count_words

TEST_CONFIG = {
    "autosave": {"quiet_period": 0.05},
    "search": {"max_matches_per_chapter": 100},
    "palimpsest": {"min_length": 2},
    "editor": {"smart_punctuation": False},
}


class MemoryBackend(PersistenceBackend):
    """In-memory backend that records every save."""

    def __init__(self, root_title: str = "Book") -> None:
        self.root_id = "root"
        self.structure = ManuscriptStructure(
            root=self.root_id,
            nodes={self.root_id: ManuscriptNode(id=self.root_id, title=root_title, kind="book")},
            order=[self.root_id],
        )
        self.chapters: Dict[str, ChapterContent] = {}
        self.saves: List[tuple] = []
        self.snapshots: List[str] = []
        self.fail_saves = False

    def add_saved_chapter(self, title: str, text: str, parent_id: Optional[str] = None) -> str:
        node = self.create_chapter("/mem", title, parent_id)
        self.chapters[node.id].text = text
        return node.id

    def read_chapter_raw(self, project_path: str, chapter_id: str) -> str:
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(chapter_id)
        return f"---\nid: {chapter.id}\ntitle: {chapter.title}\n---\n\n{chapter.text}"

    def load_chapter(self, project_path: str, chapter_id: str) -> ChapterContent:
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(chapter_id)
        return copy.deepcopy(chapter)

    def save_chapter(self, project_path: str, chapter_id: str, text: str) -> None:
        if self.fail_saves:
            raise PersistFailure("disk full")
        self.saves.append((chapter_id, text))
        chapter = self.chapters.setdefault(chapter_id, ChapterContent(id=chapter_id, title="Untitled"))
        chapter.text = text
        chapter.word_count = count_words(text)

    def create_chapter(self, project_path: str, title: str, parent_id: Optional[str] = None) -> ManuscriptNode:
        chapter_id = str(uuid.uuid4())
        self.chapters[chapter_id] = ChapterContent(id=chapter_id, title=title)
        node = ManuscriptNode(id=chapter_id, title=title, kind="chapter")
        self.structure.nodes[chapter_id] = node
        self.structure.order.append(chapter_id)
        self.structure.nodes[parent_id or self.root_id].children.append(chapter_id)
        return copy.deepcopy(node)

    def rename_chapter(self, project_path: str, chapter_id: str, new_title: str) -> None:
        if chapter_id in self.chapters:
            self.chapters[chapter_id].title = new_title

    def delete_chapter(self, project_path: str, chapter_id: str) -> None:
        self.chapters.pop(chapter_id, None)

    def create_snapshot(self, project_path: str, name: str) -> str:
        filename = f"{len(self.snapshots):04d}-{name}.json"
        self.snapshots.append(filename)
        return filename

    def load_structure(self, project_path: str) -> ManuscriptStructure:
        return copy.deepcopy(self.structure)

    def save_structure(self, project_path: str, structure: ManuscriptStructure) -> None:
        self.structure = copy.deepcopy(structure)

    def load_metadata(self, project_path: str) -> ProjectMetadata:
        return ProjectMetadata(title="Book", author="Ada")


class SlowBackend(MemoryBackend):
    """Backend whose chapter writes take long enough to overlap later operations."""

    delay = 0.2

    def save_chapter(self, project_path: str, chapter_id: str, text: str) -> None:
        time.sleep(self.delay)
        super().save_chapter(project_path, chapter_id, text)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def slow_backend() -> SlowBackend:
    return SlowBackend()


@pytest.fixture
def config() -> dict:
    return copy.deepcopy(TEST_CONFIG)
