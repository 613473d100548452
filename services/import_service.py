"""
导入服务 (Import Service)
把粘贴或导入的整篇文档按标题或场景分隔符切分成候选章节，并写入项目。
"""
from __future__ import annotations
import asyncio
import logging
import os
import re
from typing import List, Optional, TYPE_CHECKING

from core.schemas import ImportedChapter, ManuscriptNode

if TYPE_CHECKING:
    from services.editor_service import EditorSession

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
SINGLE_CHAPTER_TITLE = "Imported Chapter"

HEADING_PATTERN = re.compile(r"^#{1,2}[ \t]+(\S.*?)[ \t]*$")
SCENE_BREAK_PATTERN = re.compile(r"^[ \t]*(?:\*{3,}|-{3,}|#{3,})[ \t]*$")

STRATEGY_ALIASES = {
    "heading": "heading",
    "scene_break": "scene_break",
    "sceneBreak": "scene_break",
    "break": "scene_break",
    "single": "single",
}


def _split_by_headings(lines: List[str]) -> List[ImportedChapter]:
    chapters: List[ImportedChapter] = []
    title = UNTITLED
    buffer: List[str] = []

    def flush():
        content = "\n".join(buffer).strip()
        if content:
            chapters.append(ImportedChapter(title=title, content=content))

    for line in lines:
        match = HEADING_PATTERN.match(line)
        if match:
            flush()
            title = match.group(1).strip()
            buffer = []
        else:
            buffer.append(line)
    flush()
    return chapters


def _split_by_scene_breaks(lines: List[str]) -> List[ImportedChapter]:
    segments: List[List[str]] = [[]]
    for line in lines:
        if SCENE_BREAK_PATTERN.match(line):
            segments.append([])
        else:
            segments[-1].append(line)
    contents = [c for c in ("\n".join(s).strip() for s in segments) if c]
    return [ImportedChapter(title=f"Chapter {i}", content=c) for i, c in enumerate(contents, start=1)]


def segment_document(text: str, strategy: str = "heading", title: Optional[str] = None) -> List[ImportedChapter]:
    """
    按策略切分文档。

    Args:
        text: 原始文本。
        strategy: heading / scene_break (sceneBreak) / single。
        title: single 策略下使用的章节标题。

    Returns:
        候选章节列表，永远不为空：切分不出任何非空片段时，整篇作为一个无标题章节返回。
    """
    try:
        strategy = STRATEGY_ALIASES[strategy]
    except KeyError:
        raise ValueError(f"未知的切分策略: {strategy}") from None

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = text.split("\n")
    if strategy == "heading":
        chapters = _split_by_headings(lines)
    elif strategy == "scene_break":
        chapters = _split_by_scene_breaks(lines)
    else:
        chapters = [ImportedChapter(title=title or SINGLE_CHAPTER_TITLE, content=text)]

    if not chapters:
        chapters = [ImportedChapter(title=UNTITLED, content=text)]
    logger.debug(f"按 {strategy} 切分出 {len(chapters)} 个章节")
    return chapters


def read_import_file(path: str) -> str:
    """读取要导入的文本或 Markdown 文件"""
    with open(path, "r", encoding="utf-8-sig") as f:
        return f.read()


def title_from_path(path: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    return stem.replace("_", " ").replace("-", " ").strip() or SINGLE_CHAPTER_TITLE


async def import_chapters(editor: "EditorSession", chapters: List[ImportedChapter],
                          parent_id: Optional[str] = None) -> List[ManuscriptNode]:
    """
    为每个选中的候选章节创建章节、写入正文并加入稿件树。
    """
    created: List[ManuscriptNode] = []
    for chapter in chapters:
        if not chapter.selected:
            continue
        node = await editor.create_chapter(chapter.title, parent_id=parent_id, open_chapter=False)
        await asyncio.to_thread(editor.backend.save_chapter, editor.project_path, node.id, chapter.content)
        editor.refresh_word_count(node.id, chapter.content)
        created.append(node)
    if created:
        await editor.persist_structure()
    logger.info(f"已导入 {len(created)} 个章节")
    return created
