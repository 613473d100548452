"""
稿件搜索服务 (Search Service)
跨章节全文搜索 (读取已持久化的章节文件) 以及当前章节内的查找与替换。
"""
from __future__ import annotations
import asyncio
import logging
import re
from typing import List, Optional, Pattern, Tuple

from core.backend import PersistenceBackend
from core.exceptions import ChapterNotFoundError, InvalidPatternError
from core.manuscript_tree import ManuscriptTree
from core.schemas import ChapterContent, SearchMatch, SearchResult
from core.text_utils import strip_front_matter

logger = logging.getLogger(__name__)

MAX_MATCHES_PER_CHAPTER = 100
MAX_FIND_MATCHES = 10000


def compile_query(query: str, case_sensitive: bool = False, use_regex: bool = False) -> Pattern:
    """
    将搜索词编译为正则。非正则模式下先转义。

    Raises:
        InvalidPatternError: 正则模式下的表达式无法编译。
    """
    flags = 0 if case_sensitive else re.IGNORECASE
    pattern = query if use_regex else re.escape(query)
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise InvalidPatternError(f"无效的正则表达式 {query!r}: {e}") from e


def search_text(text: str, pattern: Pattern, max_matches: int = MAX_MATCHES_PER_CHAPTER) -> List[SearchMatch]:
    """逐行匹配，行号从 1 开始，start/end 为行内偏移。空匹配被忽略。"""
    matches: List[SearchMatch] = []
    for line_number, line in enumerate(text.split("\n"), start=1):
        line = line.rstrip("\r")
        for m in pattern.finditer(line):
            if m.start() == m.end():
                continue
            matches.append(SearchMatch(line_number=line_number, line_content=line, start=m.start(), end=m.end()))
            if len(matches) >= max_matches:
                return matches
    return matches


async def search_manuscript(
    backend: PersistenceBackend,
    project_path: str,
    tree: ManuscriptTree,
    query: str,
    case_sensitive: bool = False,
    use_regex: bool = False,
    active_chapter: Optional[ChapterContent] = None,
    max_matches: int = MAX_MATCHES_PER_CHAPTER,
) -> List[SearchResult]:
    """
    按 order 遍历所有章节节点并搜索。

    除当前打开的章节使用内存中的正文外，其余章节都读取最后一次保存的文件，
    并在匹配前去除 front matter。尚未保存的章节会被静默跳过。
    """
    if not query:
        return []
    try:
        pattern = compile_query(query, case_sensitive, use_regex)
    except InvalidPatternError as e:
        logger.warning(f"搜索词无效，返回空结果: {e}")
        return []

    results: List[SearchResult] = []
    for chapter_id in tree.chapter_ids_in_order():
        if active_chapter is not None and active_chapter.id == chapter_id:
            text = active_chapter.text
        else:
            try:
                raw = await asyncio.to_thread(backend.read_chapter_raw, project_path, chapter_id)
            except (ChapterNotFoundError, OSError) as e:
                logger.debug(f"跳过无法读取的章节 {chapter_id}: {e}")
                continue
            text = strip_front_matter(raw)

        matches = search_text(text, pattern, max_matches)
        if matches:
            # 节点可能在读取期间被删除
            if chapter_id not in tree:
                continue
            results.append(SearchResult(chapter_id=chapter_id, chapter_title=tree.get(chapter_id).title, matches=matches))

    logger.info(f"搜索 {query!r}: {sum(len(r.matches) for r in results)} 处匹配，涉及 {len(results)} 个章节")
    return results


# --- 当前章节的查找与替换 ---

def find_in_text(text: str, query: str, case_sensitive: bool = False, use_regex: bool = False,
                 limit: int = MAX_FIND_MATCHES) -> List[Tuple[int, int]]:
    """返回全文中的 (start, end) 匹配区间；无效的正则返回空列表。"""
    if not query or not text:
        return []
    try:
        pattern = compile_query(query, case_sensitive, use_regex)
    except InvalidPatternError as e:
        logger.debug(f"查找词无效: {e}")
        return []
    spans = []
    for m in pattern.finditer(text):
        if m.start() == m.end():
            continue
        spans.append((m.start(), m.end()))
        if len(spans) >= limit:
            break
    return spans


def replace_match(text: str, span: Tuple[int, int], replacement: str) -> str:
    start, end = span
    return text[:start] + replacement + text[end:]


def replace_all(text: str, query: str, replacement: str, case_sensitive: bool = False,
                use_regex: bool = False) -> Tuple[str, int]:
    """
    替换全部匹配。

    Returns:
        (新文本, 替换次数)。查找词或替换模板无效时原样返回，次数为 0。
    """
    if not query or not text:
        return text, 0
    try:
        pattern = compile_query(query, case_sensitive, use_regex)
    except InvalidPatternError as e:
        logger.debug(f"替换失败: {e}")
        return text, 0
    if not use_regex:
        return pattern.subn(lambda _m: replacement, text)
    try:
        return pattern.subn(replacement, text)
    except re.error as e:
        logger.debug(f"替换模板无效 {replacement!r}: {e}")
        return text, 0
