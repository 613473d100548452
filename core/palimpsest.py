"""
删除追踪 (Palimpsest)
每次输入时比较前后两版正文，记录被删除的片段以便恢复。
片段不依附于撤销历史，只有恢复或清空时才会移除。
"""
import logging
import uuid
from typing import List, Optional, Tuple

from core.schemas import PalimpsestFragment

logger = logging.getLogger(__name__)

# 长度不超过 1 的删除 (日常退格) 不记录
DEFAULT_MIN_LENGTH = 2


def find_deleted_span(before: str, after: str) -> Optional[Tuple[int, str]]:
    """
    计算从 before 到 after 被删除的连续片段。

    先求最长公共前缀 p，再求最长公共后缀 s (限制 p 与 s 不重叠)，
    被删除的文字为 before[p : len(before) - s]。

    Returns:
        (在 before 中的偏移, 被删除的文字)；after 不比 before 短时返回 None。
    """
    if len(after) >= len(before):
        return None

    limit = len(after)
    prefix = 0
    while prefix < limit and before[prefix] == after[prefix]:
        prefix += 1

    suffix = 0
    max_suffix = limit - prefix
    while suffix < max_suffix and before[-1 - suffix] == after[-1 - suffix]:
        suffix += 1

    return prefix, before[prefix:len(before) - suffix]


class PalimpsestStore:
    """所有章节的删除片段 (扁平集合，按章节过滤)"""

    def __init__(self, min_length: int = DEFAULT_MIN_LENGTH):
        self.min_length = min_length
        self._fragments: List[PalimpsestFragment] = []

    def __len__(self):
        return len(self._fragments)

    def fragments(self, chapter_id: Optional[str] = None) -> List[PalimpsestFragment]:
        if chapter_id is None:
            return list(self._fragments)
        return [f for f in self._fragments if f.chapter_id == chapter_id]

    def get(self, fragment_id: str) -> Optional[PalimpsestFragment]:
        return next((f for f in self._fragments if f.id == fragment_id), None)

    def record(self, chapter_id: str, before: str, after: str,
               cursor: Optional[int] = None) -> Optional[PalimpsestFragment]:
        """
        比较前后正文，必要时新增一个片段。

        Args:
            cursor: 删除发生时的光标偏移；缺省时使用删除片段的起始偏移。
        """
        span = find_deleted_span(before, after)
        if span is None:
            return None
        offset, deleted = span
        if len(deleted) < self.min_length:
            return None

        fragment = PalimpsestFragment(
            id=str(uuid.uuid4()),
            chapter_id=chapter_id,
            text=deleted,
            position=offset if cursor is None else cursor,
        )
        self._fragments.append(fragment)
        logger.debug(f"记录删除片段 {fragment.id}: {len(deleted)} 个字符 @ {fragment.position}")
        return fragment

    def restore(self, fragment_id: str, current_text: str) -> Tuple[str, PalimpsestFragment]:
        """
        将片段插回当前正文的 min(position, len(text)) 处，并移除该片段。

        Returns:
            (新的正文, 被恢复的片段)
        """
        fragment = self.get(fragment_id)
        if fragment is None:
            raise KeyError(f"删除片段不存在: {fragment_id}")
        position = min(fragment.position, len(current_text))
        restored = current_text[:position] + fragment.text + current_text[position:]
        self._fragments.remove(fragment)
        return restored, fragment

    def discard(self, fragment_id: str) -> bool:
        fragment = self.get(fragment_id)
        if fragment is None:
            return False
        self._fragments.remove(fragment)
        return True

    def clear(self, chapter_id: Optional[str] = None):
        if chapter_id is None:
            self._fragments = []
        else:
            self._fragments = [f for f in self._fragments if f.chapter_id != chapter_id]
