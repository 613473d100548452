"""
内容会话 (Content Session)
独占当前打开的章节正文 (ChapterContent)，负责字数、脏标记与会话字数统计。
其他组件通过只读属性拉取状态，不存在隐式的全局订阅。
"""
import logging
import time
from typing import Optional

from core.schemas import ChapterContent, SessionState, utc_now_iso
from core.text_utils import count_words

logger = logging.getLogger(__name__)


class ContentSession:
    """
    当前打开章节的内存缓冲区。

    is_dirty 当且仅当内存中的正文与该章节最后一次成功持久化的正文不同。
    """

    def __init__(self):
        self.chapter: Optional[ChapterContent] = None
        self.state = SessionState()
        self._persisted_text: Optional[str] = None

    # --- 只读视图 ---

    @property
    def active_chapter_id(self) -> Optional[str]:
        return self.chapter.id if self.chapter else None

    @property
    def is_dirty(self) -> bool:
        return self.state.is_dirty

    @property
    def text(self) -> str:
        return self.chapter.text if self.chapter else ""

    # --- 生命周期 ---

    def reset(self):
        """打开新项目时重新初始化会话状态"""
        self.chapter = None
        self._persisted_text = None
        self.state = SessionState(session_start_time=time.time())

    def open(self, chapter: ChapterContent):
        """替换当前章节，清除脏标记，并以章节正文为新的比较基线。"""
        chapter.word_count = count_words(chapter.text)
        self.chapter = chapter
        self._persisted_text = chapter.text
        self.state.active_chapter_id = chapter.id
        self.state.is_dirty = False
        logger.debug(f"已打开章节 {chapter.id} ({chapter.word_count} 字)")

    def clear(self):
        """丢弃当前章节缓冲区 (例如节点被删除)"""
        if self.chapter is not None:
            logger.debug(f"已关闭章节 {self.chapter.id}")
        self.chapter = None
        self._persisted_text = None
        self.state.active_chapter_id = None
        self.state.is_dirty = False

    # --- 变更 ---

    def mutate(self, new_text: str) -> int:
        """
        每次按键调用一次，永不阻塞。

        Returns:
            本次计入 session_word_count 的字数增量 (>= 0)。
        """
        if self.chapter is None:
            return 0
        old_count = self.chapter.word_count
        new_count = count_words(new_text)
        delta = max(0, new_count - old_count)

        self.chapter.text = new_text
        self.chapter.word_count = new_count
        self.chapter.modified_at = utc_now_iso()
        self.state.is_dirty = new_text != self._persisted_text
        self.state.session_word_count += delta
        return delta

    def mark_clean(self, chapter_id: Optional[str] = None, persisted_text: Optional[str] = None):
        """
        仅在确认持久化成功后调用。

        传入 chapter_id / persisted_text 时，只有在它们与当前缓冲区一致时才会记录：
        保存期间继续输入或已切换章节，都不会错误地清除脏标记。
        """
        if self.chapter is None:
            return
        if chapter_id is not None and chapter_id != self.chapter.id:
            return
        if persisted_text is None:
            persisted_text = self.chapter.text
        self._persisted_text = persisted_text
        self.state.is_dirty = self.chapter.text != persisted_text
        self.state.last_saved_at = time.time()
        self.state.last_save_error = None

    def mark_save_failed(self, message: str):
        self.state.last_save_error = message

    # --- 元数据同步 (由稿件树调用) ---

    def sync_title(self, chapter_id: str, title: str):
        if self.chapter is not None and self.chapter.id == chapter_id:
            self.chapter.title = title

    def sync_metadata(self, chapter_id: str, **fields):
        if self.chapter is None or self.chapter.id != chapter_id:
            return
        for name, value in fields.items():
            setattr(self.chapter, name, value)
