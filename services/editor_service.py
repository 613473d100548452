"""
编辑会话服务 (Editor Session)
系统的 Facade 层：每个打开的项目拥有一棵稿件树、一个内容会话、一个删除片段库和一个自动保存调度器，
由这里显式地把它们连接起来，不存在全局单例。

并发模型：所有状态只在事件循环中修改；handle_input 从不等待任何东西，
只有访问持久化后端的操作 (保存、打开、创建、搜索) 才会挂起，并在工作线程中执行。
"""
from __future__ import annotations
import asyncio
import logging
import os
import uuid
from typing import Dict, List, Optional, Set, Tuple

from config.loader import get_config, get_setting
from core.backend import PersistenceBackend
from core.content_session import ContentSession
from core.exceptions import InvalidParentError, PersistFailure, QuillbornError
from core.manuscript_tree import ManuscriptTree
from core.palimpsest import PalimpsestStore, DEFAULT_MIN_LENGTH
from core.project_manager import ProjectManager
from core.schemas import ChapterContent, ManuscriptNode, PalimpsestFragment, ProjectMetadata, SearchResult
from core.text_utils import apply_smart_punctuation, count_words
from infra.storage import sql_db
from services import search_service
from services.autosave import AutosaveScheduler, DEFAULT_QUIET_PERIOD

logger = logging.getLogger(__name__)


class EditorSession:
    """
    一个打开项目的编辑会话。

    Args:
        backend: 持久化后端。
        config: 配置字典，缺省时使用全局配置。
        smart_punctuation: 是否在输入时替换智能标点，缺省时读取配置。
        record_history: 保存成功后是否记录每日写作字数。
    """

    def __init__(self, backend: PersistenceBackend, config: Optional[dict] = None,
                 smart_punctuation: Optional[bool] = None, record_history: bool = True):
        self.backend = backend
        self.config = config if config is not None else get_config()
        self.smart_punctuation = (
            smart_punctuation if smart_punctuation is not None
            else bool(get_setting(self.config, "editor.smart_punctuation", True))
        )
        self.record_history = record_history
        self.max_matches = int(get_setting(self.config, "search.max_matches_per_chapter",
                                           search_service.MAX_MATCHES_PER_CHAPTER))

        self.project_path: Optional[str] = None
        self.metadata: Optional[ProjectMetadata] = None
        self.tree: Optional[ManuscriptTree] = None
        self.content = ContentSession()
        self.palimpsest = PalimpsestStore(int(get_setting(self.config, "palimpsest.min_length", DEFAULT_MIN_LENGTH)))
        self.autosave = AutosaveScheduler(
            self._autosave,
            quiet_period=float(get_setting(self.config, "autosave.quiet_period", DEFAULT_QUIET_PERIOD)),
        )
        # 章节 ID -> 尚未完成的后端写入
        self._writes: Dict[str, Set[asyncio.Future]] = {}

    # --- 只读视图 ---

    @property
    def state(self):
        return self.content.state

    @property
    def active_chapter(self) -> Optional[ChapterContent]:
        return self.content.chapter

    @property
    def is_dirty(self) -> bool:
        return self.content.is_dirty

    def _require_project(self):
        if self.tree is None or self.project_path is None:
            raise QuillbornError("尚未打开项目")

    # --- 项目 ---

    async def create_project(self, parent_dir: str, title: str, author: str = "") -> str:
        project_path = await asyncio.to_thread(ProjectManager.init_project_structure, parent_dir, title, author)
        await self.open_project(project_path)
        return project_path

    async def open_project(self, project_path: str):
        """
        打开项目并重新初始化会话状态。旧项目未保存的内容仍会被写出，不会被取消。
        """
        structure = await asyncio.to_thread(self.backend.load_structure, project_path)
        metadata = await asyncio.to_thread(self.backend.load_metadata, project_path)

        self._release_active()
        self.project_path = project_path
        self.metadata = metadata
        self.content.reset()
        self.tree = ManuscriptTree(structure, self.content)
        self.palimpsest.clear()
        logger.info(f"已打开项目 '{metadata.title}' ({project_path})，共 {len(structure.nodes)} 个节点")

    async def close(self):
        """关闭会话：写出未保存的内容并等待所有写入完成"""
        self._release_active()
        await self.autosave.drain()

    async def persist_structure(self):
        self._require_project()
        await asyncio.to_thread(self.backend.save_structure, self.project_path, self.tree.structure)

    def total_word_count(self) -> int:
        return self.tree.total_word_count() if self.tree else 0

    # --- 章节 ---

    async def open_chapter(self, chapter_id: str) -> ChapterContent:
        """
        打开章节。章节不存在时 ChapterNotFoundError 直接抛给调用方。
        """
        self._require_project()
        node = self.tree.get(chapter_id)
        if self.content.active_chapter_id == chapter_id:
            return self.content.chapter

        self._release_active()
        # 之前发出的写入完成前读取会拿到旧内容
        await self._wait_for_writes([chapter_id])
        chapter = await asyncio.to_thread(self.backend.load_chapter, self.project_path, chapter_id)
        chapter.title = node.title
        self.content.open(chapter)
        self.tree.update_word_count(chapter_id, chapter.word_count)
        return chapter

    async def create_chapter(self, title: str, parent_id: Optional[str] = None,
                             open_chapter: bool = True) -> ManuscriptNode:
        self._require_project()
        if parent_id is not None and parent_id not in self.tree:
            raise InvalidParentError(parent_id)
        created = await asyncio.to_thread(self.backend.create_chapter, self.project_path, title, parent_id)
        node = ManuscriptNode(id=created.id, title=created.title, kind="chapter")
        self.tree.add_node(node, parent_id)
        await self.persist_structure()
        if open_chapter:
            await self.open_chapter(node.id)
        return node

    async def add_container(self, title: str, kind: str = "part", parent_id: Optional[str] = None) -> ManuscriptNode:
        """添加没有独立正文文件的节点 (part / scene)"""
        self._require_project()
        if kind == "chapter":
            raise ValueError("章节请使用 create_chapter 创建")
        node = self.tree.add_node(ManuscriptNode(id=str(uuid.uuid4()), title=title, kind=kind), parent_id)
        await self.persist_structure()
        return node

    async def rename_node(self, node_id: str, title: str):
        self._require_project()
        self.tree.rename_node(node_id, title)
        if self.tree.get(node_id).kind == "chapter":
            await asyncio.to_thread(self.backend.rename_chapter, self.project_path, node_id, title)
        await self.persist_structure()

    async def update_node_metadata(self, node_id: str, **fields):
        self._require_project()
        self.tree.update_node_metadata(node_id, **fields)
        await self.persist_structure()

    async def remove_node(self, node_id: str) -> List[str]:
        """删除节点及其子树，连同章节文件与删除片段"""
        self._require_project()
        was_active = self.content.active_chapter_id
        removed = self.tree.remove_node(node_id)
        if was_active in removed:
            self.autosave.cancel()
        # 进行中的写入必须先于删除完成，否则会重新生成章节文件
        await self._wait_for_writes(removed)
        for removed_id in removed:
            self.palimpsest.clear(removed_id)
            await asyncio.to_thread(self.backend.delete_chapter, self.project_path, removed_id)
        await self.persist_structure()
        return removed

    async def reorder_children(self, parent_id: str, new_order: List[str]):
        self._require_project()
        self.tree.reorder_children(parent_id, new_order)
        await self.persist_structure()

    async def move_node(self, node_id: str, new_parent_id: str, index: Optional[int] = None):
        self._require_project()
        self.tree.move_node(node_id, new_parent_id, index)
        await self.persist_structure()

    def refresh_word_count(self, node_id: str, text: str):
        self.tree.update_word_count(node_id, count_words(text))

    # --- 输入 ---

    def handle_input(self, new_text: str, cursor: Optional[int] = None) -> Tuple[str, Optional[int]]:
        """
        每次按键调用：智能标点 → 删除追踪 → 更新内容 → 重新开始自动保存计时。

        Returns:
            (实际写入的正文, 调整后的光标位置)
        """
        chapter = self.content.chapter
        if chapter is None:
            return new_text, cursor

        if self.smart_punctuation and cursor is not None:
            new_text, offset = apply_smart_punctuation(new_text, cursor)
            cursor += offset

        self.palimpsest.record(chapter.id, chapter.text, new_text, cursor)
        self.content.mutate(new_text)
        self.autosave.schedule()
        return new_text, cursor

    def fragments(self) -> List[PalimpsestFragment]:
        """当前章节的删除片段"""
        chapter_id = self.content.active_chapter_id
        return self.palimpsest.fragments(chapter_id) if chapter_id else []

    def restore_fragment(self, fragment_id: str) -> str:
        chapter = self.content.chapter
        fragment = self.palimpsest.get(fragment_id)
        if chapter is None or fragment is None or fragment.chapter_id != chapter.id:
            raise KeyError(f"当前章节中没有删除片段 {fragment_id}")
        restored, _ = self.palimpsest.restore(fragment_id, chapter.text)
        self.content.mutate(restored)
        self.autosave.schedule()
        return restored

    def replace_all(self, query: str, replacement: str, case_sensitive: bool = False,
                    use_regex: bool = False) -> int:
        """在当前章节中全部替换，返回替换次数"""
        chapter = self.content.chapter
        if chapter is None:
            return 0
        new_text, count = search_service.replace_all(chapter.text, query, replacement, case_sensitive, use_regex)
        if count:
            self.content.mutate(new_text)
            self.autosave.schedule()
        return count

    # --- 保存 ---

    async def save_now(self, snapshot: bool = True) -> Optional[str]:
        """
        手动保存：立即写出未保存的内容，然后创建 manual 快照。
        失败时抛出 PersistFailure / SnapshotError，不自动重试。

        Returns:
            快照文件名 (snapshot=False 时为 None)。
        """
        self._require_project()
        self.autosave.cancel()
        await self._flush_active(raise_errors=True)
        if not snapshot:
            return None
        return await asyncio.to_thread(self.backend.create_snapshot, self.project_path, "manual")

    async def _autosave(self) -> bool:
        return await self._flush_active(raise_errors=False)

    async def _flush_active(self, raise_errors: bool) -> bool:
        # 在触发时读取最新内容，而不是计时开始时的内容
        chapter = self.content.chapter
        if chapter is None or not self.content.is_dirty or self.project_path is None:
            return False
        return await self._write_chapter(self.project_path, chapter.id, chapter.text, raise_errors)

    async def _write_chapter(self, project_path: str, chapter_id: str, text: str,
                             raise_errors: bool = False) -> bool:
        future = self._start_save(project_path, chapter_id, text)
        return await self._finish_save(project_path, chapter_id, text, future, raise_errors)

    def _start_save(self, project_path: str, chapter_id: str, text: str) -> Optional[asyncio.Future]:
        """同步发出后端写入并按章节登记，返回 None 表示章节已被删除"""
        if project_path == self.project_path and self.tree is not None and chapter_id not in self.tree:
            logger.debug(f"章节 {chapter_id} 已从稿件树中删除，跳过保存")
            return None
        future = asyncio.ensure_future(asyncio.to_thread(self.backend.save_chapter, project_path, chapter_id, text))
        self._writes.setdefault(chapter_id, set()).add(future)
        future.add_done_callback(lambda f: self._forget_write(chapter_id, f))
        return future

    def _forget_write(self, chapter_id: str, future: asyncio.Future):
        writes = self._writes.get(chapter_id)
        if writes is None:
            return
        writes.discard(future)
        if not writes:
            del self._writes[chapter_id]

    async def _wait_for_writes(self, chapter_ids: List[str]):
        pending = [f for chapter_id in chapter_ids for f in self._writes.get(chapter_id, ())]
        if pending:
            logger.debug(f"等待 {len(pending)} 个未完成的章节写入")
            # 失败由发出写入的一方记录
            await asyncio.gather(*pending, return_exceptions=True)

    async def _finish_save(self, project_path: str, chapter_id: str, text: str,
                           future: Optional[asyncio.Future], raise_errors: bool = False) -> bool:
        if future is None:
            return False
        try:
            await future
        except PersistFailure as e:
            logger.error(f"保存章节 {chapter_id} 失败，内容保持未保存状态: {e}")
            if self.content.active_chapter_id == chapter_id:
                self.content.mark_save_failed(str(e))
            if raise_errors:
                raise
            return False

        if self.tree is not None and project_path == self.project_path:
            self.content.mark_clean(chapter_id, text)
            self.tree.update_word_count(chapter_id, count_words(text))
            try:
                await self.persist_structure()
            except PersistFailure as e:
                logger.error(f"保存稿件结构失败: {e}")
        await self._record_history(project_path)
        return True

    def _release_active(self):
        """
        丢弃当前章节缓冲区前，若有未保存内容则发出一次保存 (不等待、不取消)。
        """
        self.autosave.cancel()
        chapter = self.content.chapter
        if chapter is not None and self.content.is_dirty and self.project_path is not None:
            logger.debug(f"切换前写出章节 {chapter.id}")
            # 写入在这里同步登记，重新打开该章节时会先等待它完成
            future = self._start_save(self.project_path, chapter.id, chapter.text)
            self.autosave.track(self._finish_save(self.project_path, chapter.id, chapter.text, future))
        self.content.clear()

    async def _record_history(self, project_path: str):
        if not self.record_history or not project_path or not os.path.isdir(project_path):
            return
        words = self.content.state.session_word_count
        keep_days = int(get_setting(self.config, "history.days", sql_db.DEFAULT_HISTORY_DAYS))
        await asyncio.to_thread(sql_db.record_daily_words, project_path, words, None, keep_days)

    # --- 搜索 ---

    async def search(self, query: str, case_sensitive: bool = False, use_regex: bool = False) -> List[SearchResult]:
        self._require_project()
        return await search_service.search_manuscript(
            self.backend, self.project_path, self.tree, query,
            case_sensitive=case_sensitive, use_regex=use_regex,
            active_chapter=self.content.chapter, max_matches=self.max_matches,
        )
