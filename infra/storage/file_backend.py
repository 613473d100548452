"""
文件系统后端 (File Backend)
以项目文件夹实现持久化接口：chapters/<id>.md 为带 YAML front matter 的 Markdown 文件。
"""
import logging
import os
import threading
import uuid
from typing import Optional

import yaml

from config.loader import get_config, get_setting
from core.backend import PersistenceBackend
from core.exceptions import ChapterNotFoundError, PersistFailure, NodeNotFoundError
from core.project_manager import ProjectManager, CHAPTERS_DIR, DEFAULT_SNAPSHOT_KEEP
from core.schemas import ChapterContent, ManuscriptNode, ManuscriptStructure, ProjectMetadata, utc_now_iso
from core.text_utils import count_words, split_front_matter, join_front_matter
from infra.storage import structure_store

logger = logging.getLogger(__name__)


def chapter_path(project_root: str, chapter_id: str) -> str:
    return os.path.join(project_root, CHAPTERS_DIR, f"{chapter_id}.md")


def parse_chapter_file(raw: str, chapter_id: str) -> ChapterContent:
    """
    解析章节文件。没有 front matter 时整个文件视为正文，标题取文件名。
    """
    front_matter, body = split_front_matter(raw)
    meta = _load_front_matter(front_matter, chapter_id) if front_matter is not None else {}
    now = utc_now_iso()
    return ChapterContent(
        id=chapter_id,
        title=str(meta.get("title") or (chapter_id if front_matter is None else "Untitled")),
        text=body,
        status=str(meta.get("status") or "draft"),
        mood=meta.get("mood"),
        point_of_view=meta.get("pov"),
        word_count=count_words(body),
        created_at=str(meta.get("created_at") or now),
        modified_at=str(meta.get("modified_at") or now),
    )


def render_chapter_file(chapter: ChapterContent) -> str:
    meta = {
        "id": chapter.id,
        "title": chapter.title,
        "status": chapter.status,
    }
    if chapter.mood:
        meta["mood"] = chapter.mood
    if chapter.point_of_view:
        meta["pov"] = chapter.point_of_view
    meta["word_count"] = chapter.word_count
    meta["created_at"] = chapter.created_at
    meta["modified_at"] = chapter.modified_at
    front_matter = yaml.safe_dump(meta, allow_unicode=True, sort_keys=False)
    return join_front_matter(front_matter, chapter.text)


def _load_front_matter(front_matter: str, chapter_id: str) -> dict:
    try:
        meta = yaml.safe_load(front_matter)
    except yaml.YAMLError as e:
        logger.warning(f"章节 {chapter_id} 的 front matter 无法解析，已忽略: {e}")
        return {}
    return meta if isinstance(meta, dict) else {}


def _write_atomic(path: str, content: str):
    tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
    with open(tmp_path, 'w', encoding='utf-8') as f:
        f.write(content)
    os.replace(tmp_path, path)


class FileBackend(PersistenceBackend):
    """
    基于项目文件夹的持久化后端。

    Args:
        snapshot_keep: 保留的快照数量。
    """

    def __init__(self, snapshot_keep: Optional[int] = None):
        if snapshot_keep is None:
            snapshot_keep = int(get_setting(get_config(), "snapshots.keep", DEFAULT_SNAPSHOT_KEEP))
        self.snapshot_keep = snapshot_keep
        # manuscript.json 的读-改-写需要串行化
        self._structure_lock = threading.RLock()

    # --- 章节 ---

    def read_chapter_raw(self, project_path: str, chapter_id: str) -> str:
        path = chapter_path(project_path, chapter_id)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except FileNotFoundError:
            raise ChapterNotFoundError(chapter_id) from None

    def load_chapter(self, project_path: str, chapter_id: str) -> ChapterContent:
        return parse_chapter_file(self.read_chapter_raw(project_path, chapter_id), chapter_id)

    def save_chapter(self, project_path: str, chapter_id: str, text: str) -> None:
        try:
            chapter = self.load_chapter(project_path, chapter_id)
        except ChapterNotFoundError:
            chapter = ChapterContent(id=chapter_id, title=self._node_title(project_path, chapter_id))
        chapter.text = text
        chapter.word_count = count_words(text)
        chapter.modified_at = utc_now_iso()
        try:
            os.makedirs(os.path.join(project_path, CHAPTERS_DIR), exist_ok=True)
            _write_atomic(chapter_path(project_path, chapter_id), render_chapter_file(chapter))
        except OSError as e:
            raise PersistFailure(f"保存章节 {chapter_id} 失败: {e}") from e

    def create_chapter(self, project_path: str, title: str, parent_id: Optional[str] = None) -> ManuscriptNode:
        chapter = ChapterContent(id=str(uuid.uuid4()), title=title)
        node = ManuscriptNode(id=chapter.id, title=title, kind="chapter")
        with self._structure_lock:
            structure = self.load_structure(project_path)
            parent = parent_id or structure.root
            if parent not in structure.nodes:
                raise NodeNotFoundError(parent)
            try:
                os.makedirs(os.path.join(project_path, CHAPTERS_DIR), exist_ok=True)
                _write_atomic(chapter_path(project_path, chapter.id), render_chapter_file(chapter))
                structure.nodes[node.id] = node
                structure.order.append(node.id)
                structure.nodes[parent].children.append(node.id)
                structure_store.save_structure(project_path, structure)
            except OSError as e:
                raise PersistFailure(f"创建章节 '{title}' 失败: {e}") from e
        logger.info(f"已创建章节 '{title}' ({node.id})")
        return ManuscriptNode(id=node.id, title=node.title, kind="chapter")

    def rename_chapter(self, project_path: str, chapter_id: str, new_title: str) -> None:
        try:
            if os.path.exists(chapter_path(project_path, chapter_id)):
                chapter = self.load_chapter(project_path, chapter_id)
                chapter.title = new_title
                _write_atomic(chapter_path(project_path, chapter_id), render_chapter_file(chapter))
        except OSError as e:
            raise PersistFailure(f"重命名章节 {chapter_id} 失败: {e}") from e
        self._update_node(project_path, chapter_id, title=new_title)

    def delete_chapter(self, project_path: str, chapter_id: str) -> None:
        try:
            os.remove(chapter_path(project_path, chapter_id))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistFailure(f"删除章节 {chapter_id} 失败: {e}") from e

    # --- 项目 ---

    def create_snapshot(self, project_path: str, name: str) -> str:
        return ProjectManager.create_snapshot(project_path, name, keep=self.snapshot_keep)

    def load_structure(self, project_path: str) -> ManuscriptStructure:
        return structure_store.load_structure(project_path)

    def save_structure(self, project_path: str, structure: ManuscriptStructure) -> None:
        try:
            with self._structure_lock:
                structure_store.save_structure(project_path, structure)
        except OSError as e:
            raise PersistFailure(f"保存稿件结构失败: {e}") from e

    def load_metadata(self, project_path: str) -> ProjectMetadata:
        return ProjectManager.load_project_meta(project_path)

    # --- 内部 ---

    def _node_title(self, project_path: str, chapter_id: str) -> str:
        try:
            node = self.load_structure(project_path).nodes.get(chapter_id)
        except Exception as e:
            logger.debug(f"读取稿件结构失败，章节 {chapter_id} 使用默认标题: {e}")
            return "Untitled"
        return node.title if node else "Untitled"

    def _update_node(self, project_path: str, chapter_id: str, **fields):
        """同步 manuscript.json 中对应节点的摘要字段 (节点不存在时忽略)"""
        if not ProjectManager.is_valid_project(project_path):
            return
        try:
            with self._structure_lock:
                structure = self.load_structure(project_path)
                node = structure.nodes.get(chapter_id)
                if node is None:
                    return
                for name, value in fields.items():
                    setattr(node, name, value)
                structure_store.save_structure(project_path, structure)
        except OSError as e:
            raise PersistFailure(f"更新稿件结构失败: {e}") from e
