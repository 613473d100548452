"""
项目核心管理模块 (Core Project Manager)
负责项目生命周期的统一调度，采用基于文件夹的项目结构。
"""
import os
import json
import logging
import uuid
from datetime import datetime, timezone

from core.exceptions import ProjectNotFoundError, CorruptProjectError, SnapshotError
from core.schemas import ManuscriptNode, ManuscriptStructure, ProjectMetadata, utc_now_iso

logger = logging.getLogger(__name__)

META_FILENAME = "project.quillborn"
MANUSCRIPT_FILENAME = "manuscript.json"
CHAPTERS_DIR = "chapters"
SNAPSHOTS_DIR = "snapshots"

PROJECT_SUBDIRS = (
    CHAPTERS_DIR,
    SNAPSHOTS_DIR,
    "history",
    "notes/characters",
    "notes/locations",
    "notes/worldbuilding",
    "notes/scratch",
    "ghost-notes",
    "exports",
)

DEFAULT_SNAPSHOT_KEEP = 10


def sanitize_filename(name: str) -> str:
    """保留字母数字、空格、- 与 _，其余替换为 _"""
    cleaned = "".join(c if c.isalnum() or c in "-_ " else "_" for c in name).strip()
    return cleaned or "Untitled"


class ProjectManager:
    """
    统一管理项目的生命周期。
    基于文件夹路径来管理项目资产。
    """

    @staticmethod
    def init_project_structure(parent_dir: str, title: str, author: str = "") -> str:
        """
        在指定目录下初始化一个新的项目文件夹 (<标题>.qb)。

        Args:
            parent_dir (str): 存放项目文件夹的目录。
            title (str): 书名，同时作为根节点标题。
            author (str): 作者。

        Returns:
            str: 项目根目录的路径。
        """
        project_root = os.path.join(parent_dir, f"{sanitize_filename(title)}.qb")
        os.makedirs(project_root, exist_ok=True)

        # 1. 创建子目录
        for sub in PROJECT_SUBDIRS:
            os.makedirs(os.path.join(project_root, sub), exist_ok=True)

        # 2. 创建元数据文件
        ProjectManager.save_project_meta(project_root, ProjectMetadata(title=title, author=author))

        # 3. 初始化只有根节点的稿件结构
        manuscript_path = os.path.join(project_root, MANUSCRIPT_FILENAME)
        if not os.path.exists(manuscript_path):
            root_id = str(uuid.uuid4())
            structure = ManuscriptStructure(
                root=root_id,
                nodes={root_id: ManuscriptNode(id=root_id, title=title, kind="book")},
                order=[root_id],
            )
            with open(manuscript_path, 'w', encoding='utf-8') as f:
                json.dump(structure.to_dict(), f, ensure_ascii=False, indent=2)

        logger.info(f"项目 '{title}' 已在 '{project_root}' 初始化。")
        return project_root

    @staticmethod
    def is_valid_project(project_root: str) -> bool:
        """检查指定目录是否是一个有效的项目"""
        if not os.path.exists(project_root): return False
        return os.path.exists(os.path.join(project_root, MANUSCRIPT_FILENAME))

    @staticmethod
    def require_project(project_root: str):
        if not ProjectManager.is_valid_project(project_root):
            raise ProjectNotFoundError(os.path.join(project_root, MANUSCRIPT_FILENAME))

    @staticmethod
    def load_project_meta(project_root: str) -> ProjectMetadata:
        """加载项目元数据，缺失时返回默认值"""
        meta_path = os.path.join(project_root, META_FILENAME)
        if not os.path.exists(meta_path):
            return ProjectMetadata(title="Untitled")
        try:
            with open(meta_path, 'r', encoding='utf-8') as f:
                return ProjectMetadata.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            raise CorruptProjectError(f"无法读取项目元数据 {meta_path}: {e}") from e

    @staticmethod
    def save_project_meta(project_root: str, metadata: ProjectMetadata):
        metadata.modified_at = utc_now_iso()
        meta_path = os.path.join(project_root, META_FILENAME)
        with open(meta_path, 'w', encoding='utf-8') as f:
            json.dump(metadata.to_dict(), f, ensure_ascii=False, indent=2)

    @staticmethod
    def create_snapshot(project_root: str, name: str = "manual", keep: int = DEFAULT_SNAPSHOT_KEEP) -> str:
        """
        为整个项目创建时间点快照 (元数据、稿件结构与全部章节文件)。

        Returns:
            str: 快照文件名。
        """
        ProjectManager.require_project(project_root)
        snapshots_dir = os.path.join(project_root, SNAPSHOTS_DIR)
        now = datetime.now(timezone.utc)
        filename = f"{now.strftime('%Y-%m-%dT%H-%M-%S-%f')}-{sanitize_filename(name)}.json"

        try:
            os.makedirs(snapshots_dir, exist_ok=True)
            with open(os.path.join(project_root, MANUSCRIPT_FILENAME), 'r', encoding='utf-8') as f:
                structure = json.load(f)
            chapters = {}
            chapters_dir = os.path.join(project_root, CHAPTERS_DIR)
            if os.path.isdir(chapters_dir):
                for entry in sorted(os.listdir(chapters_dir)):
                    if entry.endswith(".md"):
                        with open(os.path.join(chapters_dir, entry), 'r', encoding='utf-8') as f:
                            chapters[entry[:-3]] = f.read()
            snapshot = {
                "timestamp": now.isoformat(),
                "name": name,
                "metadata": ProjectManager.load_project_meta(project_root).to_dict(),
                "structure": structure,
                "chapters": chapters,
            }
            with open(os.path.join(snapshots_dir, filename), 'w', encoding='utf-8') as f:
                json.dump(snapshot, f, ensure_ascii=False, indent=2)
        except (OSError, ValueError, CorruptProjectError) as e:
            logger.error(f"创建快照失败: {e}")
            raise SnapshotError(f"创建快照失败: {e}") from e

        ProjectManager._prune_snapshots(snapshots_dir, keep)
        logger.info(f"已创建快照 {filename}")
        return filename

    @staticmethod
    def list_snapshots(project_root: str) -> list:
        snapshots_dir = os.path.join(project_root, SNAPSHOTS_DIR)
        if not os.path.isdir(snapshots_dir):
            return []
        return sorted(f for f in os.listdir(snapshots_dir) if f.endswith(".json"))

    @staticmethod
    def _prune_snapshots(snapshots_dir: str, keep: int):
        # 文件名以时间戳开头，字典序即时间顺序
        files = sorted((f for f in os.listdir(snapshots_dir) if f.endswith(".json")), reverse=True)
        for old in files[keep:]:
            try:
                os.remove(os.path.join(snapshots_dir, old))
            except OSError as e:
                logger.warning(f"清理旧快照失败 {old}: {e}")
