"""
持久化后端接口 (Persistence Backend)
引擎只通过这里定义的操作读写章节与快照，磁盘布局由具体实现决定。
所有方法都是同步的，由调用方放到工作线程中执行。
"""
from abc import ABC, abstractmethod
from typing import Optional

from core.schemas import ChapterContent, ManuscriptNode, ManuscriptStructure, ProjectMetadata


class PersistenceBackend(ABC):

    @abstractmethod
    def load_chapter(self, project_path: str, chapter_id: str) -> ChapterContent:
        """读取章节；从未持久化时抛出 ChapterNotFoundError"""

    @abstractmethod
    def save_chapter(self, project_path: str, chapter_id: str, text: str) -> None:
        """幂等地覆盖章节全文；失败时抛出 PersistFailure"""

    @abstractmethod
    def create_chapter(self, project_path: str, title: str, parent_id: Optional[str] = None) -> ManuscriptNode:
        """创建空章节并返回其节点摘要 (id, title)"""

    @abstractmethod
    def rename_chapter(self, project_path: str, chapter_id: str, new_title: str) -> None:
        pass

    @abstractmethod
    def create_snapshot(self, project_path: str, name: str) -> str:
        """创建整个项目的时间点副本；失败时抛出 SnapshotError"""

    @abstractmethod
    def read_chapter_raw(self, project_path: str, chapter_id: str) -> str:
        """返回最后一次成功保存的原始文件内容 (含 front matter)"""

    def delete_chapter(self, project_path: str, chapter_id: str) -> None:
        pass

    @abstractmethod
    def load_structure(self, project_path: str) -> ManuscriptStructure:
        """读取稿件树，编辑会话打开项目时调用"""

    @abstractmethod
    def save_structure(self, project_path: str, structure: ManuscriptStructure) -> None:
        """写回稿件树，每次树操作和保存成功后调用"""

    def load_metadata(self, project_path: str) -> ProjectMetadata:
        return ProjectMetadata(title="Untitled")
