"""
稿件树 (Manuscript Tree)
维护 book → part → chapter → scene 的有序节点树，并与当前打开的章节保持一致。

节点表中的每个节点至多出现在一个父节点的 children 中 (无环、无多父)；
order 以创建顺序记录全部节点 ID (含根节点)，其成员集合与节点表一致。
"""
import logging
from typing import Iterator, List, Optional

from core.content_session import ContentSession
from core.exceptions import (
    DuplicateNodeError,
    InvalidParentError,
    ManuscriptStructureError,
    NodeNotFoundError,
    UnknownChildError,
)
from core.schemas import ManuscriptNode, ManuscriptStructure, NODE_STATUSES

logger = logging.getLogger(__name__)


class ManuscriptTree:
    """
    项目独占的节点树。所有修改都必须经过这里的显式方法。

    Args:
        structure: 从项目加载的结构。
        content: 当前项目的内容会话，用于同步标题与关闭被删除的章节。
    """

    def __init__(self, structure: ManuscriptStructure, content: Optional[ContentSession] = None):
        if structure.root not in structure.nodes:
            raise InvalidParentError(structure.root)
        self.structure = structure
        self.content = content

    # --- 读取 ---

    @property
    def root_id(self) -> str:
        return self.structure.root

    @property
    def order(self) -> List[str]:
        return list(self.structure.order)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.structure.nodes

    def get(self, node_id: str) -> ManuscriptNode:
        try:
            return self.structure.nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def children(self, node_id: str) -> List[ManuscriptNode]:
        return [self.structure.nodes[c] for c in self.get(node_id).children]

    def parent_of(self, node_id: str) -> Optional[str]:
        for parent_id, node in self.structure.nodes.items():
            if node_id in node.children:
                return parent_id
        return None

    def walk(self, node_id: Optional[str] = None) -> Iterator[ManuscriptNode]:
        """深度优先 (先序) 遍历"""
        stack = [node_id or self.structure.root]
        while stack:
            node = self.get(stack.pop())
            yield node
            stack.extend(reversed(node.children))

    def chapter_ids_in_order(self) -> List[str]:
        """按 order (创建顺序) 返回所有章节节点 ID"""
        return [
            node_id for node_id in self.structure.order
            if node_id in self.structure.nodes and self.structure.nodes[node_id].kind == "chapter"
        ]

    def total_word_count(self) -> int:
        return sum(node.word_count for node in self.structure.nodes.values())

    # --- 修改 ---

    def add_node(self, node: ManuscriptNode, parent_id: Optional[str] = None) -> ManuscriptNode:
        parent = parent_id or self.structure.root
        if parent not in self.structure.nodes:
            raise InvalidParentError(parent)
        if node.id in self.structure.nodes:
            raise DuplicateNodeError(node.id)
        if node.children:
            raise ManuscriptStructureError(f"新节点 {node.id} 不能预先携带子节点")

        self.structure.nodes[node.id] = node
        self.structure.order.append(node.id)
        self.structure.nodes[parent].children.append(node.id)
        logger.debug(f"已添加节点 {node.id} ({node.kind}) 到 {parent}")
        return node

    def remove_node(self, node_id: str) -> List[str]:
        """
        删除节点及其整棵子树。

        Returns:
            被删除的全部节点 ID。
        """
        if node_id == self.structure.root:
            raise ManuscriptStructureError("不能删除根节点")
        removed = [node.id for node in self.walk(self.get(node_id).id)]
        removed_set = set(removed)

        for node in self.structure.nodes.values():
            if node_id in node.children:
                node.children = [c for c in node.children if c != node_id]
        self.structure.order = [i for i in self.structure.order if i not in removed_set]
        for removed_id in removed:
            del self.structure.nodes[removed_id]

        if self.content is not None and self.content.active_chapter_id in removed_set:
            self.content.clear()
        logger.info(f"已删除节点 {node_id} (共 {len(removed)} 个)")
        return removed

    def rename_node(self, node_id: str, title: str):
        """标题与当前打开的章节在同一次调用中同步"""
        self.get(node_id).title = title
        if self.content is not None:
            self.content.sync_title(node_id, title)

    def update_node_metadata(self, node_id: str, status: Optional[str] = None,
                             mood: Optional[str] = None, point_of_view: Optional[str] = None):
        node = self.get(node_id)
        changes = {}
        if status is not None:
            if status not in NODE_STATUSES:
                raise ValueError(f"无效的节点状态: {status!r}")
            changes["status"] = status
        if mood is not None:
            changes["mood"] = mood or None
        if point_of_view is not None:
            changes["point_of_view"] = point_of_view or None
        for name, value in changes.items():
            setattr(node, name, value)
        if self.content is not None and changes:
            self.content.sync_metadata(node_id, **changes)

    def update_word_count(self, node_id: str, count: int):
        """字数唯一的修改入口，由内容会话驱动"""
        node = self.structure.nodes.get(node_id)
        if node is None:
            # 旧章节的延迟保存可能在节点被删除后才完成
            logger.debug(f"忽略已删除节点 {node_id} 的字数更新")
            return
        node.word_count = max(0, int(count))

    def reorder_children(self, parent_id: str, new_order: List[str]):
        """整体替换子节点顺序，不允许增删节点"""
        parent = self.get(parent_id)
        current = set(parent.children)
        proposed = set(new_order)
        if proposed != current or len(new_order) != len(parent.children):
            raise UnknownChildError(parent_id, unexpected=proposed - current, missing=current - proposed)
        parent.children = list(new_order)

    def move_node(self, node_id: str, new_parent_id: str, index: Optional[int] = None):
        """将节点移到新的父节点下 (不能移入自己的子树)"""
        if node_id == self.structure.root:
            raise ManuscriptStructureError("不能移动根节点")
        self.get(node_id)
        if new_parent_id not in self.structure.nodes:
            raise InvalidParentError(new_parent_id)
        if any(n.id == new_parent_id for n in self.walk(node_id)):
            raise InvalidParentError(new_parent_id)

        old_parent_id = self.parent_of(node_id)
        if old_parent_id is not None:
            old_parent = self.structure.nodes[old_parent_id]
            old_parent.children = [c for c in old_parent.children if c != node_id]
        siblings = self.structure.nodes[new_parent_id].children
        if index is None:
            siblings.append(node_id)
        else:
            siblings.insert(index, node_id)
