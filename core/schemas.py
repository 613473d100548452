"""
业务对象定义 (Schemas)
定义系统各层级间传递的强类型数据结构，确保数据流透明且可预测。
"""
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, List, Dict, Callable

NODE_KINDS = ("book", "part", "chapter", "scene")
NODE_STATUSES = ("draft", "revised", "final", "trash")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_choice(value: str, choices, label: str) -> str:
    if value not in choices:
        raise ValueError(f"无效的{label}: {value!r} (可选: {', '.join(choices)})")
    return value


@dataclass
class ManuscriptNode:
    """
    稿件树节点 (book / part / chapter / scene)
    只保存轻量摘要，章节正文仅在打开时由 ChapterContent 承载。
    """
    id: str
    title: str
    kind: str = "chapter"
    children: List[str] = field(default_factory=list)
    status: str = "draft"
    mood: Optional[str] = None
    point_of_view: Optional[str] = None
    word_count: int = 0

    def __post_init__(self):
        _check_choice(self.kind, NODE_KINDS, "节点类型")
        _check_choice(self.status, NODE_STATUSES, "节点状态")
        if self.word_count < 0:
            raise ValueError("word_count 不能为负数")

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ManuscriptNode":
        return cls(
            id=data["id"],
            title=data.get("title", "Untitled"),
            kind=data.get("kind", "chapter"),
            children=list(data.get("children", [])),
            status=data.get("status", "draft"),
            mood=data.get("mood"),
            point_of_view=data.get("point_of_view"),
            word_count=int(data.get("word_count", 0)),
        )


@dataclass
class ManuscriptStructure:
    """整个项目的节点表; order 按创建顺序记录所有节点 ID"""
    root: str
    nodes: Dict[str, ManuscriptNode] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "root": self.root,
            "nodes": {node_id: node.to_dict() for node_id, node in self.nodes.items()},
            "order": list(self.order),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ManuscriptStructure":
        nodes = {
            node_id: ManuscriptNode.from_dict({**raw, "id": node_id})
            for node_id, raw in data.get("nodes", {}).items()
        }
        return cls(root=data["root"], nodes=nodes, order=list(data.get("order", [])))


@dataclass
class ChapterContent:
    """当前打开章节的完整内容 (同一时刻至多一个)"""
    id: str
    title: str
    text: str = ""
    status: str = "draft"
    mood: Optional[str] = None
    point_of_view: Optional[str] = None
    word_count: int = 0
    created_at: str = field(default_factory=utc_now_iso)
    modified_at: str = field(default_factory=utc_now_iso)


@dataclass
class PalimpsestFragment:
    """一段被删除的文字，可被恢复到原位置"""
    id: str
    chapter_id: str
    text: str
    position: int
    deleted_at: float = field(default_factory=time.time)


@dataclass
class SessionState:
    """
    会话状态 (每次打开项目时重新初始化)
    session_word_count 只累计字数的正增量。
    """
    active_chapter_id: Optional[str] = None
    is_dirty: bool = False
    session_word_count: int = 0
    session_start_time: float = field(default_factory=time.time)
    last_saved_at: Optional[float] = None
    last_save_error: Optional[str] = None


@dataclass
class ProjectMetadata:
    title: str
    author: str = ""
    genre: str = ""
    word_count_target: Optional[int] = None
    deadline: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    modified_at: str = field(default_factory=utc_now_iso)

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectMetadata":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known.setdefault("title", "Untitled")
        return cls(**known)


@dataclass
class Command:
    """命令面板中注册的命令"""
    id: str
    label: str
    category: str
    keys: Optional[str] = None
    action: Optional[Callable[[], None]] = field(default=None, repr=False, compare=False)


@dataclass
class SearchMatch:
    line_number: int  # 从 1 开始
    line_content: str
    start: int
    end: int


@dataclass
class SearchResult:
    chapter_id: str
    chapter_title: str
    matches: List[SearchMatch] = field(default_factory=list)


@dataclass
class ImportedChapter:
    """导入切分出的候选章节"""
    title: str
    content: str
    selected: bool = True
