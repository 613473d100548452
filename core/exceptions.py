"""
自定义异常类
用于在应用的不同层之间传递具有明确语义的错误信息。
"""

class QuillbornError(Exception):
    """所有引擎异常的基类"""
    pass

# --- 稿件树结构错误 (调用方错误，仅使被调用的操作失败) ---

class ManuscriptStructureError(QuillbornError):
    """稿件树结构被违反"""
    pass

class InvalidParentError(ManuscriptStructureError):
    """指定的父节点不存在"""
    def __init__(self, parent_id: str):
        super().__init__(f"父节点不存在: {parent_id}")
        self.parent_id = parent_id

class UnknownChildError(ManuscriptStructureError):
    """重排后的子节点集合与当前子节点集合不一致"""
    def __init__(self, parent_id: str, unexpected=(), missing=()):
        super().__init__(
            f"节点 {parent_id} 的子节点重排无效 (多出: {sorted(unexpected)}, 缺失: {sorted(missing)})"
        )
        self.parent_id = parent_id
        self.unexpected = set(unexpected)
        self.missing = set(missing)

class NodeNotFoundError(ManuscriptStructureError, LookupError):
    """节点不存在于节点表中"""
    def __init__(self, node_id: str):
        super().__init__(f"节点不存在: {node_id}")
        self.node_id = node_id

class DuplicateNodeError(ManuscriptStructureError):
    """节点 ID 已存在"""
    def __init__(self, node_id: str):
        super().__init__(f"节点 ID 重复: {node_id}")
        self.node_id = node_id

# --- 持久化错误 ---

class ChapterNotFoundError(QuillbornError, LookupError):
    """章节从未被持久化 (搜索时静默跳过，显式打开时报错)"""
    def __init__(self, chapter_id: str):
        super().__init__(f"章节不存在: {chapter_id}")
        self.chapter_id = chapter_id

class PersistFailure(QuillbornError):
    """后端写入失败，脏标记保持不变，不自动重试"""
    pass

class SnapshotError(PersistFailure):
    """创建项目快照失败"""
    pass

class ProjectNotFoundError(QuillbornError):
    """项目目录中缺少 manuscript.json"""
    pass

class CorruptProjectError(QuillbornError):
    """项目文件存在但内容无法解析或违反树结构"""
    pass

# --- 其他 ---

class InvalidPatternError(QuillbornError):
    """正则模式下的搜索词无法编译"""
    pass

class ConfigurationError(QuillbornError):
    """当应用配置不正确或缺失时发生错误"""
    pass
