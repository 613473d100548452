"""
命令面板 (Command Palette)
命令注册表、模糊匹配排序与快捷键解析。
"""
import logging
from typing import Iterable, List, Optional

from core.schemas import Command

logger = logging.getLogger(__name__)

# 打分规则
LABEL_MATCH_SCORE = 10
LABEL_PREFIX_BONUS = 5
CATEGORY_MATCH_SCORE = 3
FUZZY_MATCH_SCORE = 1

_META_KEYS = {"cmd", "ctrl", "meta"}


def _is_subsequence(query: str, text: str) -> bool:
    """query 的每个字符都按顺序出现在 text 中 (不要求连续)"""
    it = iter(text)
    return all(ch in it for ch in query)


def score_command(command: Command, query: str) -> int:
    """
    给单个命令打分 (query 应已转小写并去除首尾空白)。
    标签包含 > 分类包含；标签以 query 开头再加分；都不包含时尝试子序列模糊匹配。
    """
    label = command.label.lower()
    category = command.category.lower()
    score = 0
    if query in label:
        score += LABEL_MATCH_SCORE
        if label.startswith(query):
            score += LABEL_PREFIX_BONUS
    if query in category:
        score += CATEGORY_MATCH_SCORE
    if score == 0 and _is_subsequence(query, label):
        score += FUZZY_MATCH_SCORE
    return score


def rank_commands(commands: Iterable[Command], query: str) -> List[Command]:
    """
    按分数降序返回匹配的命令，同分保持注册顺序。空查询原样返回全部命令。
    """
    commands = list(commands)
    q = query.lower().strip()
    if not q:
        return commands
    scored = [(score_command(cmd, q), cmd) for cmd in commands]
    # sorted 是稳定排序
    ranked = sorted((item for item in scored if item[0] > 0), key=lambda item: -item[0])
    return [cmd for _, cmd in ranked]


def parse_shortcut(keys: str):
    """
    解析 "Cmd+Shift+S" 形式的快捷键。

    Returns:
        (需要 meta, 需要 shift, 主键)
    """
    parts = [p.strip() for p in keys.lower().split("+") if p.strip()]
    if not parts:
        return False, False, ""
    needs_meta = any(p in _META_KEYS for p in parts)
    needs_shift = "shift" in parts
    return needs_meta, needs_shift, parts[-1]


class CommandRegistry:
    """按注册顺序保存命令；重复 ID 的命令会被替换并移到末尾。"""

    def __init__(self):
        self._commands: List[Command] = []

    @property
    def commands(self) -> List[Command]:
        return list(self._commands)

    def register(self, command: Command):
        self._commands = [c for c in self._commands if c.id != command.id]
        self._commands.append(command)

    def register_many(self, commands: Iterable[Command]):
        commands = list(commands)
        ids = {c.id for c in commands}
        self._commands = [c for c in self._commands if c.id not in ids]
        self._commands.extend(commands)

    def unregister(self, command_id: str) -> bool:
        before = len(self._commands)
        self._commands = [c for c in self._commands if c.id != command_id]
        return len(self._commands) != before

    def get(self, command_id: str) -> Optional[Command]:
        return next((c for c in self._commands if c.id == command_id), None)

    def search(self, query: str) -> List[Command]:
        return rank_commands(self._commands, query)

    def execute(self, command_id: str) -> bool:
        command = self.get(command_id)
        if command is None:
            logger.warning(f"未知命令: {command_id}")
            return False
        if command.action is None:
            logger.debug(f"命令 {command_id} 没有绑定动作")
            return False
        command.action()
        return True

    def find_by_shortcut(self, key: str, meta: bool = False, shift: bool = False) -> Optional[Command]:
        """根据一次按键 (主键 + 修饰键) 查找命令"""
        key = key.lower()
        for command in self._commands:
            if not command.keys:
                continue
            needs_meta, needs_shift, main_key = parse_shortcut(command.keys)
            if meta == needs_meta and shift == needs_shift and key == main_key:
                return command
        return None
