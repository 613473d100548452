"""
文本工具 (Text Utilities)
字数统计、章节文件 front matter 的拆分，以及智能标点替换。
"""
from typing import Optional, Tuple

FRONT_MATTER_DELIMITER = "---"

# 在这些字符之后出现的引号视为左引号
_OPENING_QUOTE_CONTEXT = (" ", "\n", "(", "[")


def count_words(text: str) -> int:
    """统计最大非空白字符串的个数"""
    return len(text.split())


def split_front_matter(raw: str) -> Tuple[Optional[str], str]:
    """
    将持久化的章节文件拆分为 (front matter, 正文)。

    front matter 必须以单独一行 `---` 开头，并以下一个单独的 `---` 行结束；
    结束行之后的一个空行视为分隔符，不属于正文。
    若没有可识别的 front matter，返回 (None, raw)。
    """
    if not raw.startswith(FRONT_MATTER_DELIMITER):
        return None, raw
    lines = raw.split("\n")
    if lines[0].rstrip() != FRONT_MATTER_DELIMITER:
        return None, raw
    for index in range(1, len(lines)):
        if lines[index].rstrip() == FRONT_MATTER_DELIMITER:
            front_matter = "\n".join(lines[1:index])
            body = "\n".join(lines[index + 1:])
            if body.startswith("\n"):
                body = body[1:]
            return front_matter, body
    return None, raw


def strip_front_matter(raw: str) -> str:
    return split_front_matter(raw)[1]


def join_front_matter(front_matter: str, body: str) -> str:
    if not front_matter.endswith("\n"):
        front_matter += "\n"
    return f"{FRONT_MATTER_DELIMITER}\n{front_matter}{FRONT_MATTER_DELIMITER}\n\n{body}"


def apply_smart_punctuation(text: str, cursor: int) -> Tuple[str, int]:
    """
    对光标前的文字做智能标点替换。

    Returns:
        (新文本, 光标偏移量)。偏移量为负数，表示替换后光标需要左移的字符数。
    """
    cursor = max(0, min(cursor, len(text)))
    before, after = text[:cursor], text[cursor:]
    offset = 0

    if before.endswith('"'):
        prev = before[-2] if len(before) > 1 else " "
        before = before[:-1] + ("“" if prev in _OPENING_QUOTE_CONTEXT else "”")
    if before.endswith("'"):
        prev = before[-2] if len(before) > 1 else " "
        before = before[:-1] + ("‘" if prev in _OPENING_QUOTE_CONTEXT else "’")

    if before.endswith("---"):
        before = before[:-3] + "—"
        offset = -2
    elif before.endswith("--"):
        before = before[:-2] + "–"
        offset = -1

    if before.endswith("..."):
        before = before[:-3] + "…"
        offset = -2

    return before + after, offset
