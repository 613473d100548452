"""
导出服务 (Export Service)
按稿件树的深度优先顺序汇编所有章节，导出为 Markdown、纯文本、PDF 或 EPUB。
"""
from __future__ import annotations
import asyncio
import html
import logging
import os
import re
import tempfile
from typing import List, Optional, Tuple, TYPE_CHECKING

from ebooklib import epub
from fpdf import FPDF

from core.exceptions import ChapterNotFoundError, PersistFailure
from core.manuscript_tree import ManuscriptTree
from core.schemas import ChapterContent, ProjectMetadata
from core.text_utils import strip_front_matter

if TYPE_CHECKING:
    from services.editor_service import EditorSession

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("markdown", "text", "pdf", "epub")

# (标题, 正文)
CompiledChapter = Tuple[str, str]


# (章节 ID, 标题, 内存中的正文；None 表示需要从后端读取)
PlannedChapter = Tuple[str, str, Optional[str]]


def plan_chapters(tree: ManuscriptTree, active_chapter: Optional[ChapterContent] = None) -> List[PlannedChapter]:
    """深度优先遍历稿件树，确定导出顺序；当前章节使用内存中的版本。必须在事件循环中调用。"""
    planned: List[PlannedChapter] = []
    for node in tree.walk():
        if node.kind != "chapter":
            continue
        if active_chapter is not None and active_chapter.id == node.id:
            planned.append((node.id, node.title, active_chapter.text))
        else:
            planned.append((node.id, node.title, None))
    return planned


def read_chapters(backend, project_path: str, planned: List[PlannedChapter]) -> List[CompiledChapter]:
    """按计划读取章节正文，只访问后端，可在工作线程中执行"""
    compiled: List[CompiledChapter] = []
    for chapter_id, title, text in planned:
        if text is None:
            try:
                text = strip_front_matter(backend.read_chapter_raw(project_path, chapter_id))
            except ChapterNotFoundError:
                logger.warning(f"章节 '{title}' 没有正文文件，导出为空章节")
                text = ""
        compiled.append((title, text))
    return compiled


def collect_chapters(backend, project_path: str, tree: ManuscriptTree,
                     active_chapter: Optional[ChapterContent] = None) -> List[CompiledChapter]:
    return read_chapters(backend, project_path, plan_chapters(tree, active_chapter))


def export_as_markdown(metadata: ProjectMetadata, chapters: List[CompiledChapter]) -> str:
    """导出为 Markdown 字符串"""
    parts = [f"# {metadata.title}\n"]
    if metadata.author:
        parts.append(f"*By {metadata.author}*\n")
    sections = [f"## {title}\n\n{text.strip()}\n" for title, text in chapters]
    parts.append("\n---\n\n".join(sections))
    return "\n".join(parts)


_MD_PATTERNS = [
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"__(.+?)__"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"_(.+?)_"), r"\1"),
    (re.compile(r"`(.+?)`"), r"\1"),
    (re.compile(r"\[(.+?)\]\(.+?\)"), r"\1"),
]


def strip_markdown(text: str) -> str:
    for pattern, repl in _MD_PATTERNS:
        text = pattern.sub(repl, text)
    return text


def export_as_plain_text(metadata: ProjectMetadata, chapters: List[CompiledChapter]) -> str:
    """导出为纯文本，标题转大写"""
    parts = [metadata.title.upper()]
    if metadata.author:
        parts.append(f"by {metadata.author}")
    parts.append("")
    for title, text in chapters:
        parts.append(title.upper())
        parts.append("")
        parts.append(strip_markdown(text).strip())
        parts.append("")
    return "\n".join(parts)


POSSIBLE_FONTS = [
    "C:/Windows/Fonts/simhei.ttf",  # Windows
    "C:/Windows/Fonts/msyh.ttc",  # Windows 微软雅黑
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",  # Linux
    "/usr/share/fonts/truetype/droid/DroidSansFallbackFull.ttf",
    "/System/Library/Fonts/STHeiti Light.ttc",  # macOS
]


def _latin1(text: str) -> str:
    # 内置字体只支持 latin-1
    return text.encode("latin-1", "replace").decode("latin-1")


def export_as_pdf(metadata: ProjectMetadata, chapters: List[CompiledChapter]) -> bytes:
    """导出为 PDF 字节流，每个章节另起一页"""
    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.set_left_margin(15)
    pdf.set_right_margin(15)

    # 1. 字体加载
    family = "Helvetica"
    for font_path in POSSIBLE_FONTS:
        if os.path.exists(font_path):
            try:
                pdf.add_font("Body", "", font_path)
                pdf.add_font("Body", "B", font_path)
                family = "Body"
                break
            except Exception as e:
                logger.debug(f"加载字体 {font_path} 失败: {e}")
                continue
    clean = (lambda s: s) if family != "Helvetica" else _latin1

    # 2. 封面
    pdf.add_page()
    pdf.set_font(family, "B", 24)
    pdf.cell(0, 20, clean(metadata.title), new_x="LMARGIN", new_y="NEXT", align="C")
    if metadata.author:
        pdf.set_font(family, size=14)
        pdf.cell(0, 10, clean(metadata.author), new_x="LMARGIN", new_y="NEXT", align="C")

    # 3. 章节 (按段落处理)
    for title, text in chapters:
        pdf.add_page()
        pdf.set_font(family, "B", 18)
        pdf.cell(0, 14, clean(title), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(4)
        pdf.set_font(family, size=12)
        for p in strip_markdown(text).split("\n"):
            p = p.strip()
            if not p:
                pdf.ln(5)
                continue
            pdf.multi_cell(0, 8, clean(p), new_x="LMARGIN", new_y="NEXT")
            pdf.ln(2)

    return bytes(pdf.output())


def _paragraphs_html(text: str) -> str:
    body = []
    for line in text.split("\n"):
        line = line.strip()
        body.append(f"<p>{html.escape(line)}</p>" if line else "<br/>")
    return "\n".join(body)


def export_as_epub(metadata: ProjectMetadata, chapters: List[CompiledChapter]) -> bytes:
    """导出为 EPUB 字节流，每个章节一个 XHTML 文件"""
    book = epub.EpubBook()
    book.set_identifier(f"quillborn_{metadata.title.replace(' ', '_')}_{metadata.created_at}")
    book.set_title(metadata.title)
    book.set_language("en")
    if metadata.author:
        book.add_author(metadata.author)

    items = []
    for index, (title, text) in enumerate(chapters, start=1):
        item = epub.EpubHtml(title=title, file_name=f"chapter_{index:03d}.xhtml", lang="en")
        item.content = (
            f"<html><head><meta charset='UTF-8'/></head><body>"
            f"<h1>{html.escape(title)}</h1>{_paragraphs_html(strip_markdown(text))}</body></html>"
        )
        book.add_item(item)
        items.append(item)

    book.toc = items
    book.spine = ["nav"] + items
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())

    # 使用临时文件写入
    with tempfile.NamedTemporaryFile(delete=False, suffix=".epub") as tmp:
        temp_path = tmp.name
    try:
        epub.write_epub(temp_path, book)
        with open(temp_path, "rb") as f:
            return f.read()
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


def render(fmt: str, metadata: ProjectMetadata, chapters: List[CompiledChapter]) -> bytes:
    if fmt == "markdown":
        return export_as_markdown(metadata, chapters).encode("utf-8")
    if fmt == "text":
        return export_as_plain_text(metadata, chapters).encode("utf-8")
    if fmt == "pdf":
        return export_as_pdf(metadata, chapters)
    if fmt == "epub":
        return export_as_epub(metadata, chapters)
    raise ValueError(f"不支持的导出格式: {fmt}")


async def export_project(editor: "EditorSession", fmt: str, output_path: str) -> str:
    """
    导出整个项目。导出前先创建一个 export 快照。

    Returns:
        写入的文件路径。
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"不支持的导出格式: {fmt}")
    await asyncio.to_thread(editor.backend.create_snapshot, editor.project_path, "export")
    planned = plan_chapters(editor.tree, editor.active_chapter)
    chapters = await asyncio.to_thread(read_chapters, editor.backend, editor.project_path, planned)
    data = await asyncio.to_thread(render, fmt, editor.metadata, chapters)
    try:
        os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise PersistFailure(f"写入导出文件失败: {e}") from e
    logger.info(f"已导出 {len(chapters)} 个章节为 {fmt}: {output_path}")
    return output_path
