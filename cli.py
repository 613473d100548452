"""
命令行入口：在不启动编辑界面的情况下创建、导入、导出和搜索项目。
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from config import load_environment
from core import logger as logger_config
from core.exceptions import QuillbornError
from infra.storage import sql_db
from infra.storage.file_backend import FileBackend
from services import export_service, import_service
from services.editor_service import EditorSession

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quillborn", description="Manage Quillborn manuscript projects.")
    parser.add_argument("--log-dir", default=logger_config.LOG_DIR, help="Directory for the rotating log file.")
    parser.add_argument("--log-level", default=None, help="Log level (defaults to $LOG_LEVEL or INFO).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    new = subparsers.add_parser("new", help="Create a new project.")
    new.add_argument("parent_dir", help="Directory that will contain the project folder.")
    new.add_argument("title")
    new.add_argument("--author", default="")

    imp = subparsers.add_parser("import", help="Import a text or markdown file as chapters.")
    imp.add_argument("project")
    imp.add_argument("source")
    imp.add_argument("--strategy", default="heading", help="heading, scene_break or single.")

    exp = subparsers.add_parser("export", help="Export the whole manuscript.")
    exp.add_argument("project")
    exp.add_argument("output")
    exp.add_argument("--format", dest="fmt", choices=export_service.EXPORT_FORMATS, default="markdown")

    search = subparsers.add_parser("search", help="Search every chapter.")
    search.add_argument("project")
    search.add_argument("query")
    search.add_argument("--case-sensitive", action="store_true")
    search.add_argument("--regex", action="store_true")

    history = subparsers.add_parser("history", help="Show daily word counts.")
    history.add_argument("project")
    return parser


async def _run(args: argparse.Namespace) -> List[str]:
    editor = EditorSession(FileBackend())
    try:
        if args.command == "new":
            return [await editor.create_project(args.parent_dir, args.title, args.author)]

        await editor.open_project(args.project)
        if args.command == "import":
            text = await asyncio.to_thread(import_service.read_import_file, args.source)
            chapters = import_service.segment_document(
                text, args.strategy, title=import_service.title_from_path(args.source)
            )
            created = await import_service.import_chapters(editor, chapters)
            return [node.title for node in created]
        if args.command == "export":
            return [await export_service.export_project(editor, args.fmt, args.output)]
        if args.command == "search":
            results = await editor.search(args.query, case_sensitive=args.case_sensitive, use_regex=args.regex)
            return [
                f"{result.chapter_title}:{match.line_number}: {match.line_content}"
                for result in results
                for match in result.matches
            ]
        history = await asyncio.to_thread(sql_db.get_writing_history, args.project)
        return [f"{day['date']}\t{day['words']}" for day in history]
    finally:
        await editor.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_environment()
    logger_config.setup_logging(log_dir=args.log_dir, level=args.log_level)

    try:
        lines = asyncio.run(_run(args))
    except (QuillbornError, ValueError, OSError) as e:
        logger.error(f"命令 {args.command} 失败: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for line in lines:
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
