from __future__ import annotations

import logging
from pathlib import Path

import pytest

from cli import build_parser, main


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
        handler.close()


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_new_import_search_export(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    logs = tmp_path / "logs"
    base = ["--log-dir", str(logs)]

    assert main(base + ["new", str(tmp_path), "Night Book", "--author", "Ada"]) == 0
    project = str(tmp_path / "Night Book.qb")
    assert project in capsys.readouterr().out

    source = tmp_path / "draft.md"
    source.write_text("# One\n\nThe wolf sleeps.\n\n# Two\n\nMorning comes.\n", encoding="utf-8")
    assert main(base + ["import", project, str(source)]) == 0
    assert "Two" in capsys.readouterr().out

    assert main(base + ["search", project, "wolf"]) == 0
    assert "The wolf sleeps." in capsys.readouterr().out

    output = tmp_path / "out" / "book.md"
    assert main(base + ["export", project, str(output), "--format", "markdown"]) == 0
    exported = output.read_text(encoding="utf-8")
    assert "## One" in exported
    assert "## Two" in exported

    for handler in logging.root.handlers:
        handler.flush()
    assert (logs / "app.log").exists()


def test_missing_project_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    code = main(["--log-dir", str(tmp_path / "logs"), "search", str(tmp_path / "nowhere.qb"), "x"])
    assert code == 1
    assert "Error:" in capsys.readouterr().err
