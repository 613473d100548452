from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from config import load_environment
from config.loader import get_setting, load_config, save_user_config
from core.exceptions import ConfigurationError
from core.logger import setup_logging


def test_defaults_are_loaded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("QUILLBORN_AUTOSAVE_DELAY", raising=False)
    config = load_config(user_config_path=str(tmp_path / "absent.yaml"))

    assert get_setting(config, "autosave.quiet_period") == 1.5
    assert get_setting(config, "search.max_matches_per_chapter") == 100
    assert get_setting(config, "palimpsest.min_length") == 2
    assert get_setting(config, "snapshots.keep") == 10
    assert get_setting(config, "missing.key", "fallback") == "fallback"


def test_user_config_merges_section_wise(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("QUILLBORN_AUTOSAVE_DELAY", raising=False)
    user_path = tmp_path / "user_config.yaml"
    save_user_config({"autosave": {"quiet_period": 3.0}, "editor": {"smart_punctuation": False}}, str(user_path))

    config = load_config(user_config_path=str(user_path))

    assert get_setting(config, "autosave.quiet_period") == 3.0
    assert get_setting(config, "editor.smart_punctuation") is False
    assert get_setting(config, "search.max_matches_per_chapter") == 100


def test_environment_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUILLBORN_AUTOSAVE_DELAY", "0.25")
    config = load_config(user_config_path=str(tmp_path / "absent.yaml"))
    assert get_setting(config, "autosave.quiet_period") == 0.25

    monkeypatch.setenv("QUILLBORN_AUTOSAVE_DELAY", "soon")
    with pytest.raises(ConfigurationError):
        load_config(user_config_path=str(tmp_path / "absent.yaml"))


def test_load_environment_feeds_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("QUILLBORN_AUTOSAVE_DELAY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("QUILLBORN_AUTOSAVE_DELAY=0.5\n", encoding="utf-8")

    try:
        assert load_environment(str(env_file)) is True
        config = load_config(user_config_path=str(tmp_path / "absent.yaml"))
        assert get_setting(config, "autosave.quiet_period") == 0.5
    finally:
        os.environ.pop("QUILLBORN_AUTOSAVE_DELAY", None)


def test_malformed_yaml_raises(tmp_path: Path) -> None:
    bad = tmp_path / "user_config.yaml"
    bad.write_text("autosave: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(user_config_path=str(bad))


def test_setup_logging_writes_rotating_file(tmp_path: Path) -> None:
    setup_logging(log_dir=str(tmp_path), level="debug")
    try:
        logging.getLogger("quillborn.test").info("hello log")
        for handler in logging.root.handlers:
            handler.flush()
        assert "hello log" in (tmp_path / "app.log").read_text(encoding="utf-8")
    finally:
        for handler in logging.root.handlers[:]:
            logging.root.removeHandler(handler)
            handler.close()
