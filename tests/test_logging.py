"""Tests for console helpers and structlog configuration."""

import json
import logging
from pathlib import Path

import pytest
import structlog

from procscope import logging as pslog
from procscope.config import Config


@pytest.fixture
def restore_root_logger():
    """Drop the handlers configure() installed on the stdlib root logger."""
    root = logging.getLogger()
    before, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            handler.close()
            root.removeHandler(handler)
    root.setLevel(level)


class TestConsoleHelpers:
    """Rich console output goes to stderr."""

    def test_catalog_loaded(self, capsys: pytest.CaptureFixture[str]) -> None:
        pslog.catalog_loaded(12, 0)
        captured = capsys.readouterr()
        assert "Loaded 12 rules" in captured.err
        assert captured.out == ""

    def test_catalog_loaded_with_problems(self, capsys: pytest.CaptureFixture[str]) -> None:
        pslog.catalog_loaded(12, 2)
        assert "2 problems" in capsys.readouterr().err

    def test_rule_problem(self, capsys: pytest.CaptureFixture[str]) -> None:
        pslog.rule_problem(3, "broken", "bad regex")
        err = capsys.readouterr().err
        assert "broken" in err
        assert "#3" in err
        assert "bad regex" in err

    def test_config_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        pslog.config_error("bad config")
        assert capsys.readouterr().err.strip() == "✗ bad config"

    def test_lines_are_marked_by_kind(self, capsys: pytest.CaptureFixture[str]) -> None:
        pslog.config_created("/tmp/config.toml")
        pslog.rule_problem(1, "r", "unknown icon")
        first, second = capsys.readouterr().err.splitlines()
        assert first.startswith("· Created config at")
        assert second.startswith("! Rule r")


class TestConfigure:
    """Tests for structlog configuration."""

    def test_writes_json_lines(self, isolated_home: Path, restore_root_logger) -> None:
        config = Config()
        pslog.configure(config)

        structlog.get_logger("test").info("rules_reloaded", count=3)
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = config.log_path.read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["event"] == "rules_reloaded"
        assert entry["count"] == 3
        assert entry["source"] == "procscope"
        assert entry["level"] == "info"

    def test_verbose_adds_console_handler(self, isolated_home: Path, restore_root_logger) -> None:
        pslog.configure(Config(), verbose=True)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 2
        assert logging.getLogger().level == logging.DEBUG

    def test_quiet_has_file_handler_only(self, isolated_home: Path, restore_root_logger) -> None:
        pslog.configure(Config())
        assert len(logging.getLogger().handlers) == 1
