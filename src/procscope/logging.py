"""Console diagnostics and structlog setup.

The CLI reports rule catalog problems, snapshot file activity and config
errors as short Rich-styled lines on stderr, so stdout carries only command
output. Structured events go to a JSON-lines log file configured by
configure().
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from procscope.config import Config

_console = Console(highlight=False, stderr=True)

# Leading mark for each kind of console line
_MARKS = {
    "note": "[dim]·[/]",
    "problem": "[yellow]![/]",
    "failure": "[bold red]✗[/]",
}

RULES_GLYPH = "📜"
SNAPSHOT_GLYPH = "📸"
SAVE_GLYPH = "💾"


def _say(kind: str, msg: str, glyph: str | None = None) -> None:
    """Print one console line: mark, optional glyph, then the Rich-markup message."""
    parts = [_MARKS[kind], glyph, msg]
    _console.print(" ".join(p for p in parts if p))


def catalog_loaded(rule_count: int, problem_count: int) -> None:
    """Report the size of the loaded rule catalog."""
    summary = f"Loaded [cyan]{rule_count}[/] rules"
    if not problem_count:
        _say("note", summary, RULES_GLYPH)
        return
    noun = "problem" if problem_count == 1 else "problems"
    _say("problem", f"{summary}, [yellow]{problem_count}[/] {noun}", RULES_GLYPH)


def rule_problem(index: int, name: str, reason: str) -> None:
    _say("problem", f"Rule [cyan]{name}[/] [dim](#{index})[/]: {reason}")


def snapshot_loaded(path: str, process_count: int, container_count: int) -> None:
    _say(
        "note",
        f"Snapshot [cyan]{path}[/] [dim]({process_count} processes, "
        f"{container_count} containers)[/]",
        SNAPSHOT_GLYPH,
    )


def snapshot_saved(path: str, process_count: int) -> None:
    _say("note", f"Saved [cyan]{process_count}[/] processes to [cyan]{path}[/]", SAVE_GLYPH)


def config_error(message: str) -> None:
    """Report an unusable config, rules or snapshot file."""
    _say("failure", message)


def config_created(path: str) -> None:
    _say("note", f"Created config at [cyan]{path}[/]")


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, verbose: bool = False) -> None:
    """Configure structlog with a JSON-lines file and optional console echo.

    File output uses JSON Lines for machine parsing. With verbose=True,
    warnings are also rendered on stderr.

    Args:
        config: Application config with paths
        verbose: Echo library warnings to the console
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.DEBUG if verbose else logging.INFO)
    stdlib_root.handlers.clear()

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source("procscope"),
        structlog.processors.format_exc_info,
    ]
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=pre_chain,
        )
    )
    stdlib_root.addHandler(file_handler)

    if verbose:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(colors=False),
                foreign_pre_chain=pre_chain,
            )
        )
        stdlib_root.addHandler(console_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("procscope"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
