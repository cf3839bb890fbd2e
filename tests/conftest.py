"""Shared test fixtures for procscope."""

from pathlib import Path

import pytest
import structlog

from procscope.enrichment import Enricher
from procscope.models import ProcessRecord
from procscope.rules import RuleCatalog


def make_record(
    pid: int = 100,
    ppid: int = 1,
    name: str = "test_proc",
    argv: list[str] | tuple[str, ...] | None = None,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    rss_bytes: int = 1024,
    cpu_time_user: float = 1.0,
    cpu_time_system: float = 0.5,
    listening_ports: tuple[int, ...] = (),
    **kwargs,
) -> ProcessRecord:
    """Create a ProcessRecord for testing. argv defaults to [name]."""
    return ProcessRecord(
        pid=pid,
        ppid=ppid,
        name=name,
        argv=tuple(argv) if argv is not None else (name,),
        cwd=cwd,
        env=env,
        rss_bytes=rss_bytes,
        cpu_time_user=cpu_time_user,
        cpu_time_system=cpu_time_system,
        listening_ports=listening_ports,
        **kwargs,
    )


def make_catalog(*entries: dict) -> RuleCatalog:
    """Compile a catalog from raw rule entries (no built-ins)."""
    return RuleCatalog.from_entries(entries, source="test")


@pytest.fixture
def empty_enricher() -> Enricher:
    """Enricher with no rules: every label is the raw name."""
    return Enricher(RuleCatalog())


@pytest.fixture
def builtin_enricher() -> Enricher:
    """Enricher over the built-in rules."""
    return Enricher(RuleCatalog.builtin())


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a temp dir so config, rules and logs never touch the real one."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any structlog.configure() a test performed."""
    yield
    structlog.reset_defaults()
