"""Enrichment rule catalog.

A catalog is an ordered, read-only table of rules. Matching is a linear scan:
the first rule whose conditions all hold wins. Catalogs are built once at
startup and shared freely; nothing mutates them afterwards.

User rules live in a TOML file as an array of tables::

    [[rules]]
    name = "python-uvicorn"
    process_name = "python3"
    argv_contains = "uvicorn"
    template = "uvicorn {argv_after:uvicorn|first} (port {argv_value:--port|default:8000})"
    icon = "python"

A rule that cannot be compiled is skipped and recorded as a diagnostic; the
rest of the catalog still loads.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, get_args

import structlog
import tomlkit

from procscope.models import ProcessRecord
from procscope.template import unknown_placeholders

log = structlog.get_logger()

IconCategory = Literal[
    "generic",
    "python",
    "node",
    "ruby",
    "go",
    "container",
    "remote",
    "build",
    "swift",
    "server",
    "database",
]
ICON_CATEGORIES: frozenset[str] = frozenset(get_args(IconCategory))
DEFAULT_ICON = "generic"
DEFAULT_TEMPLATE = "{name}"

_STRING_FIELDS = ("name", "process_name", "argv_contains", "argv_regex", "env_contains", "template")


class RuleError(ValueError):
    """A single catalog entry could not be turned into a rule."""


@dataclass(frozen=True)
class MatchSpec:
    """Conditions a process must satisfy. Omitted (None) conditions are not checked."""

    process_name: str | None = None
    argv_contains: str | None = None
    argv_regex: re.Pattern[str] | None = None
    env_contains: str | None = None

    def matches(self, record: ProcessRecord) -> bool:
        """True if every present condition holds for record."""
        if self.process_name is not None and record.name != self.process_name:
            return False

        joined = record.argv_joined
        if self.argv_contains is not None and self.argv_contains not in joined:
            return False
        if self.argv_regex is not None and self.argv_regex.search(joined) is None:
            return False

        if self.env_contains is not None:
            # No env snapshot means the condition cannot be satisfied
            if record.env is None:
                return False
            needle = self.env_contains
            if not any(needle in f"{key}={value}" for key, value in record.env.items()):
                return False

        return True

    def regex_argv_index(self, record: ProcessRecord) -> int | None:
        """Index of the argv element where the regex match starts, if any."""
        if self.argv_regex is None or not record.argv:
            return None
        match = self.argv_regex.search(record.argv_joined)
        if match is None:
            return None

        position = match.start()
        offset = 0
        for i, element in enumerate(record.argv):
            end = offset + len(element)
            if position < end:
                return i
            offset = end + 1  # joining space
        return len(record.argv) - 1


@dataclass(frozen=True)
class EnrichmentRule:
    """One catalog entry: conditions, label template and icon."""

    name: str
    match: MatchSpec
    template: str = DEFAULT_TEMPLATE
    icon: str = DEFAULT_ICON
    priority: int = 0

    def describe(self) -> str:
        """Human-readable summary of the match conditions."""
        parts = []
        if self.match.process_name is not None:
            parts.append(f"name={self.match.process_name}")
        if self.match.argv_contains is not None:
            parts.append(f"argv~{self.match.argv_contains!r}")
        if self.match.argv_regex is not None:
            parts.append(f"argv=/{self.match.argv_regex.pattern}/")
        if self.match.env_contains is not None:
            parts.append(f"env~{self.match.env_contains!r}")
        return " ".join(parts) or "*"


@dataclass(frozen=True)
class RuleDiagnostic:
    """Why a catalog entry was skipped or degraded."""

    index: int
    name: str
    reason: str


def parse_rule(entry: Mapping, index: int) -> tuple[EnrichmentRule, list[str]]:
    """Build a rule from one catalog entry.

    Returns the rule plus non-fatal warnings. Raises RuleError if the entry
    cannot be used at all.
    """
    if not isinstance(entry, Mapping):
        raise RuleError(f"expected a table, got {type(entry).__name__}")

    for key in _STRING_FIELDS:
        value = entry.get(key)
        if value is not None and not isinstance(value, str):
            raise RuleError(f"{key} must be a string, got {type(value).__name__}")

    name = str(entry.get("name") or f"rule-{index}")
    template = str(entry.get("template") or DEFAULT_TEMPLATE)

    unknown = unknown_placeholders(template)
    if unknown:
        raise RuleError(f"unknown placeholder(s) in template: {', '.join(unknown)}")

    pattern = entry.get("argv_regex")
    regex = None
    if pattern is not None:
        try:
            regex = re.compile(str(pattern))
        except re.error as e:
            raise RuleError(f"invalid argv_regex {pattern!r}: {e}") from e

    priority = entry.get("priority", 0)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise RuleError(f"priority must be an integer, got {priority!r}")

    warnings = []
    icon = str(entry.get("icon") or DEFAULT_ICON)
    if icon not in ICON_CATEGORIES:
        warnings.append(f"unknown icon {icon!r}, using {DEFAULT_ICON!r}")
        icon = DEFAULT_ICON

    def optional(key: str) -> str | None:
        value = entry.get(key)
        return str(value) if value is not None else None

    rule = EnrichmentRule(
        name=name,
        match=MatchSpec(
            process_name=optional("process_name"),
            argv_contains=optional("argv_contains"),
            argv_regex=regex,
            env_contains=optional("env_contains"),
        ),
        template=template,
        icon=icon,
        priority=int(priority),
    )
    return rule, warnings


@dataclass(frozen=True)
class RuleCatalog:
    """Ordered, immutable rule table."""

    rules: tuple[EnrichmentRule, ...] = ()
    diagnostics: tuple[RuleDiagnostic, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[EnrichmentRule]:
        return iter(self.rules)

    def find_match(self, record: ProcessRecord) -> EnrichmentRule | None:
        """Return the first rule whose conditions all hold, or None."""
        for rule in self.rules:
            if rule.match.matches(record):
                return rule
        return None

    def extend(self, other: RuleCatalog) -> RuleCatalog:
        """Return a catalog with other's rules after ours, re-sorted by priority."""
        return RuleCatalog(
            rules=_by_priority(self.rules + other.rules),
            diagnostics=self.diagnostics + other.diagnostics,
        )

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping], *, source: str = "rules") -> RuleCatalog:
        """Compile raw entries, skipping (and recording) the ones that fail."""
        rules: list[EnrichmentRule] = []
        diagnostics: list[RuleDiagnostic] = []

        for index, entry in enumerate(entries):
            name = f"rule-{index}"
            if isinstance(entry, Mapping):
                name = str(entry.get("name") or name)
            try:
                rule, warnings = parse_rule(entry, index)
            except RuleError as e:
                diagnostics.append(RuleDiagnostic(index=index, name=name, reason=str(e)))
                log.warning("rule_skipped", source=source, index=index, rule=name, reason=str(e))
                continue

            for warning in warnings:
                diagnostics.append(RuleDiagnostic(index=index, name=rule.name, reason=warning))
                log.warning(
                    "rule_degraded", source=source, index=index, rule=rule.name, reason=warning
                )
            rules.append(rule)

        return cls(rules=_by_priority(rules), diagnostics=tuple(diagnostics))

    @classmethod
    def builtin(cls) -> RuleCatalog:
        """Catalog of the built-in developer-process rules."""
        return cls.from_entries(BUILTIN_RULES, source="builtin")

    @classmethod
    def load(cls, path: Path | None = None, *, include_builtin: bool = True) -> RuleCatalog:
        """Load user rules from TOML, followed by the built-in rules.

        A missing file is not an error. A file that is not valid TOML, or whose
        ``rules`` key is not an array of tables, raises ValueError.
        """
        catalog = cls()
        if path is not None and path.exists():
            try:
                with open(path) as f:
                    data = tomlkit.load(f).unwrap()
            except tomlkit.exceptions.TOMLKitError as e:
                raise ValueError(f"Failed to parse rules file {path}: {e}") from e

            entries = data.get("rules", [])
            if not isinstance(entries, list):
                raise ValueError(f"'rules' in {path} must be an array of tables")
            catalog = cls.from_entries(entries, source=str(path))

        if include_builtin:
            catalog = catalog.extend(cls.builtin())

        log.info(
            "catalog_loaded",
            path=str(path) if path else None,
            rules=len(catalog),
            skipped=len(catalog.diagnostics),
        )
        return catalog


def _by_priority(rules: Iterable[EnrichmentRule]) -> tuple[EnrichmentRule, ...]:
    # sorted() is stable: equal priorities keep catalog order
    return tuple(sorted(rules, key=lambda rule: -rule.priority))


def find_match(record: ProcessRecord, catalog: RuleCatalog) -> EnrichmentRule | None:
    """Return the first rule in catalog that matches record, or None."""
    return catalog.find_match(record)


# ─────────────────────────────────────────────────────────────────────────────
# Built-in rules
# ─────────────────────────────────────────────────────────────────────────────

BUILTIN_RULES: list[dict] = [
    # Python
    {
        "name": "python-uvicorn",
        "process_name": "python3",
        "argv_contains": "uvicorn",
        "template": "uvicorn {argv_after:uvicorn|first} (port {argv_value:--port|default:8000})",
        "icon": "python",
    },
    {
        "name": "python-gunicorn",
        "process_name": "python3",
        "argv_contains": "gunicorn",
        "template": "gunicorn {argv_after:gunicorn|first}",
        "icon": "python",
    },
    {
        "name": "python-flask",
        "process_name": "python3",
        "argv_contains": "flask",
        "template": "Flask {cwd_basename} (port {argv_value:-p|argv_value:--port|default:5000})",
        "icon": "python",
    },
    {
        "name": "python-django",
        "process_name": "python3",
        "argv_contains": "manage.py",
        "template": "Django {cwd_basename}",
        "icon": "python",
    },
    {
        "name": "python-celery",
        "process_name": "python3",
        "argv_contains": "celery",
        "template": "Celery {argv_value:-A|argv_value:--app|default:worker}",
        "icon": "python",
    },
    {
        "name": "python-jupyter",
        "process_name": "python3",
        "argv_contains": "jupyter",
        "template": "Jupyter {argv_after:jupyter|first}",
        "icon": "python",
    },
    {
        "name": "python-script",
        "process_name": "python3",
        "argv_regex": r"[^\s/]+\.py\b",
        "template": "Python {argv_match_basename}",
        "icon": "python",
    },
    # Node.js
    {
        "name": "node-next",
        "process_name": "node",
        "argv_contains": "next",
        "template": "Next.js {cwd_basename} (port {argv_value:-p|argv_value:--port|default:3000})",
        "icon": "node",
    },
    {
        "name": "node-vite",
        "process_name": "node",
        "argv_contains": "vite",
        "template": "Vite {cwd_basename}",
        "icon": "node",
    },
    {
        "name": "node-webpack",
        "process_name": "node",
        "argv_contains": "webpack",
        "template": "Webpack {cwd_basename}",
        "icon": "build",
    },
    {
        "name": "node-express",
        "process_name": "node",
        "argv_contains": "express",
        "template": "Express {cwd_basename} (port {port})",
        "icon": "node",
    },
    {
        "name": "node-script",
        "process_name": "node",
        "argv_regex": r"[^\s/]+\.(?:m?js|cjs|ts)\b",
        "template": "Node {argv_match_basename}",
        "icon": "node",
    },
    # Ruby
    {
        "name": "ruby-rails",
        "process_name": "ruby",
        "argv_contains": "rails",
        "template": "Rails {cwd_basename}",
        "icon": "ruby",
    },
    {
        "name": "ruby-puma",
        "process_name": "ruby",
        "argv_contains": "puma",
        "template": "Puma {cwd_basename} (port {port})",
        "icon": "ruby",
    },
    # Go
    {
        "name": "go-run",
        "process_name": "go",
        "argv_contains": "run",
        "template": "Go {argv_after:run|first}",
        "icon": "go",
    },
    # Datastores
    {
        "name": "postgres",
        "process_name": "postgres",
        "template": "PostgreSQL {argv_value:-D|default:}",
        "icon": "database",
    },
    {
        "name": "redis",
        "process_name": "redis-server",
        "template": "Redis",
        "icon": "database",
    },
    # Containers
    {
        "name": "docker-desktop",
        "process_name": "com.docker.backend",
        "template": "Docker Desktop",
        "icon": "container",
    },
    # Remote sessions
    {
        "name": "ssh-session",
        "process_name": "ssh",
        "template": "SSH {argv_after:ssh|first}",
        "icon": "remote",
    },
    # Apple toolchain
    {
        "name": "xcodebuild",
        "process_name": "xcodebuild",
        "template": "Xcode Build {cwd_basename}",
        "icon": "build",
    },
    {
        "name": "swift-build",
        "process_name": "swift",
        "argv_contains": "build",
        "template": "Swift Build {cwd_basename}",
        "icon": "swift",
    },
]
