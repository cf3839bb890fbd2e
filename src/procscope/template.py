"""Label template resolution.

Templates are plain strings with embedded placeholders:

    {argv_after:TOKEN|first}       argv element after the first one containing TOKEN
    {argv_value:--flag|default:D}  value of --flag (``--flag v`` or ``--flag=v``), else D
    {argv_value:-p|argv_value:--port|default:D}
                                   alternate flags, tried in order
    {argv_match_basename}          basename of the argv element the rule regex hit
    {cwd_basename}                 basename of the working directory
    {env:VAR}                      environment variable VAR
    {port}                         detected listening port
    {name}                         raw process name

A placeholder whose value is unavailable becomes the empty string. A
parenthesized segment whose placeholders all came out empty is dropped as a
whole, so ``"vite (port {port})"`` renders as ``"vite"`` when no port is known.
Whitespace is collapsed afterwards.

Resolution is a single left-to-right scan: substituted values are never
rescanned, so argv text that happens to look like a placeholder stays literal.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath

from procscope.models import ProcessRecord

_PLACEHOLDER = r"\{(?P<name>[a-z_]+)(?::(?P<arg>[^{}]*))?\}"
PLACEHOLDER_PATTERN = re.compile(_PLACEHOLDER)

# Either "(...{placeholder}...)" or a bare placeholder.
_TOKEN_PATTERN = re.compile(
    r"\((?P<group>[^()]*?\{[a-z_]+(?::[^{}()]*)?\}[^()]*)\)"
    r"|(?P<bare>\{[a-z_]+(?::[^{}]*)?\})"
)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class TemplateContext:
    """Everything a template may read about one process."""

    argv: tuple[str, ...] = ()
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    detected_port: int | None = None
    name: str = ""
    match_argv_index: int | None = None  # argv element that satisfied the rule regex

    @classmethod
    def from_record(
        cls, record: ProcessRecord, match_argv_index: int | None = None
    ) -> TemplateContext:
        return cls(
            argv=record.argv,
            cwd=record.cwd,
            env=record.env,
            detected_port=record.primary_port,
            name=record.name,
            match_argv_index=match_argv_index,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Placeholder handlers
# ─────────────────────────────────────────────────────────────────────────────


def _argv_after(arg: str, ctx: TemplateContext) -> str:
    token, _, _selector = arg.partition("|")
    if not token:
        return ""
    for i, element in enumerate(ctx.argv):
        if token in element:
            return ctx.argv[i + 1] if i + 1 < len(ctx.argv) else ""
    return ""


def _flag_value(flag: str, argv: tuple[str, ...]) -> str | None:
    prefix = flag + "="
    for i, element in enumerate(argv):
        if element == flag:
            if i + 1 < len(argv):
                return argv[i + 1]
            return None
        if element.startswith(prefix):
            return element[len(prefix) :]
    return None


def _argv_value(arg: str, ctx: TemplateContext) -> str:
    parts = arg.split("|")
    flags = [parts[0]]
    default = ""
    for part in parts[1:]:
        key, _, value = part.partition(":")
        if key == "argv_value":
            flags.append(value)
        elif key == "default":
            default = value
    for flag in flags:
        if not flag:
            continue
        value = _flag_value(flag, ctx.argv)
        if value is not None:
            return value
    return default


def _argv_match_basename(arg: str, ctx: TemplateContext) -> str:
    index = ctx.match_argv_index
    if index is None or not 0 <= index < len(ctx.argv):
        return ""
    return PurePosixPath(ctx.argv[index]).name


def _cwd_basename(arg: str, ctx: TemplateContext) -> str:
    if not ctx.cwd:
        return ""
    return PurePosixPath(ctx.cwd).name


def _env(arg: str, ctx: TemplateContext) -> str:
    if ctx.env is None or not arg:
        return ""
    return ctx.env.get(arg, "")


def _port(arg: str, ctx: TemplateContext) -> str:
    return str(ctx.detected_port) if ctx.detected_port is not None else ""


def _name(arg: str, ctx: TemplateContext) -> str:
    return ctx.name


_HANDLERS: dict[str, Callable[[str, TemplateContext], str]] = {
    "argv_after": _argv_after,
    "argv_value": _argv_value,
    "argv_match_basename": _argv_match_basename,
    "cwd_basename": _cwd_basename,
    "env": _env,
    "port": _port,
    "name": _name,
}

KNOWN_PLACEHOLDERS = frozenset(_HANDLERS)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def placeholders(template: str) -> list[str]:
    """Return placeholder names in order of appearance."""
    return [m.group("name") for m in PLACEHOLDER_PATTERN.finditer(template)]


def unknown_placeholders(template: str) -> list[str]:
    """Return placeholder names the resolver does not understand."""
    return [name for name in placeholders(template) if name not in KNOWN_PLACEHOLDERS]


def references_port(template: str) -> bool:
    """True if the template renders the detected port itself."""
    return "port" in placeholders(template)


def _resolve_placeholder(match: re.Match[str], ctx: TemplateContext) -> str:
    handler = _HANDLERS.get(match.group("name"))
    if handler is None:
        return ""
    return handler(match.group("arg") or "", ctx)


def resolve(template: str, context: TemplateContext) -> str:
    """Resolve every placeholder in template against context.

    Never raises for missing data. The result may be empty; callers decide
    the fallback.
    """

    def substitute(match: re.Match[str]) -> str:
        group = match.group("group")
        if group is None:
            return PLACEHOLDER_PATTERN.sub(lambda m: _resolve_placeholder(m, context), match[0])

        filled = False

        def fill(m: re.Match[str]) -> str:
            nonlocal filled
            value = _resolve_placeholder(m, context)
            if value:
                filled = True
            return value

        inner = PLACEHOLDER_PATTERN.sub(fill, group)
        return f"({inner})" if filled else ""

    text = _TOKEN_PATTERN.sub(substitute, template)
    return _WHITESPACE.sub(" ", text).strip()
