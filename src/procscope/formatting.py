"""Formatting utilities for CLI output."""

from procscope.models import EnrichedProcess, ProjectGroup

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(num_bytes: int) -> str:
    """Format a byte count with binary units.

    Returns:
        "512 B", "1.5 MB", "2.0 GB"
    """
    if abs(num_bytes) < 1024:
        return f"{num_bytes} B"
    value = float(num_bytes)
    for unit in _BYTE_UNITS[1:]:
        value /= 1024
        if abs(value) < 1024 or unit == _BYTE_UNITS[-1]:
            break
    return f"{value:.1f} {unit}"


def format_cpu_time(seconds: float) -> str:
    """Format CPU time compactly.

    Returns:
        - Under a minute: "3.2s"
        - Under an hour: "4m05s"
        - Otherwise: "2h03m"
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def render_tree(forest: list[EnrichedProcess], *, show_pid: bool = True) -> list[str]:
    """Render the forest as box-drawing lines, one per process."""
    lines: list[str] = []
    # (node, prefix for this line, prefix for its children)
    stack = [(node, "", "") for node in reversed(forest)]
    while stack:
        node, prefix, child_prefix = stack.pop()
        pid = f" [{node.pid}]" if show_pid else ""
        lines.append(f"{prefix}{node.label}{pid}")
        for i, child in enumerate(reversed(node.children)):
            last = i == 0
            stack.append(
                (
                    child,
                    child_prefix + ("└─ " if last else "├─ "),
                    child_prefix + ("   " if last else "│  "),
                )
            )
    return lines


def format_group(group: ProjectGroup) -> str:
    """One-line summary of a project group."""
    containers = f", {len(group.containers)} containers" if group.containers else ""
    return (
        f"{group.display_name:24}  {group.totals.process_count:>4} procs  "
        f"{format_bytes(group.totals.rss_bytes):>10}  "
        f"{format_cpu_time(group.totals.cpu_time):>8}{containers}  {group.root}"
    )
