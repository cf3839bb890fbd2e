"""Project grouping by filesystem marker detection.

The only part of the pipeline that touches the filesystem. Each distinct
working directory costs at most one upward walk per refresh; results (and
every ancestor visited along the way) are memoized in the resolver.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from pathlib import Path

import structlog

from procscope.config import DEFAULT_MARKER_FILES
from procscope.models import (
    ContainerDescriptor,
    EnrichedProcess,
    ProcessRecord,
    ProjectGroup,
    ResourceTotals,
)
from procscope.tree import flatten, map_forest

log = structlog.get_logger()

DEFAULT_IGNORED_DIRECTORIES = ("/", "/usr")


def _normalize(directory: str) -> str:
    return str(Path(directory))


class ProjectRootResolver:
    """Maps a working directory to its nearest ancestor containing a marker.

    Create one per refresh cycle: the memo is not invalidated, so a long-lived
    resolver would miss repositories created after the first lookup.
    """

    def __init__(
        self,
        markers: Iterable[str] = DEFAULT_MARKER_FILES,
        ceiling_directories: Iterable[str] = (),
    ) -> None:
        self.markers = tuple(markers)
        self.ceilings = frozenset(_normalize(d) for d in ceiling_directories)
        self._cache: dict[str, str | None] = {}

    def resolve(self, directory: str) -> str | None:
        """Nearest directory at or above directory holding a marker, else None."""
        start = Path(directory)
        if not start.is_absolute():
            return None

        key = str(start)
        if key in self._cache:
            return self._cache[key]

        visited: list[str] = []
        root: str | None = None
        for candidate in (start, *start.parents):
            path = str(candidate)
            if path in self.ceilings:
                break
            if path in self._cache:
                root = self._cache[path]
                break
            visited.append(path)
            if self._has_marker(candidate):
                root = path
                break

        for path in visited:
            self._cache[path] = root
        return root

    def _has_marker(self, directory: Path) -> bool:
        for marker in self.markers:
            try:
                if marker.startswith("*"):
                    if any(directory.glob(marker)):
                        return True
                elif (directory / marker).exists():
                    return True
            except OSError as e:
                # Unreadable or vanished: treat as "no marker here" and keep walking
                log.debug(
                    "marker_check_failed",
                    directory=str(directory),
                    marker=marker,
                    error=str(e),
                )
        return False


def _container_group_key(
    container: ContainerDescriptor,
    existing: dict[str, list[ProcessRecord]],
    resolver: ProjectRootResolver,
) -> str | None:
    working_dir = container.compose_working_dir
    if working_dir:
        normalized = _normalize(working_dir)
        if normalized in existing:
            return normalized
        root = resolver.resolve(normalized)
        if root is not None and root in existing:
            return root
        return normalized
    if container.compose_project:
        return f"compose:{container.compose_project}"
    return None


def group_by_project(
    forest: Iterable[EnrichedProcess],
    markers: Iterable[str] = DEFAULT_MARKER_FILES,
    *,
    containers: Iterable[ContainerDescriptor] = (),
    resolver: ProjectRootResolver | None = None,
    ignored_directories: Iterable[str] = DEFAULT_IGNORED_DIRECTORIES,
) -> list[ProjectGroup]:
    """Group the forest's processes by inferred project root.

    Args:
        forest: Enriched forest (every node is considered, not just roots)
        markers: Marker file names; ignored when resolver is given
        containers: Container descriptors carrying compose labels
        resolver: Shared resolver, e.g. to reuse its memo within one refresh
        ignored_directories: Working directories never grouped

    Returns:
        Groups ordered by total RSS, largest first. Processes without a
        project root are in no group.
    """
    resolver = resolver or ProjectRootResolver(markers)
    ignored = frozenset(_normalize(d) for d in ignored_directories)

    members: dict[str, list[ProcessRecord]] = {}
    for node in flatten(forest):
        cwd = node.record.cwd
        if not cwd or _normalize(cwd) in ignored:
            continue
        root = resolver.resolve(cwd)
        if root is None:
            continue
        members.setdefault(root, []).append(node.record)

    overrides: dict[str, str] = {}
    container_names: dict[str, list[str]] = {}
    for container in containers:
        key = _container_group_key(container, members, resolver)
        if key is None:
            continue
        members.setdefault(key, [])
        if container.compose_project:
            overrides.setdefault(key, container.compose_project)
        container_names.setdefault(key, []).append(container.name)
        log.debug("container_folded", container=container.name, group=key)

    groups = [
        ProjectGroup(
            root=root,
            pids=frozenset(record.pid for record in records),
            totals=ResourceTotals.from_records(records),
            name_override=overrides.get(root),
            containers=tuple(sorted(container_names.get(root, []))),
        )
        for root, records in members.items()
    ]
    groups.sort(key=lambda group: (-group.totals.rss_bytes, group.root))
    return groups


def assign_project_roots(
    forest: Iterable[EnrichedProcess], groups: Iterable[ProjectGroup]
) -> list[EnrichedProcess]:
    """Return a copy of forest with each node's project_root filled in."""
    root_by_pid = {pid: group.root for group in groups for pid in group.pids}

    def annotate(
        node: EnrichedProcess, children: tuple[EnrichedProcess, ...]
    ) -> EnrichedProcess:
        return dataclasses.replace(
            node, project_root=root_by_pid.get(node.pid), children=children
        )

    return map_forest(forest, annotate)
