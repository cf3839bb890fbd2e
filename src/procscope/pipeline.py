"""One refresh cycle: raw records in, labeled forest and project groups out."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from procscope.config import Config
from procscope.enrichment import Enricher
from procscope.models import ContainerDescriptor, EnrichedProcess, ProcessRecord, ProjectGroup
from procscope.projects import ProjectRootResolver, assign_project_roots, group_by_project
from procscope.rules import RuleCatalog
from procscope.tree import DEFAULT_ROOT_PIDS, build_forest, count_nodes

log = structlog.get_logger()


@dataclass(frozen=True)
class ProcessView:
    """Result of one refresh, handed to the presentation layer as plain data."""

    forest: tuple[EnrichedProcess, ...]
    groups: tuple[ProjectGroup, ...]

    @property
    def process_count(self) -> int:
        return count_nodes(self.forest)

    def to_dict(self) -> dict:
        return {
            "forest": [node.to_dict() for node in self.forest],
            "groups": [group.to_dict() for group in self.groups],
        }


class ViewBuilder:
    """Runs the enrichment pipeline against snapshots.

    The catalog and enricher are shared across refreshes; the project root
    resolver is created fresh for each one.
    """

    def __init__(
        self,
        enricher: Enricher,
        *,
        root_pids: Iterable[int] = DEFAULT_ROOT_PIDS,
        markers: Iterable[str] | None = None,
        ignored_directories: Iterable[str] | None = None,
        ceiling_directories: Iterable[str] = (),
    ) -> None:
        projects = Config().projects
        self.enricher = enricher
        self.root_pids = frozenset(root_pids)
        self.markers = tuple(markers if markers is not None else projects.marker_files)
        self.ignored_directories = tuple(
            ignored_directories
            if ignored_directories is not None
            else projects.ignored_directories
        )
        self.ceiling_directories = tuple(ceiling_directories)

    @classmethod
    def from_config(cls, config: Config) -> ViewBuilder:
        """Load the rule catalog and wire everything from config.

        Raises:
            ValueError: If the rules file is not valid TOML.
        """
        catalog = RuleCatalog.load(
            config.rules_path, include_builtin=config.enrichment.include_builtin_rules
        )
        enricher = Enricher(
            catalog,
            default_icon=config.enrichment.default_icon,
            port_suffix=config.enrichment.port_suffix,
        )
        return cls(
            enricher,
            root_pids=config.tree.root_pids,
            markers=config.projects.marker_files,
            ignored_directories=config.projects.ignored_directories,
            ceiling_directories=config.projects.ceiling_directories,
        )

    def refresh(
        self,
        records: Iterable[ProcessRecord],
        containers: Iterable[ContainerDescriptor] = (),
    ) -> ProcessView:
        """Build the view for one snapshot."""
        forest = build_forest(records, self.enricher, self.root_pids)
        resolver = ProjectRootResolver(self.markers, self.ceiling_directories)
        groups = group_by_project(
            forest,
            containers=containers,
            resolver=resolver,
            ignored_directories=self.ignored_directories,
        )
        forest = assign_project_roots(forest, groups)

        view = ProcessView(forest=tuple(forest), groups=tuple(groups))
        log.debug(
            "view_built",
            processes=view.process_count,
            roots=len(view.forest),
            groups=len(view.groups),
        )
        return view
