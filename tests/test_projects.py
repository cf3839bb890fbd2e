"""Tests for project root detection and grouping."""

from pathlib import Path

import pytest

from procscope.enrichment import Enricher
from procscope.models import (
    COMPOSE_PROJECT_LABEL,
    COMPOSE_WORKING_DIR_LABEL,
    ContainerDescriptor,
)
from procscope.projects import ProjectRootResolver, assign_project_roots, group_by_project
from procscope.tree import build_forest, flatten

from tests.conftest import make_record


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """app/ is a git checkout with api/ and web/ below it; scratch/ has no marker."""
    app = tmp_path / "app"
    (app / ".git").mkdir(parents=True)
    (app / "api" / "src").mkdir(parents=True)
    (app / "web").mkdir()
    (tmp_path / "scratch").mkdir()
    return tmp_path


def _resolver(workspace: Path, markers=(".git",)) -> ProjectRootResolver:
    # Never look above the temp dir
    return ProjectRootResolver(markers, ceiling_directories=[str(workspace.parent)])


def _forest(enricher: Enricher, *processes: tuple[int, str | None, int]):
    records = [
        make_record(pid=pid, ppid=1, cwd=cwd, rss_bytes=rss) for pid, cwd, rss in processes
    ]
    return build_forest(records, enricher)


class TestProjectRootResolver:
    """Tests for the upward marker walk."""

    def test_marker_in_ancestor(self, workspace: Path) -> None:
        resolver = _resolver(workspace)
        assert resolver.resolve(str(workspace / "app" / "api" / "src")) == str(workspace / "app")

    def test_marker_in_directory_itself(self, workspace: Path) -> None:
        assert _resolver(workspace).resolve(str(workspace / "app")) == str(workspace / "app")

    def test_nearest_marker_wins(self, workspace: Path) -> None:
        (workspace / "app" / "web" / "package.json").write_text("{}")
        resolver = _resolver(workspace, markers=(".git", "package.json"))
        assert resolver.resolve(str(workspace / "app" / "web")) == str(workspace / "app" / "web")
        assert resolver.resolve(str(workspace / "app" / "api")) == str(workspace / "app")

    def test_no_marker(self, workspace: Path) -> None:
        assert _resolver(workspace).resolve(str(workspace / "scratch")) is None

    def test_relative_path_is_not_resolved(self, workspace: Path) -> None:
        assert _resolver(workspace).resolve("app/api") is None

    def test_ceiling_stops_walk(self, workspace: Path) -> None:
        resolver = ProjectRootResolver((".git",), ceiling_directories=[str(workspace / "app")])
        assert resolver.resolve(str(workspace / "app" / "api")) is None

    def test_glob_marker(self, workspace: Path) -> None:
        ios = workspace / "scratch" / "ios"
        (ios / "Demo.xcodeproj").mkdir(parents=True)
        resolver = _resolver(workspace, markers=("*.xcodeproj",))
        assert resolver.resolve(str(ios / "Sources")) == str(ios)

    def test_missing_directory_still_walks_up(self, workspace: Path) -> None:
        """A cwd that no longer exists resolves through its ancestors."""
        gone = workspace / "app" / "deleted" / "deeper"
        assert _resolver(workspace).resolve(str(gone)) == str(workspace / "app")

    def test_results_are_memoized(self, workspace: Path) -> None:
        resolver = _resolver(workspace)
        resolver.resolve(str(workspace / "app" / "api" / "src"))
        (workspace / "app" / ".git").rmdir()
        # api/ was visited on the first walk, so no new filesystem check
        assert resolver.resolve(str(workspace / "app" / "api")) == str(workspace / "app")
        assert _resolver(workspace).resolve(str(workspace / "app" / "api")) is None

    def test_permission_error_treated_as_absent(
        self, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        locked = workspace / "app" / "api"
        original_exists = Path.exists

        def exists(self, *args, **kwargs):
            if self.parent == locked:
                raise PermissionError(13, "Permission denied", str(self))
            return original_exists(self, *args, **kwargs)

        monkeypatch.setattr(Path, "exists", exists)
        assert _resolver(workspace).resolve(str(locked)) == str(workspace / "app")


class TestGroupByProject:
    """Tests for group_by_project."""

    def test_processes_under_one_repo_share_a_group(
        self, workspace: Path, empty_enricher: Enricher
    ) -> None:
        app = workspace / "app"
        forest = _forest(
            empty_enricher, (10, str(app / "api"), 100), (11, str(app / "web"), 200)
        )
        groups = group_by_project(forest, resolver=_resolver(workspace))

        assert len(groups) == 1
        group = groups[0]
        assert group.root == str(app)
        assert group.pids == frozenset({10, 11})
        assert group.display_name == "app"
        assert group.totals.process_count == 2
        assert group.totals.rss_bytes == 300
        assert group.totals.cpu_time == pytest.approx(3.0)

    def test_nested_processes_are_grouped(
        self, workspace: Path, empty_enricher: Enricher
    ) -> None:
        """Children count too, not just forest roots."""
        app = str(workspace / "app")
        records = [
            make_record(pid=10, ppid=1, cwd=app),
            make_record(pid=11, ppid=10, cwd=app),
            make_record(pid=12, ppid=11, cwd=None),
        ]
        forest = build_forest(records, empty_enricher)
        groups = group_by_project(forest, resolver=_resolver(workspace))
        assert groups[0].pids == frozenset({10, 11})

    def test_ungrouped_processes_are_left_out(
        self, workspace: Path, empty_enricher: Enricher
    ) -> None:
        forest = _forest(
            empty_enricher,
            (10, str(workspace / "app"), 1),
            (11, str(workspace / "scratch"), 1),
            (12, None, 1),
        )
        groups = group_by_project(forest, resolver=_resolver(workspace))
        assert [g.pids for g in groups] == [frozenset({10})]

    def test_ignored_directories(self, empty_enricher: Enricher) -> None:
        forest = _forest(empty_enricher, (10, "/", 1), (11, "/usr", 1))
        resolver = ProjectRootResolver(("usr",))
        assert group_by_project(forest, resolver=resolver) == []

        groups = group_by_project(forest, resolver=resolver, ignored_directories=())
        assert [g.root for g in groups] == ["/"]

    def test_groups_sorted_by_rss(self, workspace: Path, empty_enricher: Enricher) -> None:
        (workspace / "scratch" / ".git").mkdir()
        forest = _forest(
            empty_enricher,
            (10, str(workspace / "app"), 100),
            (11, str(workspace / "scratch"), 900),
        )
        groups = group_by_project(forest, resolver=_resolver(workspace))
        assert [g.root for g in groups] == [str(workspace / "scratch"), str(workspace / "app")]

    def test_empty_forest(self) -> None:
        assert group_by_project([]) == []


class TestContainers:
    """Tests for folding compose containers into groups."""

    def _container(self, name: str, **labels: str) -> ContainerDescriptor:
        return ContainerDescriptor(id=name[:12], name=name, labels=labels)

    def test_container_joins_matching_group(
        self, workspace: Path, empty_enricher: Enricher
    ) -> None:
        app = str(workspace / "app")
        forest = _forest(empty_enricher, (10, app, 1))
        db = self._container(
            "app-db-1",
            **{COMPOSE_PROJECT_LABEL: "atlas", COMPOSE_WORKING_DIR_LABEL: app},
        )
        groups = group_by_project(forest, containers=[db], resolver=_resolver(workspace))

        assert len(groups) == 1
        assert groups[0].containers == ("app-db-1",)
        assert groups[0].name_override == "atlas"
        assert groups[0].display_name == "atlas"

    def test_working_dir_below_group_root(
        self, workspace: Path, empty_enricher: Enricher
    ) -> None:
        app = workspace / "app"
        forest = _forest(empty_enricher, (10, str(app), 1))
        web = self._container("web-1", **{COMPOSE_WORKING_DIR_LABEL: str(app / "web")})
        groups = group_by_project(forest, containers=[web], resolver=_resolver(workspace))

        assert len(groups) == 1
        assert groups[0].root == str(app)
        assert groups[0].containers == ("web-1",)
        assert groups[0].name_override is None

    def test_container_without_processes_gets_own_group(
        self, workspace: Path, empty_enricher: Enricher
    ) -> None:
        elsewhere = str(workspace / "scratch")
        cache = self._container(
            "cache-1",
            **{COMPOSE_PROJECT_LABEL: "cache", COMPOSE_WORKING_DIR_LABEL: elsewhere},
        )
        groups = group_by_project([], containers=[cache], resolver=_resolver(workspace))

        assert len(groups) == 1
        assert groups[0].root == elsewhere
        assert groups[0].pids == frozenset()
        assert groups[0].totals.process_count == 0
        assert groups[0].display_name == "cache"

    def test_project_label_only(self, workspace: Path) -> None:
        svc = self._container("svc-1", **{COMPOSE_PROJECT_LABEL: "shop"})
        groups = group_by_project([], containers=[svc], resolver=_resolver(workspace))
        assert [g.root for g in groups] == ["compose:shop"]

    def test_unlabeled_container_is_ignored(self, workspace: Path) -> None:
        plain = self._container("nginx")
        assert group_by_project([], containers=[plain], resolver=_resolver(workspace)) == []


class TestAssignProjectRoots:
    """Tests for annotating forest nodes with their group root."""

    def test_roots_are_assigned(self, workspace: Path, empty_enricher: Enricher) -> None:
        app = str(workspace / "app")
        records = [
            make_record(pid=10, ppid=1, cwd=app),
            make_record(pid=11, ppid=10, cwd=str(workspace / "scratch")),
        ]
        forest = build_forest(records, empty_enricher)
        groups = group_by_project(forest, resolver=_resolver(workspace))

        annotated = assign_project_roots(forest, groups)
        roots = {node.pid: node.project_root for node in flatten(annotated)}
        assert roots == {10: app, 11: None}
        # input forest is not modified
        assert forest[0].project_root is None
