"""Configuration system for procscope."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Files and directories whose presence marks a project root. Entries starting
# with "*" are glob patterns (bundle directories like Foo.xcodeproj).
DEFAULT_MARKER_FILES = [
    ".git",
    "package.json",
    "Cargo.toml",
    "go.mod",
    "Gemfile",
    "pyproject.toml",
    "setup.py",
    "Makefile",
    "CMakeLists.txt",
    "Package.swift",
    "*.xcodeproj",
    "*.xcworkspace",
    "build.gradle",
    "pom.xml",
    "composer.json",
    "mix.exs",
    "Dockerfile",
]


@dataclass
class EnrichmentConfig:
    """Label enrichment configuration."""

    rules_path: str = ""  # Empty = <config_dir>/rules.toml
    include_builtin_rules: bool = True  # Append built-in rules after user rules
    default_icon: str = "generic"  # Icon for processes no rule matches
    port_suffix: bool = True  # Append " (port N)" for listening processes


@dataclass
class TreeConfig:
    """Process tree configuration."""

    # Parent pids that never act as a tree parent (kernel_task, launchd)
    root_pids: list[int] = field(default_factory=lambda: [0, 1])


@dataclass
class ProjectsConfig:
    """Project grouping configuration."""

    marker_files: list[str] = field(default_factory=lambda: list(DEFAULT_MARKER_FILES))
    # Working directories that never belong to a project
    ignored_directories: list[str] = field(default_factory=lambda: ["/", "/usr"])
    # The upward walk stops before checking any of these
    ceiling_directories: list[str] = field(default_factory=list)


@dataclass
class SystemConfig:
    """Logging configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    projects: ProjectsConfig = field(default_factory=ProjectsConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "procscope"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def rules_path(self) -> Path:
        """Path to the user enrichment rules file."""
        if self.enrichment.rules_path:
            return Path(self.enrichment.rules_path).expanduser()
        return self.config_dir / "rules.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "procscope"

    @property
    def log_path(self) -> Path:
        """JSON-lines log path."""
        return self.state_dir / "procscope.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("enrichment", "tree", "projects", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() of an empty file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            enrichment=_load_enrichment_config(_section(data, "enrichment")),
            tree=_load_tree_config(_section(data, "tree")),
            projects=_load_projects_config(_section(data, "projects")),
            system=_load_system_config(_section(data, "system")),
        )


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table, got {section!r}")
    return section


def _bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _count(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
    return value


def _str_list(data: dict, key: str, default: list[str]) -> list[str]:
    value = data.get(key, default)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be an array of strings, got {value!r}")
    return list(value)


def _load_enrichment_config(data: dict) -> EnrichmentConfig:
    """Load enrichment config from TOML data."""
    from procscope.rules import ICON_CATEGORIES

    d = EnrichmentConfig()
    default_icon = data.get("default_icon", d.default_icon)
    if default_icon not in ICON_CATEGORIES:
        raise ValueError(
            f"Invalid default_icon: {default_icon!r}. Must be one of {sorted(ICON_CATEGORIES)}"
        )

    rules_path = data.get("rules_path", d.rules_path)
    if not isinstance(rules_path, str):
        raise ValueError(f"rules_path must be a string, got {rules_path!r}")

    return EnrichmentConfig(
        rules_path=rules_path,
        include_builtin_rules=_bool(data, "include_builtin_rules", d.include_builtin_rules),
        default_icon=default_icon,
        port_suffix=_bool(data, "port_suffix", d.port_suffix),
    )


def _load_tree_config(data: dict) -> TreeConfig:
    """Load tree config from TOML data."""
    d = TreeConfig()
    root_pids = data.get("root_pids", d.root_pids)
    if not isinstance(root_pids, list) or not all(
        isinstance(pid, int) and not isinstance(pid, bool) and pid >= 0 for pid in root_pids
    ):
        raise ValueError(f"root_pids must be non-negative integers, got {root_pids!r}")
    return TreeConfig(root_pids=list(root_pids))


def _load_projects_config(data: dict) -> ProjectsConfig:
    """Load projects config from TOML data."""
    d = ProjectsConfig()
    marker_files = _str_list(data, "marker_files", d.marker_files)
    if not marker_files:
        raise ValueError("marker_files must not be empty")

    return ProjectsConfig(
        marker_files=marker_files,
        ignored_directories=_str_list(data, "ignored_directories", d.ignored_directories),
        ceiling_directories=_str_list(data, "ceiling_directories", d.ceiling_directories),
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=_count(data, "log_max_bytes", d.log_max_bytes),
        log_backup_count=_count(data, "log_backup_count", d.log_backup_count),
    )
