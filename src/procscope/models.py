"""Process snapshot data model.

ProcessRecord is owned by the collector and is read-only here. Everything
else is derived once per refresh cycle and discarded after presentation.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Literal

ProcessStatus = Literal["running", "sleeping", "stopped", "zombie", "unknown"]

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
COMPOSE_WORKING_DIR_LABEL = "com.docker.compose.project.working_dir"


@dataclass(frozen=True)
class ProcessRecord:
    """One process as reported by the collector.

    Only pid, ppid and name are guaranteed. Everything else is best effort:
    an empty argv, a None cwd or a None env means "not collected", never an
    error.
    """

    # ─────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────
    pid: int
    ppid: int
    name: str
    executable_path: str | None = None
    argv: tuple[str, ...] = ()
    cwd: str | None = None
    env: Mapping[str, str] | None = None  # None = collector did not supply env
    user: str = ""
    uid: int = -1

    # ─────────────────────────────────────────────────────────────
    # Resources (carried through unmodified)
    # ─────────────────────────────────────────────────────────────
    cpu_time_user: float = 0.0  # Seconds
    cpu_time_system: float = 0.0  # Seconds
    rss_bytes: int = 0
    virtual_bytes: int = 0
    start_time: float | None = None  # Epoch seconds
    status: ProcessStatus = "unknown"

    # ─────────────────────────────────────────────────────────────
    # Network
    # ─────────────────────────────────────────────────────────────
    listening_ports: tuple[int, ...] = ()

    @property
    def argv_joined(self) -> str:
        """Space-joined argv, the string rule conditions are tested against."""
        return " ".join(self.argv)

    @property
    def cpu_time(self) -> float:
        """Total CPU time (user + system) in seconds."""
        return self.cpu_time_user + self.cpu_time_system

    @property
    def primary_port(self) -> int | None:
        """Lowest listening port, if the collector found any."""
        return min(self.listening_ports) if self.listening_ports else None

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "pid": self.pid,
            "ppid": self.ppid,
            "name": self.name,
            "executable_path": self.executable_path,
            "argv": list(self.argv),
            "cwd": self.cwd,
            "env": dict(self.env) if self.env is not None else None,
            "user": self.user,
            "uid": self.uid,
            "cpu_time_user": self.cpu_time_user,
            "cpu_time_system": self.cpu_time_system,
            "rss_bytes": self.rss_bytes,
            "virtual_bytes": self.virtual_bytes,
            "start_time": self.start_time,
            "status": self.status,
            "listening_ports": list(self.listening_ports),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProcessRecord:
        """Deserialize from a dictionary. Only pid, ppid and name are required."""
        env = data.get("env")
        return cls(
            pid=int(data["pid"]),
            ppid=int(data["ppid"]),
            name=data["name"],
            executable_path=data.get("executable_path"),
            argv=tuple(data.get("argv") or ()),
            cwd=data.get("cwd"),
            env=dict(env) if env is not None else None,
            user=data.get("user", ""),
            uid=data.get("uid", -1),
            cpu_time_user=data.get("cpu_time_user", 0.0),
            cpu_time_system=data.get("cpu_time_system", 0.0),
            rss_bytes=data.get("rss_bytes", 0),
            virtual_bytes=data.get("virtual_bytes", 0),
            start_time=data.get("start_time"),
            status=data.get("status", "unknown"),
            listening_ports=tuple(data.get("listening_ports") or ()),
        )


@dataclass(frozen=True)
class EnrichedProcess:
    """A ProcessRecord placed in the forest with its resolved label."""

    record: ProcessRecord
    label: str
    icon: str
    project_root: str | None = None
    children: tuple[EnrichedProcess, ...] = ()

    @property
    def pid(self) -> int:
        return self.record.pid

    def to_dict(self) -> dict:
        """Serialize the node and its subtree."""
        return {
            "pid": self.record.pid,
            "ppid": self.record.ppid,
            "name": self.record.name,
            "label": self.label,
            "icon": self.icon,
            "project_root": self.project_root,
            "rss_bytes": self.record.rss_bytes,
            "cpu_time": self.record.cpu_time,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(frozen=True)
class ResourceTotals:
    """Shallow sum of member process counters."""

    process_count: int = 0
    rss_bytes: int = 0
    virtual_bytes: int = 0
    cpu_time: float = 0.0

    @classmethod
    def from_records(cls, records: list[ProcessRecord]) -> ResourceTotals:
        return cls(
            process_count=len(records),
            rss_bytes=sum(r.rss_bytes for r in records),
            virtual_bytes=sum(r.virtual_bytes for r in records),
            cpu_time=sum(r.cpu_time for r in records),
        )

    def to_dict(self) -> dict:
        return {
            "process_count": self.process_count,
            "rss_bytes": self.rss_bytes,
            "virtual_bytes": self.virtual_bytes,
            "cpu_time": self.cpu_time,
        }


@dataclass(frozen=True)
class ProjectGroup:
    """Processes sharing one inferred project root."""

    root: str
    pids: frozenset[int] = frozenset()
    totals: ResourceTotals = field(default_factory=ResourceTotals)
    name_override: str | None = None
    containers: tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        """Compose project name if known, else the root's basename."""
        if self.name_override:
            return self.name_override
        return PurePosixPath(self.root).name or self.root

    def to_dict(self) -> dict:
        return {
            "root": self.root,
            "display_name": self.display_name,
            "pids": sorted(self.pids),
            "totals": self.totals.to_dict(),
            "name_override": self.name_override,
            "containers": list(self.containers),
        }


@dataclass(frozen=True)
class ContainerDescriptor:
    """A container as reported by the Docker engine, reduced to grouping hints."""

    id: str
    name: str
    labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def compose_project(self) -> str | None:
        return self.labels.get(COMPOSE_PROJECT_LABEL) or None

    @property
    def compose_working_dir(self) -> str | None:
        return self.labels.get(COMPOSE_WORKING_DIR_LABEL) or None

    @classmethod
    def from_dict(cls, data: dict) -> ContainerDescriptor:
        """Accepts both our own shape and the engine's /containers/json shape."""
        name = data.get("name")
        if name is None:
            names = data.get("Names") or [""]
            name = names[0].lstrip("/")
        return cls(
            id=data.get("id") or data.get("Id", "")[:12],
            name=name,
            labels=dict(data.get("labels") or data.get("Labels") or {}),
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "labels": dict(self.labels)}
