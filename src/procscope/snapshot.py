"""Snapshot sources for the CLI.

Live snapshots come from psutil; saved snapshots are JSON files with
``processes`` and optional ``containers`` arrays. Neither is part of the
enrichment core, which only ever sees the resulting records.
"""

from __future__ import annotations

import json
from pathlib import Path

import psutil
import structlog

from procscope.models import ContainerDescriptor, ProcessRecord

log = structlog.get_logger()

_ATTRS = [
    "pid",
    "ppid",
    "name",
    "exe",
    "cmdline",
    "cwd",
    "username",
    "uids",
    "cpu_times",
    "memory_info",
    "create_time",
    "status",
]

_STATUS_MAP = {
    psutil.STATUS_RUNNING: "running",
    psutil.STATUS_SLEEPING: "sleeping",
    psutil.STATUS_IDLE: "sleeping",
    psutil.STATUS_DISK_SLEEP: "sleeping",
    psutil.STATUS_STOPPED: "stopped",
    psutil.STATUS_ZOMBIE: "zombie",
}


def listening_ports() -> dict[int, tuple[int, ...]]:
    """Map pid -> sorted TCP listening ports.

    On macOS this needs root for other users' sockets; without it the result
    is empty rather than an error.
    """
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        log.warning("listening_ports_unavailable", reason="access denied")
        return {}

    ports: dict[int, set[int]] = {}
    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or conn.pid is None or not conn.laddr:
            continue
        ports.setdefault(conn.pid, set()).add(conn.laddr.port)
    return {pid: tuple(sorted(found)) for pid, found in ports.items()}


def _record_from_info(info: dict, ports: tuple[int, ...], env: dict | None) -> ProcessRecord:
    cpu_times = info.get("cpu_times")
    memory = info.get("memory_info")
    uids = info.get("uids")
    return ProcessRecord(
        pid=info["pid"],
        ppid=info.get("ppid") or 0,
        name=info.get("name") or "",
        executable_path=info.get("exe") or None,
        argv=tuple(info.get("cmdline") or ()),
        cwd=info.get("cwd") or None,
        env=env,
        user=info.get("username") or "",
        uid=uids.real if uids is not None else -1,
        cpu_time_user=cpu_times.user if cpu_times is not None else 0.0,
        cpu_time_system=cpu_times.system if cpu_times is not None else 0.0,
        rss_bytes=memory.rss if memory is not None else 0,
        virtual_bytes=memory.vms if memory is not None else 0,
        start_time=info.get("create_time"),
        status=_STATUS_MAP.get(info.get("status"), "unknown"),
        listening_ports=ports,
    )


def collect_records(include_env: bool = False) -> list[ProcessRecord]:
    """Take a live snapshot of every visible process.

    Fields the current user may not read come back empty. Processes that exit
    mid-iteration are skipped.
    """
    ports = listening_ports()
    records = []
    for proc in psutil.process_iter(_ATTRS):
        env = None
        if include_env:
            try:
                env = proc.environ()
            except (psutil.AccessDenied, psutil.NoSuchProcess, psutil.ZombieProcess):
                env = None
        info = proc.info
        records.append(_record_from_info(info, ports.get(info["pid"], ()), env))

    log.info("snapshot_collected", processes=len(records), listening=len(ports))
    return records


def load_snapshot(path: Path) -> tuple[list[ProcessRecord], list[ContainerDescriptor]]:
    """Read records and containers from a JSON snapshot file.

    Raises:
        ValueError: If the file is not valid JSON, lacks a processes array or
            has a containers value that is not an array.
    """
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse snapshot {path}: {e}") from e

    if isinstance(data, list):
        data = {"processes": data}
    if not isinstance(data, dict) or not isinstance(data.get("processes"), list):
        raise ValueError(f"Snapshot {path} must contain a 'processes' array")

    records = []
    for index, entry in enumerate(data["processes"]):
        try:
            records.append(ProcessRecord.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            log.warning("snapshot_record_skipped", path=str(path), index=index, error=str(e))

    entries = data.get("containers") or []
    if not isinstance(entries, list):
        raise ValueError(f"'containers' in snapshot {path} must be an array")

    containers = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            log.warning(
                "snapshot_container_skipped",
                path=str(path),
                index=index,
                error=f"expected an object, got {type(entry).__name__}",
            )
            continue
        try:
            containers.append(ContainerDescriptor.from_dict(entry))
        except (AttributeError, TypeError, ValueError) as e:
            log.warning("snapshot_container_skipped", path=str(path), index=index, error=str(e))
    return records, containers


def save_snapshot(
    path: Path,
    records: list[ProcessRecord],
    containers: list[ContainerDescriptor] | None = None,
) -> None:
    """Write records (and containers) as a JSON snapshot."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "processes": [record.to_dict() for record in records],
        "containers": [c.to_dict() for c in containers or []],
    }
    path.write_text(json.dumps(data, indent=2))
