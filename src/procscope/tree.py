"""Process forest construction from a flat pid/ppid relation.

Nodes are looked up through two indexes (pid -> record, ppid -> child pids)
instead of parent pointers. Traversal uses an explicit stack and a set of
already-placed pids, so malformed input (self-parenting, ppid loops) ends in
finite time with every pid appearing exactly once.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable

import structlog

from procscope.enrichment import Enricher
from procscope.models import EnrichedProcess, ProcessRecord

log = structlog.get_logger()

DEFAULT_ROOT_PIDS = frozenset({0, 1})


def build_forest(
    records: Iterable[ProcessRecord],
    enricher: Enricher,
    root_pids: Iterable[int] = DEFAULT_ROOT_PIDS,
) -> list[EnrichedProcess]:
    """Build the enriched process forest.

    Args:
        records: One snapshot of process records, in any order
        enricher: Labels each node
        root_pids: Parent pids treated as "no parent" (kernel, launchd)

    Returns:
        Root nodes ordered by pid. Roots whose chain loops back on itself come
        last, each entered at its lowest pid.
    """
    root_pids = frozenset(root_pids)

    # 1. pid index; later duplicates are discarded
    by_pid: dict[int, ProcessRecord] = {}
    for record in records:
        kept = by_pid.get(record.pid)
        if kept is not None:
            log.warning(
                "duplicate_pid", pid=record.pid, kept=kept.name, discarded=record.name
            )
            continue
        by_pid[record.pid] = record

    # 2 + 3. roots and parent -> children index
    roots: list[int] = []
    children: dict[int, list[int]] = defaultdict(list)
    for pid, record in by_pid.items():
        if record.ppid in root_pids or record.ppid not in by_pid:
            roots.append(pid)
        else:
            children[record.ppid].append(pid)
    roots.sort()
    for kids in children.values():
        kids.sort()

    # 4. preorder walk from each root
    placed: set[int] = set()
    order: list[int] = []
    tree_children: dict[int, list[int]] = {}

    def walk(start: int) -> None:
        placed.add(start)
        stack = [start]
        while stack:
            pid = stack.pop()
            order.append(pid)
            kept = []
            for child in children.get(pid, ()):
                if child in placed:
                    log.warning("cycle_broken", pid=child, parent=pid)
                    continue
                placed.add(child)
                kept.append(child)
            tree_children[pid] = kept
            stack.extend(reversed(kept))

    for pid in roots:
        walk(pid)

    # Anything left is only reachable through a cycle
    for pid in sorted(by_pid):
        if pid not in placed:
            log.warning("cycle_detached", pid=pid, ppid=by_pid[pid].ppid)
            roots.append(pid)
            walk(pid)

    # 5. build immutable nodes bottom-up
    nodes: dict[int, EnrichedProcess] = {}
    for pid in reversed(order):
        record = by_pid[pid]
        enrichment = enricher.enrich(record)
        nodes[pid] = EnrichedProcess(
            record=record,
            label=enrichment.label,
            icon=enrichment.icon,
            children=tuple(nodes[child] for child in tree_children[pid]),
        )

    return [nodes[pid] for pid in roots]


def flatten(forest: Iterable[EnrichedProcess]) -> list[EnrichedProcess]:
    """All nodes in preorder."""
    result: list[EnrichedProcess] = []
    stack = list(reversed(list(forest)))
    while stack:
        node = stack.pop()
        result.append(node)
        stack.extend(reversed(node.children))
    return result


def find(pid: int, forest: Iterable[EnrichedProcess]) -> EnrichedProcess | None:
    """Node with the given pid, or None."""
    for node in flatten(forest):
        if node.pid == pid:
            return node
    return None


def parent_chain(pid: int, forest: Iterable[EnrichedProcess]) -> list[EnrichedProcess]:
    """Nodes from the root down to pid (inclusive). Empty if pid is absent."""
    parents: dict[int, EnrichedProcess] = {}
    target = None
    for node in flatten(forest):
        for child in node.children:
            parents[child.pid] = node
        if node.pid == pid:
            target = node
    if target is None:
        return []

    chain = [target]
    while chain[-1].pid in parents:
        chain.append(parents[chain[-1].pid])
    chain.reverse()
    return chain


def map_forest(
    forest: Iterable[EnrichedProcess],
    fn: Callable[[EnrichedProcess, tuple[EnrichedProcess, ...]], EnrichedProcess],
) -> list[EnrichedProcess]:
    """Rebuild the forest bottom-up, calling fn(node, rebuilt_children) per node."""
    forest = list(forest)
    rebuilt: dict[int, EnrichedProcess] = {}
    for node in reversed(flatten(forest)):
        new_children = tuple(rebuilt[child.pid] for child in node.children)
        rebuilt[node.pid] = fn(node, new_children)
    return [rebuilt[node.pid] for node in forest]


def count_nodes(forest: Iterable[EnrichedProcess]) -> int:
    return len(flatten(forest))
