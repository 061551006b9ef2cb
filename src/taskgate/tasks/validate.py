"""Structural checks and analysis for the ``blockedBy`` dependency graph.

The validator runs in a fixed order: cycle detection, reference integrity,
inverse-edge repair, then the derived views (topological order, levels,
critical path, parallel tracks). Cycles and dangling references are fatal;
inverse-edge mismatches are repaired in place and reported.
"""

from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass, field

from taskgate import log
from taskgate.config import MAX_COMPLEXITY, MIN_COMPLEXITY
from taskgate.errors import CycleError, DanglingReferenceError, ValidationError
from taskgate.tasks.model import Task, TaskSet, parse_seq

_WHITE, _GRAY, _BLACK = 0, 1, 2


def id_key(task_id: str) -> tuple[bool, int, str]:
    """Sort key ordering ``T-002`` before ``T-010``; malformed ids go last."""
    seq = parse_seq(task_id)
    return (seq is None, seq or 0, task_id)


@dataclass
class GraphReport:
    order: list[str] = field(default_factory=list)
    levels: dict[str, int] = field(default_factory=dict)
    critical_path: list[str] = field(default_factory=list)
    tracks: list[list[str]] = field(default_factory=list)
    repairs: list[str] = field(default_factory=list)

    def by_level(self) -> list[list[str]]:
        if not self.levels:
            return []
        grouped: list[list[str]] = [[] for _ in range(max(self.levels.values()) + 1)]
        for tid in self.order:
            grouped[self.levels[tid]].append(tid)
        return grouped


# ── cycles ───────────────────────────────────────────────────────


def find_cycle(tasks: list[Task]) -> CycleError | None:
    """Three-color DFS over ``blockedBy`` edges.

    Returns a CycleError for the first back edge found, or ``None``. Edges
    to unknown ids are skipped here; reference integrity is checked
    separately.
    """
    adjacency = {t.id: sorted(set(t.blocked_by), key=id_key) for t in tasks}
    color = {tid: _WHITE for tid in adjacency}

    for root in sorted(adjacency, key=id_key):
        if color[root] != _WHITE:
            continue
        color[root] = _GRAY
        path = [root]
        stack = [iter(adjacency[root])]
        while stack:
            node = path[-1]
            for nxt in stack[-1]:
                if nxt not in color:
                    continue
                if color[nxt] == _GRAY:
                    cycle = path[path.index(nxt):] + [nxt]
                    return CycleError(node, nxt, cycle)
                if color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    path.append(nxt)
                    stack.append(iter(adjacency[nxt]))
                    break
            else:
                color[node] = _BLACK
                path.pop()
                stack.pop()
    return None


def detect_cycles(ts: TaskSet) -> str:
    """Return a description of the first cycle, or ``""`` if acyclic."""
    err = find_cycle(ts.tasks)
    return str(err) if err else ""


# ── references ───────────────────────────────────────────────────


def check_references(tasks: list[Task]) -> None:
    known = {t.id for t in tasks}
    for t in tasks:
        for ref in t.blocked_by:
            if ref not in known:
                raise DanglingReferenceError(t.id, ref, "blockedBy")
        for ref in t.blocks:
            if ref not in known:
                raise DanglingReferenceError(t.id, ref, "blocks")


def repair_inverse(tasks: list[Task]) -> list[str]:
    """Make ``blocks`` the exact inverse of ``blockedBy``.

    Missing reverse edges are added and stale ones dropped. Returns one
    message per repair; each is also logged.
    """
    by_id = {t.id: t for t in tasks}
    expected: dict[str, list[str]] = {t.id: [] for t in tasks}
    for t in tasks:
        for dep in dict.fromkeys(t.blocked_by):
            if dep in expected and t.id not in expected[dep]:
                expected[dep].append(t.id)

    repairs: list[str] = []
    for tid, want in expected.items():
        task = by_id[tid]
        have = list(dict.fromkeys(task.blocks))
        missing = [x for x in want if x not in have]
        stale = [x for x in have if x not in want]
        for x in missing:
            repairs.append(f"{tid}.blocks: added missing {x} ({x} is blockedBy {tid})")
        for x in stale:
            repairs.append(f"{tid}.blocks: dropped stale {x} ({x} is not blockedBy {tid})")
        if missing or stale or have != task.blocks:
            task.blocks = sorted(want, key=id_key)

    for msg in repairs:
        log.repair(msg)
    return repairs


def rebuild_inverse(tasks: list[Task]) -> None:
    """Recompute every ``blocks`` list from ``blockedBy`` without reporting."""
    blocks: dict[str, list[str]] = {t.id: [] for t in tasks}
    for t in tasks:
        for dep in dict.fromkeys(t.blocked_by):
            if dep in blocks:
                blocks[dep].append(t.id)
    for t in tasks:
        t.blocks = sorted(blocks[t.id], key=id_key)


# ── ordering / analysis ──────────────────────────────────────────


def topological_order(tasks: list[Task]) -> list[str]:
    """Kahn's algorithm; dependencies come before dependents, ties by id."""
    known = {t.id for t in tasks}
    in_degree = {t.id: 0 for t in tasks}
    dependents: dict[str, list[str]] = {t.id: [] for t in tasks}
    for t in tasks:
        for dep in set(t.blocked_by):
            if dep in known:
                in_degree[t.id] += 1
                dependents[dep].append(t.id)

    heap = [id_key(tid) for tid, deg in in_degree.items() if deg == 0]
    heapq.heapify(heap)
    order: list[str] = []
    while heap:
        current = heapq.heappop(heap)[2]
        order.append(current)
        for nxt in dependents[current]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                heapq.heappush(heap, id_key(nxt))

    if len(order) != len(in_degree):
        # Should have been caught by find_cycle; keep the invariant explicit.
        leftover = sorted((tid for tid in in_degree if tid not in order), key=id_key)
        err = find_cycle([t for t in tasks if t.id in leftover])
        if err is not None:
            raise err
        raise CycleError(leftover[0], leftover[-1], leftover)
    return order


def compute_levels(tasks: list[Task], order: list[str]) -> dict[str, int]:
    by_id = {t.id: t for t in tasks}
    levels: dict[str, int] = {}
    for tid in order:
        deps = [d for d in by_id[tid].blocked_by if d in levels]
        levels[tid] = 1 + max(levels[d] for d in deps) if deps else 0
    return levels


def critical_path(tasks: list[Task], order: list[str]) -> list[str]:
    """Longest dependency chain by task count, ties broken by summed complexity."""
    by_id = {t.id: t for t in tasks}
    best: dict[str, tuple[int, int, list[str]]] = {}
    for tid in order:
        task = by_id[tid]
        count, weight, chain = 0, 0, []
        for dep in sorted(set(task.blocked_by), key=id_key):
            if dep not in best:
                continue
            d_count, d_weight, d_chain = best[dep]
            if (d_count, d_weight) > (count, weight):
                count, weight, chain = d_count, d_weight, d_chain
        best[tid] = (count + 1, weight + task.complexity, chain + [tid])

    longest: list[str] = []
    top = (0, 0)
    for tid in order:
        count, weight, chain = best[tid]
        if (count, weight) > top:
            top = (count, weight)
            longest = chain
    return longest


def parallel_tracks(tasks: list[Task]) -> list[list[str]]:
    """Weakly connected components of the dependency graph."""
    neighbours: dict[str, set[str]] = {t.id: set() for t in tasks}
    for t in tasks:
        for dep in t.blocked_by:
            if dep in neighbours and dep != t.id:
                neighbours[t.id].add(dep)
                neighbours[dep].add(t.id)

    seen: set[str] = set()
    tracks: list[list[str]] = []
    for root in sorted(neighbours, key=id_key):
        if root in seen:
            continue
        seen.add(root)
        component = [root]
        queue = deque([root])
        while queue:
            node = queue.popleft()
            for nxt in neighbours[node]:
                if nxt not in seen:
                    seen.add(nxt)
                    component.append(nxt)
                    queue.append(nxt)
        tracks.append(sorted(component, key=id_key))
    return tracks


def reachable_via_blocks(tasks: list[Task], task_id: str) -> set[str]:
    """All tasks transitively freed up (via ``blocks``) by completing *task_id*."""
    by_id = {t.id: t for t in tasks}
    seen: set[str] = set()
    queue = deque(by_id[task_id].blocks if task_id in by_id else [])
    while queue:
        node = queue.popleft()
        if node in seen or node not in by_id:
            continue
        seen.add(node)
        queue.extend(by_id[node].blocks)
    seen.discard(task_id)
    return seen


# ── entry points ─────────────────────────────────────────────────


def validate(ts: TaskSet) -> list[str]:
    """Return field-level problems (empty list when the set is well formed).

    Structural graph problems (dangling references, cycles) are included so
    callers can print everything at once.
    """
    errors: list[str] = []
    if not ts.tasks:
        errors.append("No tasks defined")
        return errors

    seen: set[str] = set()
    for idx, t in enumerate(ts.tasks):
        label = t.id or f"#{idx + 1}"
        if not t.id:
            errors.append(f"Task {label}: missing id")
        elif parse_seq(t.id) is None:
            errors.append(f"Task {label}: id must look like T-001")
        elif t.id in seen:
            errors.append(f"Duplicate id: {t.id}")
        seen.add(t.id)
        if not t.title:
            errors.append(f"Task {label}: missing title")
        if not MIN_COMPLEXITY <= t.complexity <= MAX_COMPLEXITY:
            errors.append(
                f"Task {label}: complexity {t.complexity} outside {MIN_COMPLEXITY}-{MAX_COMPLEXITY}"
            )
        if t.id and t.id in t.blocked_by:
            errors.append(f"Task {label}: depends on itself")

    known = {t.id for t in ts.tasks}
    for t in ts.tasks:
        for ref in t.blocked_by:
            if ref not in known:
                errors.append(f"Task {t.id}: blockedBy {ref} not found")
        for ref in t.blocks:
            if ref not in known:
                errors.append(f"Task {t.id}: blocks {ref} not found")

    cycle = detect_cycles(ts)
    if cycle:
        errors.append(cycle)
    return errors


def validate_graph(ts: TaskSet) -> GraphReport:
    """Accept or reject the graph of *ts*, repairing inverse edges in place.

    Raises CycleError or DanglingReferenceError; ValidationError for
    duplicate ids.
    """
    ids = ts.task_ids()
    if len(ids) != len(set(ids)):
        dupes = sorted({tid for tid in ids if ids.count(tid) > 1}, key=id_key)
        raise ValidationError(f"Duplicate id(s): {', '.join(dupes)}")

    err = find_cycle(ts.tasks)
    if err is not None:
        raise err
    check_references(ts.tasks)
    repairs = repair_inverse(ts.tasks)

    order = topological_order(ts.tasks)
    return GraphReport(
        order=order,
        levels=compute_levels(ts.tasks, order),
        critical_path=critical_path(ts.tasks, order),
        tracks=parallel_tracks(ts.tasks),
        repairs=repairs,
    )


def validate_and_report(ts: TaskSet) -> bool:
    """Validate *ts* and print every problem. Returns ``True`` when valid."""
    errors = validate(ts)
    if errors:
        log.error(f"Task set {ts.id or '(unnamed)'} is invalid:")
        for e in errors:
            log.error(f"  - {e}")
        return False
    return True
