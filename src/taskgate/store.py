"""Task Store: single-writer owner of one TaskSet.

All mutation goes through :class:`TaskStore` so the summary, the inverse
``blocks`` edges and the on-disk ``state.json`` stay consistent. Each
mutating call runs inside a transaction that restores the previous state
if anything raises.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from taskgate import log
from taskgate.config import COMPLEXITY_CEILING, MAX_COMPLEXITY, MIN_COMPLEXITY
from taskgate.errors import (
    InvalidTransitionError,
    UnknownTaskError,
    ValidationError,
)
from taskgate.tasks.io import load_task_set, save_task_set
from taskgate.tasks.model import (
    GateResult,
    PhaseGate,
    QualityGate,
    Summary,
    Task,
    TaskDraft,
    TaskSet,
    TaskStatus,
    Timestamps,
    can_transition,
    format_id,
    parse_seq,
)
from taskgate.tasks.validate import (
    check_references,
    find_cycle,
    id_key,
    rebuild_inverse,
    validate,
    validate_graph,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class TaskStore:
    """Owns a TaskSet; optionally persisted to *path* on every commit.

    Usage::

        store = TaskStore.load(path)          # or TaskStore(path=path)
        store.create_tasks(tasks)             # bulk insert, validated
        store.update_status("T-001", TaskStatus.IN_PROGRESS)
        store.get_available()                 # pending, deps done, complexity <= 4
    """

    def __init__(
        self,
        task_set: TaskSet | None = None,
        *,
        path: Path | None = None,
        clock: Callable[[], str] = utc_now,
        on_commit: Callable[[TaskSet], None] | None = None,
    ) -> None:
        self._ts = task_set if task_set is not None else TaskSet()
        self._path = path
        self._clock = clock
        self._on_commit = on_commit
        self._lock = threading.RLock()
        self.recompute_summary()

    @classmethod
    def load(
        cls,
        path: Path,
        *,
        clock: Callable[[], str] = utc_now,
        on_commit: Callable[[TaskSet], None] | None = None,
    ) -> TaskStore:
        """Load ``state.json``, re-validating the graph before accepting it."""
        ts = load_task_set(path)
        report = validate_graph(ts)
        store = cls(ts, path=path, clock=clock, on_commit=on_commit)
        if report.repairs:
            store.commit()
        return store

    # ── reads ────────────────────────────────────────────────────

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def task_set(self) -> TaskSet:
        """The live set. Callers must not mutate it directly."""
        return self._ts

    def snapshot(self) -> TaskSet:
        with self._lock:
            return copy.deepcopy(self._ts)

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return copy.deepcopy(self._require(task_id))

    def get_available(self, ceiling: int = COMPLEXITY_CEILING) -> list[Task]:
        """Pending tasks whose blockers are all completed and that fit the ceiling."""
        with self._lock:
            by_id = self._ts.by_id()
            available = [
                t
                for t in self._ts.tasks
                if t.status == TaskStatus.PENDING
                and not t.split_required
                and t.complexity <= ceiling
                and all(
                    dep in by_id and by_id[dep].status == TaskStatus.COMPLETED
                    for dep in t.blocked_by
                )
            ]
            return copy.deepcopy(sorted(available, key=lambda t: id_key(t.id)))

    def recompute_summary(self) -> Summary:
        with self._lock:
            tasks = self._ts.tasks
            counts = {status.value: 0 for status in TaskStatus}
            for t in tasks:
                counts[t.status.value] += 1
            avg = round(sum(t.complexity for t in tasks) / len(tasks), 2) if tasks else 0.0
            summary = Summary(
                total=len(tasks),
                counts=counts,
                average_complexity=avg,
                split_required=sum(1 for t in tasks if t.split_required),
            )
            self._ts.summary = summary
            return copy.deepcopy(summary)

    # ── transactions ─────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[TaskSet]:
        """Serialize a mutation; roll back on error, recompute and commit on success."""
        with self._lock:
            backup = copy.deepcopy(self._ts)
            try:
                yield self._ts
                self.recompute_summary()
                self.commit()
            except BaseException:
                self._ts = backup
                raise

    def commit(self) -> None:
        with self._lock:
            if self._path is not None:
                save_task_set(self._ts, self._path)
                log.debug(f"Saved {self._ts.id or 'task set'} -> {self._path}")
            if self._on_commit is not None:
                self._on_commit(self._ts)

    # ── creation ─────────────────────────────────────────────────

    def create_tasks(self, tasks: list[Task], *, set_id: str = "", title: str = "") -> TaskSet:
        """Insert a decomposition batch as a new TaskSet.

        Ids must be unique and strictly increasing ``T-NNN`` values; tasks
        without an id get the next sequence number. ``blockedBy`` may point
        forward within the batch but never outside it. Every task starts
        ``pending``.
        """
        with self._lock:
            if self._ts.tasks:
                raise ValidationError(
                    f"Task set {self._ts.id or '(unnamed)'} already has tasks; use add_task"
                )

            batch = copy.deepcopy(tasks)
            last = 0
            for t in batch:
                if not t.id:
                    last += 1
                    t.id = format_id(last)
                    continue
                seq = parse_seq(t.id)
                if seq is None:
                    raise ValidationError(f"Task id {t.id!r} is not sequential (expected T-NNN)")
                if seq <= last:
                    raise ValidationError(
                        f"Duplicate or out-of-order id: {t.id} (after {format_id(last)})"
                    )
                last = seq

            now = self._clock()
            for t in batch:
                t.status = TaskStatus.PENDING
                t.split_required = False
                t.blocked_by = list(dict.fromkeys(t.blocked_by))
                t.timestamps = Timestamps(created=t.timestamps.created or now)

            candidate = TaskSet(
                id=set_id or self._ts.id,
                title=title or self._ts.title,
                tasks=batch,
                next_seq=last + 1,
            )
            check_references(batch)
            err = find_cycle(batch)
            if err is not None:
                raise err
            problems = validate(candidate)
            if problems:
                raise ValidationError(f"Task batch rejected ({len(problems)} problem(s))", problems)
            validate_graph(candidate)

            with self.transaction():
                self._ts = candidate
            log.debug(f"Created {len(batch)} task(s) in {candidate.id or 'task set'}")
            return self.snapshot()

    def add_task(self, task: Task) -> Task:
        """Append one task with the next free id; its blockers must already exist."""
        with self.transaction() as ts:
            new = copy.deepcopy(task)
            known = set(ts.task_ids())
            for ref in new.blocked_by:
                if ref not in known:
                    raise ValidationError(f"blockedBy {ref} not found in {ts.id or 'task set'}")
            if not new.title:
                raise ValidationError("Task is missing a title")
            if not MIN_COMPLEXITY <= new.complexity <= MAX_COMPLEXITY:
                raise ValidationError(
                    f"complexity {new.complexity} outside {MIN_COMPLEXITY}-{MAX_COMPLEXITY}"
                )
            new.id = ts.allocate_id()
            new.status = TaskStatus.PENDING
            new.blocks = []
            new.split_required = False
            new.timestamps = Timestamps(created=self._clock())
            ts.tasks.append(new)
            rebuild_inverse(ts.tasks)
            log.debug(f"Added {new.id} to {ts.id or 'task set'}")
            return copy.deepcopy(new)

    # ── mutation ─────────────────────────────────────────────────

    def update_status(self, task_id: str, new_status: TaskStatus) -> Task:
        with self.transaction():
            task = self._require(task_id)
            old = task.status
            if not can_transition(old, new_status):
                raise InvalidTransitionError(task_id, old.value, new_status.value)
            task.status = new_status
            if new_status == TaskStatus.IN_PROGRESS:
                task.timestamps.started = self._clock()
            elif new_status == TaskStatus.COMPLETED:
                task.timestamps.completed = self._clock()
            log.debug(f"Task {task_id}: {old.value} -> {new_status.value}")
            return copy.deepcopy(task)

    def record_quality_gate(
        self,
        task_id: str,
        *,
        lint: GateResult | None = None,
        typecheck: GateResult | None = None,
        tests: GateResult | None = None,
    ) -> QualityGate:
        """Store check results; checks passed as ``None`` keep their last value."""
        with self.transaction():
            gate = self._require(task_id).quality_gate
            if lint is not None:
                gate.lint = lint
            if typecheck is not None:
                gate.typecheck = typecheck
            if tests is not None:
                gate.tests = tests
            return copy.deepcopy(gate)

    def set_complexity(self, task_id: str, complexity: int) -> Task:
        if not MIN_COMPLEXITY <= complexity <= MAX_COMPLEXITY:
            raise ValidationError(
                f"complexity {complexity} outside {MIN_COMPLEXITY}-{MAX_COMPLEXITY}"
            )
        with self.transaction():
            task = self._require(task_id)
            task.complexity = complexity
            if complexity <= COMPLEXITY_CEILING:
                task.split_required = False
            return copy.deepcopy(task)

    def flag_split_required(self, task_id: str, flag: bool = True) -> None:
        with self.transaction():
            self._require(task_id).split_required = flag

    def set_gate(self, gate: PhaseGate | None) -> None:
        with self.transaction() as ts:
            ts.gate = gate

    def replace_with_children(self, parent_id: str, drafts: list[TaskDraft]) -> list[Task]:
        """Remove *parent_id* and insert one fresh task per draft in its place.

        Children inherit the parent's blockers (plus any ``after`` siblings);
        every task that waited on the parent now waits on all children.
        """
        if not drafts:
            raise ValidationError(f"Cannot split {parent_id} into zero tasks")

        with self.transaction() as ts:
            parent = self._require(parent_id)
            if parent.status != TaskStatus.PENDING:
                raise ValidationError(
                    f"Task {parent_id} is {parent.status.value}; only pending tasks can be split"
                )

            now = self._clock()
            children: list[Task] = []
            for idx, draft in enumerate(drafts):
                bad = [i for i in draft.after if not 0 <= i < idx]
                if bad:
                    raise ValidationError(
                        f"Split of {parent_id}: child {idx} depends on invalid sibling(s) {bad}"
                    )
                child = Task(
                    id=ts.allocate_id(),
                    title=draft.title,
                    description=draft.description,
                    complexity=max(MIN_COMPLEXITY, min(MAX_COMPLEXITY, draft.complexity)),
                    blocked_by=list(parent.blocked_by) + [children[i].id for i in draft.after],
                    subtasks=copy.deepcopy(draft.subtasks),
                    phase=draft.phase or parent.phase,
                    tags=list(draft.tags or parent.tags),
                    timestamps=Timestamps(created=now),
                )
                children.append(child)

            child_ids = [c.id for c in children]
            for t in ts.tasks:
                if parent_id in t.blocked_by:
                    rewritten: list[str] = []
                    for ref in t.blocked_by:
                        rewritten.extend(child_ids if ref == parent_id else [ref])
                    t.blocked_by = list(dict.fromkeys(rewritten))

            pos = next(i for i, t in enumerate(ts.tasks) if t.id == parent_id)
            ts.tasks[pos:pos + 1] = children
            rebuild_inverse(ts.tasks)
            check_references(ts.tasks)
            err = find_cycle(ts.tasks)
            if err is not None:
                raise err

            log.debug(f"Split {parent_id} -> {', '.join(child_ids)}")
            return copy.deepcopy(children)

    # ── helpers ──────────────────────────────────────────────────

    def _require(self, task_id: str) -> Task:
        task = self._ts.get_task(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task
