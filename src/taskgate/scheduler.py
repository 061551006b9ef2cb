"""Task selection, status transitions and phase-boundary gating."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from taskgate import log
from taskgate.config import COMPLEXITY_CEILING
from taskgate.errors import ComplexityExceededError, InvalidTransitionError
from taskgate.store import TaskStore
from taskgate.tasks.model import (
    GateResult,
    Phase,
    PhaseGate,
    QualityGate,
    Task,
    TaskStatus,
)
from taskgate.tasks.validate import id_key, reachable_via_blocks


class Strategy(str, Enum):
    QUICK_WIN = "quick-win"
    CRITICAL_PATH = "critical-path"


class Outcome(str, Enum):
    SELECTED = "selected"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    NO_AVAILABLE = "no-available"
    ALL_DONE = "all-done"


@dataclass
class Selection:
    outcome: Outcome
    task: Task | None = None
    candidates: list[Task] = field(default_factory=list)
    gate: PhaseGate | None = None
    reason: str = ""


@dataclass
class Completion:
    task: Task
    completed: bool = True
    failed_checks: list[str] = field(default_factory=list)
    gate: PhaseGate | None = None


# ── ranking ──────────────────────────────────────────────────────


def rank_quick_win(available: list[Task]) -> list[Task]:
    """Cheapest first, then earlier phase, then id."""
    return sorted(available, key=lambda t: (t.complexity, t.phase.rank, id_key(t.id)))


def rank_critical_path(available: list[Task], all_tasks: list[Task]) -> list[Task]:
    """Tasks that free up the most downstream work first, then cheapest."""
    unblocks = {t.id: len(reachable_via_blocks(all_tasks, t.id)) for t in available}
    return sorted(available, key=lambda t: (-unblocks[t.id], t.complexity, id_key(t.id)))


class Scheduler:
    """Picks the next task from a store and drives its status changes.

    Usage::

        sched = Scheduler(store)
        sel = sched.select_next()          # Selection(outcome, task, ...)
        sched.start_task(sel.task.id)      # pending -> in-progress
        done = sched.complete_task(tid)    # in-progress -> completed
        if done.gate:                      # phase boundary reached
            sched.confirm_phase()
    """

    def __init__(
        self,
        store: TaskStore,
        strategy: Strategy | str = Strategy.QUICK_WIN,
        *,
        ceiling: int = COMPLEXITY_CEILING,
    ) -> None:
        self.store = store
        self.strategy = Strategy(strategy)
        self.ceiling = ceiling

    # ── state queries ────────────────────────────────────────────

    def state(self, task_id: str) -> TaskStatus:
        return self.store.get_task(task_id).status

    def count(self, status: TaskStatus) -> int:
        return self.store.recompute_summary().count(status)

    def in_progress(self) -> list[Task]:
        return [t for t in self.store.snapshot().tasks if t.status == TaskStatus.IN_PROGRESS]

    def deps_satisfied(self, task_id: str) -> bool:
        ts = self.store.snapshot()
        by_id = ts.by_id()
        task = by_id[task_id]
        return all(
            dep in by_id and by_id[dep].status == TaskStatus.COMPLETED
            for dep in task.blocked_by
        )

    def available(self) -> list[Task]:
        return self.store.get_available(self.ceiling)

    def rank(self, available: list[Task], strategy: Strategy | str | None = None) -> list[Task]:
        chosen = Strategy(strategy) if strategy else self.strategy
        if chosen == Strategy.CRITICAL_PATH:
            return rank_critical_path(available, self.store.snapshot().tasks)
        return rank_quick_win(available)

    def unblock_count(self, task_id: str) -> int:
        return len(reachable_via_blocks(self.store.snapshot().tasks, task_id))

    # ── selection ────────────────────────────────────────────────

    def select_next(self, strategy: Strategy | str | None = None) -> Selection:
        ts = self.store.snapshot()
        if ts.gate is not None:
            return Selection(
                Outcome.AWAITING_CONFIRMATION,
                gate=ts.gate,
                reason=(
                    f"Phase {ts.gate.from_phase.value} is complete; confirm before "
                    f"starting {ts.gate.to_phase.value}"
                ),
            )

        available = self.available()
        if not available:
            if all(t.closed for t in ts.tasks):
                return Selection(Outcome.ALL_DONE, reason="All tasks are closed")
            return Selection(Outcome.NO_AVAILABLE, reason=self._explain_empty())

        ranked = self.rank(available, strategy)
        return Selection(Outcome.SELECTED, task=ranked[0], candidates=ranked)

    # ── transitions ──────────────────────────────────────────────

    def start_task(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTransitionError(
                task_id, task.status.value, TaskStatus.IN_PROGRESS.value
            )
        if task.complexity > self.ceiling or task.split_required:
            raise ComplexityExceededError(task_id, task.complexity, self.ceiling)
        if not self.deps_satisfied(task_id):
            raise InvalidTransitionError(
                task_id,
                task.status.value,
                TaskStatus.IN_PROGRESS.value,
                self.explain_block(task_id),
            )
        gate = self.store.snapshot().gate
        if gate is not None:
            raise InvalidTransitionError(
                task_id,
                task.status.value,
                TaskStatus.IN_PROGRESS.value,
                f"awaiting confirmation to enter phase {gate.to_phase.value}",
            )
        started = self.store.update_status(task_id, TaskStatus.IN_PROGRESS)
        log.info(f"Started {task_id}: {started.title}")
        return started

    def complete_task(self, task_id: str, quality_gate: QualityGate | None = None) -> Completion:
        """Complete *task_id* unless a recorded quality check failed.

        On failure the task stays ``in-progress``. On success, closing the
        last open task of a phase records a phase gate when the next
        available work belongs to another phase.
        """
        current = self.store.get_task(task_id)
        if current.status != TaskStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                task_id, current.status.value, TaskStatus.COMPLETED.value
            )
        if quality_gate is not None:
            self.store.record_quality_gate(
                task_id,
                lint=quality_gate.lint,
                typecheck=quality_gate.typecheck,
                tests=quality_gate.tests,
            )
        task = self.store.get_task(task_id)
        failed = task.quality_gate.failed()
        if failed:
            log.warn(f"{task_id} failed quality gate: {', '.join(failed)}")
            return Completion(task, completed=False, failed_checks=failed)

        done = self.store.update_status(task_id, TaskStatus.COMPLETED)
        log.success(f"Completed {task_id}: {done.title}")
        gate = self._check_phase_boundary(done.phase)
        return Completion(done, gate=gate)

    def block_task(self, task_id: str) -> Task:
        return self.store.update_status(task_id, TaskStatus.BLOCKED)

    def unblock_task(self, task_id: str) -> Task:
        return self.store.update_status(task_id, TaskStatus.PENDING)

    def cancel_task(self, task_id: str) -> Task:
        return self.store.update_status(task_id, TaskStatus.CANCELLED)

    def confirm_phase(self) -> PhaseGate | None:
        """Clear a pending phase gate. Returns the gate that was cleared."""
        gate = self.store.snapshot().gate
        if gate is None:
            return None
        self.store.set_gate(None)
        log.info(f"Confirmed phase boundary {gate.from_phase.value} -> {gate.to_phase.value}")
        return gate

    # ── gating ───────────────────────────────────────────────────

    def _check_phase_boundary(self, phase: Phase) -> PhaseGate | None:
        ts = self.store.snapshot()
        if ts.gate is not None:
            return ts.gate
        if any(t.phase == phase and not t.closed for t in ts.tasks):
            return None
        available = self.available()
        if not available:
            return None
        next_phase = self.rank(available)[0].phase
        gate = PhaseGate(from_phase=phase, to_phase=next_phase)
        self.store.set_gate(gate)
        log.warn(
            f"Phase {phase.value} complete. Next work is in {next_phase.value}; "
            "confirm to continue."
        )
        return gate

    # ── diagnostics ──────────────────────────────────────────────

    def check_deadlock(self) -> bool:
        """Return ``True`` if pending work exists but nothing can move."""
        ts = self.store.snapshot()
        pending = any(t.status == TaskStatus.PENDING for t in ts.tasks)
        running = any(t.status == TaskStatus.IN_PROGRESS for t in ts.tasks)
        return pending and not running and not self.available()

    def explain_block(self, task_id: str) -> str:
        """Human-readable explanation of why *task_id* cannot be started."""
        ts = self.store.snapshot()
        by_id = ts.by_id()
        task = by_id[task_id]
        reasons: list[str] = []

        waiting = [
            f"{dep} ({by_id[dep].status.value})"
            for dep in task.blocked_by
            if dep in by_id and by_id[dep].status != TaskStatus.COMPLETED
        ]
        if waiting:
            reasons.append(f"blockedBy: {' '.join(waiting)}")
        if task.split_required:
            reasons.append("split required")
        elif task.complexity > self.ceiling:
            reasons.append(f"complexity {task.complexity} > {self.ceiling}")
        if task.status != TaskStatus.PENDING:
            reasons.append(f"status {task.status.value}")
        return " ".join(reasons)

    def _explain_empty(self) -> str:
        ts = self.store.snapshot()
        running = [t.id for t in ts.tasks if t.status == TaskStatus.IN_PROGRESS]
        if running:
            return f"Waiting on in-progress task(s): {', '.join(running)}"
        held = [t.id for t in ts.tasks if t.status == TaskStatus.BLOCKED]
        flagged = [t.id for t in ts.tasks if t.split_required and t.status == TaskStatus.PENDING]
        parts: list[str] = []
        if held:
            parts.append(f"on hold: {', '.join(held)}")
        if flagged:
            parts.append(f"need splitting: {', '.join(flagged)}")
        if not parts:
            parts.append("remaining tasks wait on unfinished dependencies")
        return "No available tasks (" + "; ".join(parts) + ")"


def gate_from_flags(
    lint: str | None = None, typecheck: str | None = None, tests: str | None = None
) -> QualityGate:
    def _v(raw: str | None) -> GateResult | None:
        return GateResult(raw) if raw else None

    return QualityGate(lint=_v(lint), typecheck=_v(typecheck), tests=_v(tests))
