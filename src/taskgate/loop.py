"""Auto-loop: repeated select -> start -> execute -> complete cycles.

The loop never continues silently past a checkpoint. It pauses on a phase
boundary, a failed quality gate, an empty queue or the iteration limit.
Cancelling only drops loop-control state: completed tasks stay completed
and a task caught mid-flight stays ``in-progress``.
"""

from __future__ import annotations

import os
import shlex
import subprocess
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path

from taskgate import log
from taskgate.config import Config
from taskgate.io_utils import read_json, read_text, write_json_atomic
from taskgate.scheduler import Outcome, Scheduler
from taskgate.store import utc_now
from taskgate.tasks.io import load_task_set
from taskgate.tasks.model import GateResult, PhaseGate, QualityGate, Task, TaskStatus

Executor = Callable[[Task], QualityGate]

GUARDRAIL_PREFIX = "- **GR-"


class LoopOutcome(str, Enum):
    ALL_DONE = "all-done"
    MAX_ITERATIONS = "max-iterations"
    PHASE_BOUNDARY = "phase-boundary"
    QUALITY_GATE_FAILED = "quality-gate-failed"
    NO_AVAILABLE = "no-available"
    CANCELLED = "cancelled"


@dataclass
class LoopResult:
    outcome: LoopOutcome
    iterations: int = 0
    completed: list[str] = field(default_factory=list)
    task_id: str = ""
    gate: PhaseGate | None = None
    message: str = ""


class CancelToken:
    """Thread-safe cancellation flag shared with a running loop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ── persisted loop control ───────────────────────────────────────


@dataclass
class LoopState:
    iteration: int = 1
    max_iterations: int = 10
    strategy: str = "quick-win"
    epic: str = ""
    started: str = ""


def load_loop_state(path: Path) -> LoopState | None:
    if not path.is_file():
        return None
    data = read_json(path)
    return LoopState(
        iteration=int(data.get("iteration", 1)),
        max_iterations=int(data.get("max_iterations", 10)),
        strategy=str(data.get("strategy") or "quick-win"),
        epic=str(data.get("epic") or ""),
        started=str(data.get("started") or ""),
    )


def save_loop_state(state: LoopState, path: Path) -> None:
    write_json_atomic(path, asdict(state))


def start_loop(cfg: Config, epic: str = "") -> LoopState:
    state = LoopState(
        iteration=1,
        max_iterations=cfg.max_iterations,
        strategy=cfg.strategy,
        epic=epic,
        started=utc_now(),
    )
    save_loop_state(state, cfg.loop_path)
    log.info(f"Auto-loop started (max {state.max_iterations} iterations)")
    return state


def cancel_loop(path: Path) -> bool:
    """Remove loop-control state. Returns ``False`` if no loop was active."""
    if not path.is_file():
        return False
    path.unlink()
    return True


def read_guardrails(path: Path) -> list[str]:
    if not path.is_file():
        return []
    return [
        line.strip()
        for line in read_text(path).splitlines()
        if line.startswith(GUARDRAIL_PREFIX)
    ]


def has_pending_work(cfg: Config) -> bool:
    if not cfg.tasks_dir.is_dir():
        return False
    for state_file in sorted(cfg.tasks_dir.glob("*/state.json")):
        ts = load_task_set(state_file)
        if any(t.status == TaskStatus.PENDING for t in ts.tasks):
            return True
    return False


def check_continue(cfg: Config) -> list[str]:
    """Decide whether an externally driven loop should run another iteration.

    Returns continuation lines (with any guardrails) and advances the
    iteration counter, or returns ``[]`` after removing the loop state when
    the limit is passed or nothing is pending.
    """
    state = load_loop_state(cfg.loop_path)
    if state is None:
        return []
    if state.iteration > state.max_iterations or not has_pending_work(cfg):
        cancel_loop(cfg.loop_path)
        return []

    lines = [
        f"Auto-loop active: iteration {state.iteration}/{state.max_iterations}.",
        "Pending tasks remain. Run `taskgate next-task` to pick the next available task.",
        "Use `taskgate cancel-loop` to stop the loop.",
    ]
    guardrails = read_guardrails(cfg.guardrails_path)
    if guardrails:
        lines.append("")
        lines.append("Active guardrails:")
        lines.extend(guardrails)

    state.iteration += 1
    save_loop_state(state, cfg.loop_path)
    return lines


# ── executors ────────────────────────────────────────────────────


class CommandExecutor:
    """Run a shell command per task; exit code 0 counts as passing tests.

    ``{id}`` and ``{title}`` in the command are replaced, and the task is
    also exposed through ``TASKGATE_TASK_ID`` / ``TASKGATE_TASK_TITLE``.
    """

    def __init__(self, command: str, cwd: Path | None = None) -> None:
        self.command = command
        self.cwd = cwd

    def __call__(self, task: Task) -> QualityGate:
        cmd = shlex.split(self.command.replace("{id}", task.id).replace("{title}", task.title))
        env = {**os.environ, "TASKGATE_TASK_ID": task.id, "TASKGATE_TASK_TITLE": task.title}
        try:
            result = subprocess.run(cmd, cwd=self.cwd, env=env, capture_output=True, text=True)
        except (FileNotFoundError, OSError) as exc:
            log.error(f"{task.id}: could not run {cmd[0] if cmd else self.command!r}: {exc}")
            return QualityGate(tests=GateResult.FAIL)
        if result.returncode != 0:
            tail = (result.stderr or result.stdout or "").strip().splitlines()[-1:]
            log.warn(f"{task.id}: command exited {result.returncode} {' '.join(tail)}")
            return QualityGate(tests=GateResult.FAIL)
        return QualityGate(tests=GateResult.PASS)


# ── loop ─────────────────────────────────────────────────────────


class AutoLoop:
    """Drive a scheduler until a pause condition is hit.

    When *state_path* is given, the loop records its iteration there and
    treats the file disappearing as a cancellation request.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        executor: Executor,
        max_iterations: int,
        *,
        cancel_token: CancelToken | None = None,
        state_path: Path | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.executor = executor
        self.max_iterations = max_iterations
        self.cancel_token = cancel_token or CancelToken()
        self.state_path = state_path
        self.iteration = 0

    def cancelled(self) -> bool:
        if self.cancel_token.cancelled:
            return True
        return self.state_path is not None and not self.state_path.is_file()

    def run(self) -> LoopResult:
        completed: list[str] = []

        def _result(outcome: LoopOutcome, message: str, **extra) -> LoopResult:
            if outcome in (LoopOutcome.ALL_DONE, LoopOutcome.MAX_ITERATIONS) and self.state_path:
                cancel_loop(self.state_path)
            log.info(f"Auto-loop paused: {message}")
            return LoopResult(outcome, self.iteration, completed, message=message, **extra)

        while True:
            if self.cancelled():
                return _result(LoopOutcome.CANCELLED, "cancelled")

            resumed = self.scheduler.in_progress()
            if resumed:
                task = resumed[0]
                log.info(f"Resuming in-progress {task.id}")
            else:
                selection = self.scheduler.select_next()
                if selection.outcome == Outcome.ALL_DONE:
                    return _result(LoopOutcome.ALL_DONE, "all tasks closed")
                if self.iteration >= self.max_iterations:
                    return _result(
                        LoopOutcome.MAX_ITERATIONS,
                        f"max iterations reached ({self.max_iterations})",
                    )
                if selection.outcome == Outcome.AWAITING_CONFIRMATION:
                    return _result(
                        LoopOutcome.PHASE_BOUNDARY, selection.reason, gate=selection.gate
                    )
                if selection.outcome == Outcome.NO_AVAILABLE or selection.task is None:
                    return _result(LoopOutcome.NO_AVAILABLE, selection.reason)
                task = self.scheduler.start_task(selection.task.id)

            if self.iteration >= self.max_iterations:
                return _result(
                    LoopOutcome.MAX_ITERATIONS, f"max iterations reached ({self.max_iterations})"
                )
            if self.cancelled():
                return _result(LoopOutcome.CANCELLED, f"cancelled with {task.id} in progress")

            gate = self.executor(task)
            self.iteration += 1
            self._save_iteration()
            if self.cancelled():
                return _result(LoopOutcome.CANCELLED, f"cancelled with {task.id} in progress")

            done = self.scheduler.complete_task(task.id, gate)
            if not done.completed:
                return _result(
                    LoopOutcome.QUALITY_GATE_FAILED,
                    f"{task.id} failed {', '.join(done.failed_checks)}",
                    task_id=task.id,
                )
            completed.append(task.id)
            if done.gate is not None:
                return _result(
                    LoopOutcome.PHASE_BOUNDARY,
                    f"phase {done.gate.from_phase.value} complete; confirm to enter "
                    f"{done.gate.to_phase.value}",
                    gate=done.gate,
                )

    def _save_iteration(self) -> None:
        if self.state_path is None or not self.state_path.is_file():
            return
        state = load_loop_state(self.state_path)
        if state is not None:
            state.iteration = self.iteration + 1
            save_loop_state(state, self.state_path)
