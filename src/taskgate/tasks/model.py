"""Task, TaskSet and the small value types they are built from."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

ID_PREFIX = "T-"
_ID_RE = re.compile(r"^T-(\d{3,})$")


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
)

VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED, TaskStatus.CANCELLED}
    ),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.PENDING, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(old: TaskStatus, new: TaskStatus) -> bool:
    return new in VALID_TRANSITIONS.get(old, frozenset())


class Phase(str, Enum):
    SETUP = "setup"
    CORE = "core"
    INTEGRATION = "integration"
    TESTING = "testing"
    DOCS = "docs"
    CLEANUP = "cleanup"

    @property
    def rank(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.SETUP,
    Phase.CORE,
    Phase.INTEGRATION,
    Phase.TESTING,
    Phase.DOCS,
    Phase.CLEANUP,
)


class GateResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass
class QualityGate:
    """Outcome of lint/typecheck/tests; ``None`` means the check was not run."""

    lint: GateResult | None = None
    typecheck: GateResult | None = None
    tests: GateResult | None = None

    def results(self) -> dict[str, GateResult | None]:
        return {"lint": self.lint, "typecheck": self.typecheck, "tests": self.tests}

    def failed(self) -> list[str]:
        return [name for name, r in self.results().items() if r == GateResult.FAIL]

    @property
    def ok(self) -> bool:
        return not self.failed()


@dataclass
class Subtask:
    title: str
    completed: bool = False


@dataclass
class Timestamps:
    created: str = ""
    started: str = ""
    completed: str = ""


@dataclass
class Task:
    id: str
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    complexity: int = 1
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    phase: Phase = Phase.CORE
    tags: list[str] = field(default_factory=list)
    quality_gate: QualityGate = field(default_factory=QualityGate)
    timestamps: Timestamps = field(default_factory=Timestamps)
    split_required: bool = False

    @property
    def closed(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class Summary:
    """Derived per-set counters; rebuilt from the tasks, never edited directly."""

    total: int = 0
    counts: dict[str, int] = field(default_factory=dict)
    average_complexity: float = 0.0
    split_required: int = 0

    def count(self, status: TaskStatus) -> int:
        return self.counts.get(status.value, 0)

    @property
    def progress(self) -> str:
        return f"{self.count(TaskStatus.COMPLETED)}/{self.total}"


@dataclass
class PhaseGate:
    """A phase boundary waiting for explicit confirmation."""

    from_phase: Phase
    to_phase: Phase


@dataclass
class TaskSet:
    id: str = ""
    title: str = ""
    tasks: list[Task] = field(default_factory=list)
    next_seq: int = 1
    gate: PhaseGate | None = None
    summary: Summary = field(default_factory=Summary)

    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def by_id(self) -> dict[str, Task]:
        return {t.id: t for t in self.tasks}

    def allocate_id(self) -> str:
        tid = format_id(self.next_seq)
        self.next_seq += 1
        return tid


def format_id(seq: int) -> str:
    return f"{ID_PREFIX}{seq:03d}"


def parse_seq(task_id: str) -> int | None:
    """Return the sequence number of a ``T-NNN`` id, ``None`` if malformed."""
    m = _ID_RE.match(task_id or "")
    if not m:
        return None
    return int(m.group(1))


@dataclass
class TaskDraft:
    """A child task proposed by a decomposer, before it has an id.

    ``after`` lists indexes of earlier siblings in the same split that this
    child depends on. Empty ``phase``/``tags`` inherit from the parent.
    """

    title: str
    description: str = ""
    complexity: int = 1
    phase: Phase | None = None
    tags: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    after: list[int] = field(default_factory=list)
