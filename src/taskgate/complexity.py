"""Complexity Gate: bounded multi-pass decomposition.

A run walks macro -> split -> score -> refine (looped) -> terminal. It
stops as soon as no pending task is above the ceiling, or once the pass cap
is spent; whatever is still too complex at that point is flagged
``split_required`` and left out of scheduling.

Decomposition and scoring are pluggable: anything implementing
:class:`Decomposer` / :class:`Scorer` can drive the run.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from taskgate import log
from taskgate.config import COMPLEXITY_CEILING, MAX_COMPLEXITY, MAX_PASSES, MIN_COMPLEXITY
from taskgate.store import TaskStore
from taskgate.tasks.model import Task, TaskDraft, TaskStatus


class Stage(str, Enum):
    MACRO = "macro"
    SPLIT = "split"
    SCORE = "score"
    REFINE = "refine"
    TERMINAL = "terminal"


class Decomposer(ABC):
    """Breaks a task into smaller drafts. An empty list keeps the task as is."""

    @abstractmethod
    def decompose(self, task: Task, stage: Stage) -> list[TaskDraft]: ...


class Scorer(ABC):
    """Assigns a 1-10 complexity to a task."""

    @abstractmethod
    def score(self, task: Task) -> int: ...


def clamp_complexity(value: int) -> int:
    return max(MIN_COMPLEXITY, min(MAX_COMPLEXITY, int(value)))


class DeclaredScorer(Scorer):
    """Trusts the complexity already on the task."""

    def score(self, task: Task) -> int:
        return clamp_complexity(task.complexity)


class ChecklistDecomposer(Decomposer):
    """Turns each checklist item of an over-ceiling task into its own task.

    The parent's complexity is spread evenly (rounded up) across the
    children. Tasks at or under the ceiling, or with fewer than two
    checklist items, are left alone.
    """

    def __init__(self, ceiling: int = COMPLEXITY_CEILING) -> None:
        self.ceiling = ceiling

    def decompose(self, task: Task, stage: Stage) -> list[TaskDraft]:
        if task.complexity <= self.ceiling or len(task.subtasks) < 2:
            return []
        share = clamp_complexity(math.ceil(task.complexity / len(task.subtasks)))
        return [
            TaskDraft(
                title=item.title,
                description=f"Split from {task.id}: {task.title}",
                complexity=share,
            )
            for item in task.subtasks
        ]


@dataclass
class RefinementReport:
    stages: list[Stage] = field(default_factory=list)
    splits: dict[str, list[str]] = field(default_factory=dict)
    flagged: list[str] = field(default_factory=list)
    capped: bool = False

    @property
    def passes(self) -> int:
        return sum(1 for s in self.stages if s != Stage.TERMINAL)

    @property
    def converged(self) -> bool:
        return not self.flagged


class ComplexityGate:
    """Drives one decomposition run over the pending tasks of a store."""

    def __init__(
        self,
        store: TaskStore,
        decomposer: Decomposer | None = None,
        scorer: Scorer | None = None,
        *,
        ceiling: int = COMPLEXITY_CEILING,
        max_passes: int = MAX_PASSES,
        split: bool = True,
    ) -> None:
        self.store = store
        self.decomposer = decomposer or ChecklistDecomposer(ceiling)
        self.scorer = scorer or DeclaredScorer()
        self.ceiling = ceiling
        self.max_passes = max_passes
        self.split = split

    def offenders(self) -> list[Task]:
        return [
            t
            for t in self.store.snapshot().tasks
            if t.status == TaskStatus.PENDING and t.complexity > self.ceiling
        ]

    def run(self) -> RefinementReport:
        report = RefinementReport()

        # Pass 1: the incoming batch is the macro decomposition.
        report.stages.append(Stage.MACRO)

        if self.split and report.passes < self.max_passes:
            report.stages.append(Stage.SPLIT)
            for task in self._pending():
                self._split(task, Stage.SPLIT, report)

        if report.passes < self.max_passes:
            report.stages.append(Stage.SCORE)
            for task in self._pending():
                self._score(task)

        while self.split and self.offenders() and report.passes < self.max_passes:
            report.stages.append(Stage.REFINE)
            for task in self.offenders():
                self._split(task, Stage.REFINE, report)

        remaining = self.offenders()
        report.stages.append(Stage.TERMINAL)
        if remaining:
            report.capped = self.split and report.passes >= self.max_passes
            for task in remaining:
                self.store.flag_split_required(task.id)
                report.flagged.append(task.id)
                log.warn(
                    f"{task.id} still has complexity {task.complexity} after "
                    f"{report.passes} pass(es); flagged for manual split"
                )
        log.debug(
            f"Complexity gate: {report.passes} pass(es), {len(report.splits)} split(s), "
            f"{len(report.flagged)} flagged"
        )
        return report

    # ── helpers ──────────────────────────────────────────────────

    def _pending(self) -> list[Task]:
        return [t for t in self.store.snapshot().tasks if t.status == TaskStatus.PENDING]

    def _score(self, task: Task) -> int:
        value = clamp_complexity(self.scorer.score(task))
        if value != task.complexity:
            self.store.set_complexity(task.id, value)
        return value

    def _split(self, task: Task, stage: Stage, report: RefinementReport) -> None:
        drafts = self.decomposer.decompose(task, stage)
        if not drafts:
            return
        children = self.store.replace_with_children(task.id, drafts)
        if stage == Stage.REFINE:
            for child in children:
                self._score(child)
        report.splits[task.id] = [c.id for c in children]
        log.info(f"Split {task.id} into {', '.join(c.id for c in children)} ({stage.value})")
