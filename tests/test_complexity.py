"""Tests for taskgate.complexity: the bounded decomposition loop."""

from __future__ import annotations

from taskgate.complexity import (
    ChecklistDecomposer,
    ComplexityGate,
    Decomposer,
    DeclaredScorer,
    Scorer,
    Stage,
    clamp_complexity,
)
from taskgate.config import COMPLEXITY_CEILING, MAX_PASSES
from taskgate.store import TaskStore
from taskgate.tasks.model import Subtask, Task, TaskDraft, TaskSet, TaskStatus
from taskgate.tasks.validate import rebuild_inverse


# ── Helpers ─────────────────────────────────────────────────────────


def _t(
    id: str,
    complexity: int = 1,
    blocked_by: list[str] | None = None,
    subtasks: list[str] | None = None,
    title: str = "",
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        complexity=complexity,
        blocked_by=blocked_by or [],
        subtasks=[Subtask(title=s) for s in subtasks or []],
    )


def _store(tasks: list[Task]) -> TaskStore:
    rebuild_inverse(tasks)
    return TaskStore(TaskSet(id="test", tasks=tasks, next_seq=len(tasks) + 1))


class FixedSplit(Decomposer):
    """Splits every over-ceiling task into the given child complexities."""

    def __init__(self, sizes: list[int]) -> None:
        self.sizes = sizes
        self.calls: list[tuple[str, Stage]] = []

    def decompose(self, task, stage):
        self.calls.append((task.id, stage))
        if task.complexity <= COMPLEXITY_CEILING:
            return []
        return [
            TaskDraft(title=f"{task.title} part {n}", complexity=size)
            for n, size in enumerate(self.sizes, 1)
        ]


class TitleScorer(Scorer):
    """Scores tasks whose title mentions 'migration' as 9."""

    def score(self, task):
        return 9 if "migration" in task.title else task.complexity


# ═══════════════════════════════════════════════════════════════════
#  Built-in capabilities
# ═══════════════════════════════════════════════════════════════════


class TestBuiltins:

    def test_clamp(self):
        assert clamp_complexity(0) == 1
        assert clamp_complexity(15) == 10
        assert clamp_complexity(4) == 4

    def test_declared_scorer(self):
        assert DeclaredScorer().score(_t("T-001", complexity=6)) == 6

    def test_checklist_spreads_complexity(self):
        drafts = ChecklistDecomposer().decompose(
            _t("T-001", complexity=7, subtasks=["schema", "api"]), Stage.SPLIT
        )
        assert [d.title for d in drafts] == ["schema", "api"]
        assert [d.complexity for d in drafts] == [4, 4]

    def test_checklist_leaves_small_or_single_item_tasks(self):
        dec = ChecklistDecomposer()
        assert dec.decompose(_t("T-001", complexity=3, subtasks=["a", "b"]), Stage.SPLIT) == []
        assert dec.decompose(_t("T-002", complexity=8, subtasks=["a"]), Stage.SPLIT) == []


# ═══════════════════════════════════════════════════════════════════
#  Gate runs
# ═══════════════════════════════════════════════════════════════════


class TestComplexityGate:

    def test_nothing_to_do(self):
        report = ComplexityGate(_store([_t("T-001", complexity=2)])).run()
        assert report.stages == [Stage.MACRO, Stage.SPLIT, Stage.SCORE, Stage.TERMINAL]
        assert report.passes == 3
        assert report.converged

    def test_split_replaces_parent_and_rewires_dependents(self):
        """A complexity-7 task becomes a 3 and a 4; its dependent waits on both."""
        store = _store([
            _t("T-001", complexity=7),
            _t("T-002", blocked_by=["T-001"]),
        ])
        report = ComplexityGate(store, FixedSplit([3, 4])).run()

        ts = store.snapshot()
        assert report.splits == {"T-001": ["T-003", "T-004"]}
        assert ts.get_task("T-001") is None
        assert [ts.by_id()[c].complexity for c in ("T-003", "T-004")] == [3, 4]
        assert ts.by_id()["T-002"].blocked_by == ["T-003", "T-004"]
        assert all(t.complexity <= COMPLEXITY_CEILING for t in ts.tasks)

    def test_refine_after_scoring(self):
        store = _store([_t("T-001", title="data migration", subtasks=["copy", "verify", "switch"])])
        gate = ComplexityGate(store, scorer=TitleScorer())
        report = gate.run()

        assert Stage.REFINE in report.stages
        assert report.converged
        ts = store.snapshot()
        assert [t.title for t in ts.tasks] == ["copy", "verify", "switch"]
        assert all(t.complexity <= COMPLEXITY_CEILING for t in ts.tasks)

    def test_pass_cap_flags_leftovers(self):
        """A decomposer that never shrinks work stops at the pass cap."""
        store = _store([_t("T-001", complexity=8)])
        report = ComplexityGate(store, FixedSplit([8, 8])).run()

        assert report.passes == MAX_PASSES
        assert report.capped
        assert report.flagged
        ts = store.snapshot()
        assert all(t.split_required for t in ts.tasks)
        assert store.get_available() == []
        assert store.recompute_summary().split_required == len(ts.tasks)

    def test_split_disabled_only_flags(self):
        store = _store([_t("T-001", complexity=6, subtasks=["a", "b"]), _t("T-002")])
        report = ComplexityGate(store, split=False).run()

        assert Stage.SPLIT not in report.stages
        assert report.flagged == ["T-001"]
        assert not report.capped
        assert store.get_task("T-001").split_required
        assert [t.id for t in store.get_available()] == ["T-002"]

    def test_unsplittable_task_flagged(self):
        store = _store([_t("T-001", complexity=9)])
        report = ComplexityGate(store).run()
        assert report.flagged == ["T-001"]
        assert report.passes <= MAX_PASSES

    def test_only_pending_tasks_are_considered(self):
        dec = FixedSplit([2, 2])
        task = _t("T-001", complexity=6)
        store = _store([task])
        store.update_status("T-001", TaskStatus.BLOCKED)
        ComplexityGate(store, dec).run()
        assert dec.calls == []
        assert store.get_task("T-001").complexity == 6
