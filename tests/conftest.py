"""Shared fixtures for taskgate tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use taskgate.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from taskgate.config import Config
from taskgate.store import TaskStore
from taskgate.tasks.model import Phase, Subtask, Task, TaskSet, TaskStatus, parse_seq
from taskgate.tasks.validate import rebuild_inverse

FIXED_NOW = "2024-01-01T00:00:00+00:00"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for expensive end-to-end tests."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TASKGATE_PROJECT_DIR", "TASKGATE_MAX_ITERATIONS", "TASKGATE_STRATEGY"):
        monkeypatch.delenv(name, raising=False)


def _make_task(
    id: str,
    title: str = "",
    complexity: int = 1,
    blocked_by: list[str] | None = None,
    phase: Phase = Phase.CORE,
    status: TaskStatus = TaskStatus.PENDING,
    subtasks: list[str] | None = None,
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        complexity=complexity,
        blocked_by=blocked_by or [],
        phase=phase,
        status=status,
        subtasks=[Subtask(title=s) for s in subtasks or []],
    )


def _make_task_set(tasks: list[Task], id: str = "test") -> TaskSet:
    """Build a consistent set: inverse edges filled in, next id after the highest."""
    rebuild_inverse(tasks)
    seqs = [parse_seq(t.id) or 0 for t in tasks]
    return TaskSet(id=id, title=f"Set {id}", tasks=tasks, next_seq=max(seqs, default=0) + 1)


def _make_store(tasks: list[Task], id: str = "test", path: Path | None = None) -> TaskStore:
    return TaskStore(_make_task_set(tasks, id), path=path, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_store():
    """Factory fixture that creates an in-memory TaskStore with a fixed clock."""
    return _make_store


@pytest.fixture
def project(tmp_path: Path) -> Config:
    """Config rooted at an empty temporary project directory."""
    return Config(project_dir=str(tmp_path))
