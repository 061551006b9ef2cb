"""CLI tests: every command runs in-process against a temporary project."""

from __future__ import annotations

import json
import shlex
import subprocess
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskgate import __version__
from taskgate.cli import main
from taskgate.io_utils import read_json, write_text

TASKS_YAML = """\
title: Auth Flow
tasks:
  - title: Schema
    phase: setup
    complexity: 2
  - title: Endpoints
    complexity: 7
    blockedBy: [T-001]
    subtasks: [login, signup]
  - title: Wire UI
    phase: integration
    blockedBy: [T-002]
"""


@pytest.fixture
def cli_runner():
    """Click CliRunner for invoking the CLI in-process."""
    return CliRunner()


@pytest.fixture
def run(cli_runner, tmp_path: Path):
    """Invoke taskgate rooted at tmp_path."""

    def _run(*args: str):
        return cli_runner.invoke(main, ["--project-dir", str(tmp_path), *args])

    return _run


@pytest.fixture
def auth_flow(run, tmp_path: Path) -> Path:
    """Create the 'auth-flow' set from TASKS_YAML and return its state path."""
    src = tmp_path / "tasks.yaml"
    write_text(src, TASKS_YAML)
    r = run("create-tasks", str(src))
    assert r.exit_code == 0, r.output
    return tmp_path / ".taskgate" / "tasks" / "auth-flow" / "state.json"


def _state(path: Path) -> dict[str, dict]:
    return {t["id"]: t for t in read_json(path)["tasks"]}


def _write_tasks(tmp_path: Path, tasks: list[dict], name: str = "input.json") -> Path:
    path = tmp_path / name
    write_text(path, json.dumps({"title": "Batch", "tasks": tasks}))
    return path


# ── Main entry and help ────────────────────────────────────────────────


class TestCliHelpAndVersion:

    def test_help(self, cli_runner):
        r = cli_runner.invoke(main, ["-h"])
        assert r.exit_code == 0
        assert "create-tasks" in r.output
        assert "confirm-phase" in r.output

    def test_version(self, cli_runner):
        r = cli_runner.invoke(main, ["--version"])
        assert r.exit_code == 0
        assert __version__ in r.output

    def test_command_help(self, cli_runner):
        r = cli_runner.invoke(main, ["complete-task", "--help"])
        assert r.exit_code == 0
        assert "--typecheck" in r.output

    def test_bad_strategy_env(self, run, monkeypatch):
        monkeypatch.setenv("TASKGATE_STRATEGY", "random")
        r = run("tasks")
        assert r.exit_code == 2
        assert isinstance(r.exception, SystemExit)


# ── create-tasks ───────────────────────────────────────────────────────


class TestCreateTasks:

    def test_creates_state_and_splits(self, auth_flow: Path, tmp_path: Path):
        tasks = _state(auth_flow)
        assert "T-002" not in tasks
        assert tasks["T-004"]["title"] == "login"
        assert tasks["T-003"]["blockedBy"] == ["T-004", "T-005"]
        assert all(t["complexity"] <= 4 for t in tasks.values())

        index = read_json(tmp_path / ".taskgate" / "tasks" / "index.json")
        assert index["epics"][0]["id"] == "auth-flow"
        assert index["epics"][0]["status"] == "pending"

    def test_no_split_flags(self, run, tmp_path: Path):
        src = tmp_path / "tasks.yaml"
        write_text(src, TASKS_YAML)
        r = run("create-tasks", str(src), "--epic", "raw", "--no-split")
        assert r.exit_code == 0, r.output
        tasks = _state(tmp_path / ".taskgate" / "tasks" / "raw" / "state.json")
        assert tasks["T-002"]["splitRequired"] is True

    def test_refuses_to_overwrite(self, run, auth_flow: Path, tmp_path: Path):
        r = run("create-tasks", str(tmp_path / "tasks.yaml"))
        assert r.exit_code == 1
        r = run("create-tasks", str(tmp_path / "tasks.yaml"), "--force")
        assert r.exit_code == 0

    def test_cycle_exit_code(self, run, tmp_path: Path):
        src = _write_tasks(tmp_path, [
            {"id": "T-001", "title": "a", "blockedBy": ["T-002"]},
            {"id": "T-002", "title": "b", "blockedBy": ["T-001"]},
        ])
        r = run("create-tasks", str(src))
        assert r.exit_code == 4
        assert not (tmp_path / ".taskgate" / "tasks" / "batch" / "state.json").exists()

    def test_dangling_exit_code(self, run, tmp_path: Path):
        src = _write_tasks(tmp_path, [{"title": "a", "blockedBy": ["T-404"]}])
        assert run("create-tasks", str(src)).exit_code == 5

    def test_bad_fields_exit_code(self, run, tmp_path: Path):
        src = _write_tasks(tmp_path, [{"title": "a", "complexity": 40}])
        assert run("create-tasks", str(src)).exit_code == 3


# ── scheduling commands ────────────────────────────────────────────────


class TestScheduling:

    def test_next_task(self, run, auth_flow: Path):
        r = run("next-task")
        assert r.exit_code == 0
        assert "T-001" in r.output

    def test_alias(self, run, auth_flow: Path):
        assert "T-001" in run("next").output

    def test_start_blocked_task(self, run, auth_flow: Path):
        r = run("start-task", "T-004")
        assert r.exit_code == 6
        assert _state(auth_flow)["T-004"]["status"] == "pending"

    def test_start_complex_task(self, run, tmp_path: Path):
        src = _write_tasks(tmp_path, [{"title": "big", "complexity": 8}])
        run("create-tasks", str(src), "--no-split")
        assert run("start-task", "T-001").exit_code == 7

    def test_unknown_task(self, run, auth_flow: Path):
        assert run("start-task", "T-999").exit_code == 1

    def test_phase_flow(self, run, auth_flow: Path):
        assert run("start-task", "T-001").exit_code == 0
        r = run("complete-task", "T-001", "--tests", "pass", "--lint", "pass")
        assert r.exit_code == 0
        assert "confirm-phase" in r.output

        tasks = _state(auth_flow)
        assert tasks["T-001"]["status"] == "completed"
        assert tasks["T-001"]["qualityGate"]["tests"] == "pass"

        assert "confirm-phase" in run("next-task").output
        assert run("start-task", "T-004").exit_code == 6
        assert run("confirm-phase").exit_code == 0
        assert run("start-task", "T-004").exit_code == 0

    def test_failed_check_keeps_task_open(self, run, auth_flow: Path):
        run("start-task", "T-001")
        r = run("complete-task", "T-001", "--tests", "fail")
        assert r.exit_code == 1
        assert _state(auth_flow)["T-001"]["status"] == "in-progress"

    def test_block_unblock_cancel(self, run, auth_flow: Path):
        assert run("block-task", "T-001").exit_code == 0
        assert _state(auth_flow)["T-001"]["status"] == "blocked"
        assert run("unblock-task", "T-001").exit_code == 0
        assert run("cancel-task", "T-003").exit_code == 0
        assert run("unblock-task", "T-003").exit_code == 6


# ── standalone tasks and listing ──────────────────────────────────────


class TestStandalone:

    def test_new_task_and_status(self, run, tmp_path: Path):
        r = run("new-task", "Fix typo", "-c", "2", "--tag", "docs")
        assert r.exit_code == 0, r.output
        assert "T-001" in r.output

        r = run("tasks", "--epic", "standalone")
        assert r.exit_code == 0
        assert "Fix typo" in r.output

        r = run("task-status")
        assert "standalone: 1 pending" in r.output

    def test_new_task_unknown_blocker(self, run):
        assert run("new-task", "x", "--blocked-by", "T-404").exit_code == 3

    def test_split_task(self, run, tmp_path: Path):
        run("new-task", "Rewrite storage", "-c", "6")
        state = tmp_path / ".taskgate" / "tasks" / "standalone" / "state.json"
        assert _state(state)["T-001"]["splitRequired"] is True

        r = run("split-task", "T-001", "--epic", "standalone",
                "--into", "read path:3", "--into", "write path:2", "--chain")
        assert r.exit_code == 0, r.output
        tasks = _state(state)
        assert set(tasks) == {"T-002", "T-003"}
        assert tasks["T-003"]["blockedBy"] == ["T-002"]
        assert tasks["T-002"]["complexity"] == 3

    def test_task_status_empty(self, run):
        r = run("task-status")
        assert r.exit_code == 0
        assert "No active task work" in r.output


# ── graph commands ─────────────────────────────────────────────────────


class TestGraph:

    def test_show_graph(self, run, auth_flow: Path):
        r = run("show-graph")
        assert r.exit_code == 0
        assert "Critical path" in r.output
        assert "T-001 -> T-004 -> T-003" in r.output

    def test_validate_ok(self, run, auth_flow: Path):
        r = run("validate-graph")
        assert r.exit_code == 0
        assert "valid" in r.output

    def test_validate_cycle_on_disk(self, run, tmp_path: Path):
        bad = tmp_path / ".taskgate" / "tasks" / "bad" / "state.json"
        bad.parent.mkdir(parents=True, exist_ok=True)
        write_text(bad, json.dumps({"id": "bad", "tasks": [
            {"id": "T-001", "title": "a", "blockedBy": ["T-002"]},
            {"id": "T-002", "title": "b", "blockedBy": ["T-001"]},
        ]}))
        assert run("validate-graph", "--epic", "bad").exit_code == 4

    def test_validate_repairs_blocks(self, run, tmp_path: Path):
        path = tmp_path / ".taskgate" / "tasks" / "rep" / "state.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        write_text(path, json.dumps({"id": "rep", "nextSeq": 3, "tasks": [
            {"id": "T-001", "title": "a"},
            {"id": "T-002", "title": "b", "blockedBy": ["T-001"]},
        ]}))
        r = run("validate-graph", "--epic", "rep")
        assert r.exit_code == 0
        assert "REPAIR" in r.output
        assert _state(path)["T-001"]["blocks"] == ["T-002"]


# ── auto-loop ──────────────────────────────────────────────────────────


class TestAutoLoop:

    def _two_tasks(self, run, tmp_path: Path) -> None:
        src = _write_tasks(tmp_path, [{"title": "a"}, {"title": "b"}])
        assert run("create-tasks", str(src)).exit_code == 0

    def test_loop_check_and_cancel(self, run, tmp_path: Path):
        self._two_tasks(run, tmp_path)
        r = run("auto-loop", "--max-iterations", "3")
        assert r.exit_code == 0
        assert "First task" in r.output

        r = run("loop-check")
        assert "iteration 1/3" in r.output

        assert "cancelled" in run("cancel-loop").output
        assert run("loop-check").output.strip() == ""
        assert "No active auto-loop" in run("cancel-loop").output

    def test_exec_runs_tasks(self, run, tmp_path: Path):
        self._two_tasks(run, tmp_path)
        cmd = f"{shlex.quote(sys.executable)} -c {shlex.quote('import sys; sys.exit(0)')}"
        r = run("auto-loop", "--max-iterations", "5", "--exec", cmd)
        assert r.exit_code == 0, r.output
        assert "all-done" in r.output
        tasks = _state(tmp_path / ".taskgate" / "tasks" / "batch" / "state.json")
        assert all(t["status"] == "completed" for t in tasks.values())
        assert not (tmp_path / ".taskgate" / "auto-loop.json").exists()

    def test_exec_failure_exit_code(self, run, tmp_path: Path):
        self._two_tasks(run, tmp_path)
        cmd = f"{shlex.quote(sys.executable)} -c {shlex.quote('import sys; sys.exit(2)')}"
        r = run("auto-loop", "--exec", cmd)
        assert r.exit_code == 1
        tasks = _state(tmp_path / ".taskgate" / "tasks" / "batch" / "state.json")
        assert tasks["T-001"]["status"] == "in-progress"


# ── subprocess entry point ─────────────────────────────────────────────


@pytest.mark.e2e
def test_module_entry_point(tmp_path: Path):
    r = subprocess.run(
        [sys.executable, "-m", "taskgate", "--project-dir", str(tmp_path), "task-status"],
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        timeout=30,
    )
    assert r.returncode == 0
    assert "No active task work" in r.stdout
