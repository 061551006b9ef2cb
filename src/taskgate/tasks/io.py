"""Read and write task sets: ``state.json`` plus YAML/JSON task input files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from taskgate.errors import ValidationError
from taskgate.io_utils import read_json, read_text, write_json_atomic
from taskgate.tasks.model import (
    GateResult,
    Phase,
    PhaseGate,
    QualityGate,
    Subtask,
    Summary,
    Task,
    TaskSet,
    TaskStatus,
    Timestamps,
)


def _enum(cls, raw: Any, field_name: str, task_id: str):
    try:
        return cls(raw)
    except ValueError:
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(
            f"Task {task_id or '?'}: invalid {field_name} {raw!r} (expected one of: {allowed})"
        ) from None


def _str_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    return [str(x) for x in raw if str(x).strip()]


def _gate_value(raw: Any, name: str, task_id: str) -> GateResult | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        return GateResult.PASS if raw else GateResult.FAIL
    return _enum(GateResult, str(raw).lower(), f"qualityGate.{name}", task_id)


def _mapping(raw: Any, field_name: str, task_id: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError(
            f"Task {task_id or '?'}: {field_name} must be a mapping, got {type(raw).__name__}"
        )
    return raw


def _subtasks(raw: Any, task_id: str) -> list[Subtask]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"Task {task_id or '?'}: subtasks must be a list")
    subtasks: list[Subtask] = []
    for item in raw:
        if isinstance(item, str):
            subtasks.append(Subtask(title=item))
        elif isinstance(item, dict):
            subtasks.append(
                Subtask(title=str(item.get("title", "")), completed=bool(item.get("completed", False)))
            )
        else:
            raise ValidationError(
                f"Task {task_id or '?'}: subtask entries must be strings or mappings, "
                f"got {type(item).__name__}"
            )
    return subtasks


# ── Task <-> dict ────────────────────────────────────────────────


def task_from_dict(data: dict[str, Any]) -> Task:
    """Build a Task from its JSON/YAML mapping (camelCase keys)."""
    if not isinstance(data, dict):
        raise ValidationError(f"Task entry must be a mapping, got {type(data).__name__}")

    tid = str(data.get("id") or "").strip()

    complexity_raw = data.get("complexity", 1)
    try:
        complexity = int(complexity_raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Task {tid or '?'}: complexity must be an integer") from None

    subtasks = _subtasks(data.get("subtasks"), tid)
    gate_raw = _mapping(data.get("qualityGate"), "qualityGate", tid)
    ts_raw = _mapping(data.get("timestamps"), "timestamps", tid)

    return Task(
        id=tid,
        title=str(data.get("title") or "").strip(),
        description=str(data.get("description") or ""),
        status=_enum(TaskStatus, data.get("status", "pending"), "status", tid),
        complexity=complexity,
        blocked_by=_str_list(data.get("blockedBy")),
        blocks=_str_list(data.get("blocks")),
        subtasks=subtasks,
        phase=_enum(Phase, data.get("phase", "core"), "phase", tid),
        tags=list(dict.fromkeys(_str_list(data.get("tags")))),
        quality_gate=QualityGate(
            lint=_gate_value(gate_raw.get("lint"), "lint", tid),
            typecheck=_gate_value(gate_raw.get("typecheck"), "typecheck", tid),
            tests=_gate_value(gate_raw.get("tests"), "tests", tid),
        ),
        timestamps=Timestamps(
            created=str(ts_raw.get("created") or ""),
            started=str(ts_raw.get("started") or ""),
            completed=str(ts_raw.get("completed") or ""),
        ),
        split_required=bool(data.get("splitRequired", False)),
    )


def task_to_dict(task: Task) -> dict[str, Any]:
    gate = task.quality_gate
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
        "complexity": task.complexity,
        "blockedBy": list(task.blocked_by),
        "blocks": list(task.blocks),
        "subtasks": [{"title": s.title, "completed": s.completed} for s in task.subtasks],
        "phase": task.phase.value,
        "tags": list(task.tags),
        "qualityGate": {
            "lint": gate.lint.value if gate.lint else None,
            "typecheck": gate.typecheck.value if gate.typecheck else None,
            "tests": gate.tests.value if gate.tests else None,
        },
        "timestamps": {
            "created": task.timestamps.created or None,
            "started": task.timestamps.started or None,
            "completed": task.timestamps.completed or None,
        },
        "splitRequired": task.split_required,
    }


def summary_to_dict(summary: Summary) -> dict[str, Any]:
    return {
        "total": summary.total,
        "byStatus": dict(summary.counts),
        "averageComplexity": summary.average_complexity,
        "splitRequired": summary.split_required,
    }


# ── TaskSet <-> state.json ───────────────────────────────────────


def task_set_to_dict(ts: TaskSet) -> dict[str, Any]:
    gate = None
    if ts.gate is not None:
        gate = {"from": ts.gate.from_phase.value, "to": ts.gate.to_phase.value}
    return {
        "id": ts.id,
        "title": ts.title,
        "nextSeq": ts.next_seq,
        "gate": gate,
        "summary": summary_to_dict(ts.summary),
        "tasks": [task_to_dict(t) for t in ts.tasks],
    }


def task_set_from_dict(data: dict[str, Any]) -> TaskSet:
    """Rebuild a TaskSet. The stored summary is ignored; callers recompute it."""
    gate_raw = data.get("gate")
    if gate_raw is not None and not isinstance(gate_raw, dict):
        raise ValidationError(f"gate must be a mapping, got {type(gate_raw).__name__}")
    gate = None
    if gate_raw:
        gate = PhaseGate(
            from_phase=_enum(Phase, gate_raw.get("from"), "gate.from", ""),
            to_phase=_enum(Phase, gate_raw.get("to"), "gate.to", ""),
        )
    tasks = [task_from_dict(item) for item in data.get("tasks") or []]
    return TaskSet(
        id=str(data.get("id") or ""),
        title=str(data.get("title") or ""),
        tasks=tasks,
        next_seq=int(data.get("nextSeq") or 1),
        gate=gate,
    )


def load_task_set(path: Path) -> TaskSet:
    try:
        data = read_json(path)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path}: invalid JSON ({exc})") from None
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: expected a JSON object")
    return task_set_from_dict(data)


def save_task_set(ts: TaskSet, path: Path) -> None:
    write_json_atomic(path, task_set_to_dict(ts))


# ── raw decomposition input ──────────────────────────────────────


def load_task_input(path: Path) -> tuple[str, list[Task]]:
    """Parse a decomposition output file into ``(title, tasks)``.

    Accepts YAML or JSON, either a bare list of tasks or a mapping with
    ``title`` and ``tasks`` keys.
    """
    text = read_text(path)
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValidationError(f"{path}: could not parse task input ({exc})") from None

    title = ""
    if isinstance(data, dict):
        title = str(data.get("title") or "")
        items = data.get("tasks")
    else:
        items = data
    if not isinstance(items, list):
        raise ValidationError(f"{path}: expected a list of tasks")
    return title, [task_from_dict(item) for item in items]
