"""Project index: one row per epic plus standalone counters, and the
session-resume summary built from it."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from taskgate.config import STANDALONE_ID
from taskgate.io_utils import read_json, write_json_atomic
from taskgate.tasks.model import TaskSet, TaskStatus


@dataclass
class EpicEntry:
    id: str
    title: str = ""
    status: str = "pending"
    progress: str = "0/0"
    path: str = ""


@dataclass
class Index:
    epics: list[EpicEntry] = field(default_factory=list)
    standalone_total: int = 0
    standalone_completed: int = 0

    def get(self, set_id: str) -> EpicEntry | None:
        for e in self.epics:
            if e.id == set_id:
                return e
        return None

    @property
    def standalone_pending(self) -> int:
        return max(0, self.standalone_total - self.standalone_completed)


def set_status(ts: TaskSet) -> str:
    """``completed`` when every task is closed, ``in-progress`` once work started."""
    if ts.tasks and all(t.closed for t in ts.tasks):
        return "completed"
    if any(t.status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED) for t in ts.tasks):
        return "in-progress"
    return "pending"


def load_index(path: Path) -> Index:
    if not path.is_file():
        return Index()
    data = read_json(path)
    standalone = data.get("standalone") or {}
    return Index(
        epics=[
            EpicEntry(
                id=str(e.get("id") or e.get("specId") or ""),
                title=str(e.get("title") or ""),
                status=str(e.get("status") or "pending"),
                progress=str(e.get("progress") or "0/0"),
                path=str(e.get("path") or ""),
            )
            for e in data.get("epics") or []
        ],
        standalone_total=int(standalone.get("total") or 0),
        standalone_completed=int(standalone.get("completed") or 0),
    )


def save_index(index: Index, path: Path) -> None:
    write_json_atomic(
        path,
        {
            "epics": [
                {
                    "id": e.id,
                    "title": e.title,
                    "status": e.status,
                    "progress": e.progress,
                    "path": e.path,
                }
                for e in index.epics
            ],
            "standalone": {
                "total": index.standalone_total,
                "completed": index.standalone_completed,
            },
        },
    )


def record(index: Index, ts: TaskSet, path: str) -> Index:
    """Upsert the row for *ts* (or the standalone counters)."""
    done = sum(1 for t in ts.tasks if t.status == TaskStatus.COMPLETED)
    if ts.id == STANDALONE_ID:
        index.standalone_total = len(ts.tasks)
        index.standalone_completed = done
        return index

    entry = index.get(ts.id)
    if entry is None:
        entry = EpicEntry(id=ts.id)
        index.epics.append(entry)
    entry.title = ts.title
    entry.status = set_status(ts)
    entry.progress = f"{done}/{len(ts.tasks)}"
    entry.path = path
    return index


def session_status(index: Index) -> list[str]:
    """Lines describing unfinished work; empty when there is nothing to resume."""
    active = [e for e in index.epics if e.status in ("in-progress", "pending")]
    pending = index.standalone_pending
    if not active and not pending:
        return []

    lines = ["Active task work detected:"]
    for e in active:
        lines.append(f"  - {e.id}: {e.title} [{e.status}] {e.progress}")
    if pending:
        lines.append(f"  - standalone: {pending} pending")
    return lines
