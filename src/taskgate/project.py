"""On-disk project layout: locating, opening and naming task sets."""

from __future__ import annotations

import re
from collections.abc import Callable

from taskgate.config import STANDALONE_ID, Config
from taskgate.errors import TaskgateError
from taskgate.index import load_index, record, save_index
from taskgate.store import TaskStore
from taskgate.tasks.model import TaskSet


def slugify(text: str, max_len: int = 50) -> str:
    """Convert text to a path-safe set id."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_len].strip("-")


def index_updater(cfg: Config) -> Callable[[TaskSet], None]:
    def _update(ts: TaskSet) -> None:
        index = load_index(cfg.index_path)
        rel = cfg.state_path(ts.id).relative_to(cfg.project_dir).as_posix()
        save_index(record(index, ts, rel), cfg.index_path)

    return _update


def open_store(cfg: Config, set_id: str, *, create: bool = False) -> TaskStore:
    """Open the store for *set_id*; with ``create`` an empty one is made if absent."""
    path = cfg.state_path(set_id)
    if path.is_file():
        return TaskStore.load(path, on_commit=index_updater(cfg))
    if not create:
        raise TaskgateError(f"No task set named {set_id} (expected {path})")
    return TaskStore(TaskSet(id=set_id), path=path, on_commit=index_updater(cfg))


def list_set_ids(cfg: Config) -> list[str]:
    if not cfg.tasks_dir.is_dir():
        return []
    return sorted(p.parent.name for p in cfg.tasks_dir.glob("*/state.json"))


def resolve_set_id(cfg: Config, explicit: str = "") -> str:
    """Pick the set a command acts on.

    An explicit id wins; otherwise the first in-progress epic, then the first
    pending one, then ``standalone``.
    """
    if explicit:
        return explicit
    index = load_index(cfg.index_path)
    for wanted in ("in-progress", "pending"):
        for entry in index.epics:
            if entry.status == wanted and cfg.state_path(entry.id).is_file():
                return entry.id
    return STANDALONE_ID
