"""Configuration defaults, env vars, and on-disk layout for taskgate."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from taskgate.errors import ConfigError


VERSION = "1.0.0"

# Highest complexity a task may carry and still be scheduled.
COMPLEXITY_CEILING = 4
# Hard cap on decomposition passes (macro, split, score, refine, refine).
MAX_PASSES = 5

MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 10

STATE_DIR_NAME = ".taskgate"
STANDALONE_ID = "standalone"

STRATEGIES: tuple[str, ...] = ("quick-win", "critical-path")
DEFAULT_STRATEGY = "quick-win"
DEFAULT_MAX_ITERATIONS = 10


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    """Runtime configuration, resolved from CLI flags then environment."""

    project_dir: str = ""
    strategy: str = ""
    max_iterations: int = 0
    split: bool = True
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.project_dir:
            self.project_dir = os.environ.get("TASKGATE_PROJECT_DIR") or str(Path.cwd())
        self.project_dir = str(Path(self.project_dir).resolve())
        if not self.strategy:
            self.strategy = os.environ.get("TASKGATE_STRATEGY") or DEFAULT_STRATEGY
        if self.strategy not in STRATEGIES:
            raise ConfigError(
                f"Unknown strategy {self.strategy!r} (expected one of: {', '.join(STRATEGIES)})"
            )
        if self.max_iterations <= 0:
            self.max_iterations = _env_int("TASKGATE_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS)

    # ── layout ───────────────────────────────────────────────────

    @property
    def state_dir(self) -> Path:
        return Path(self.project_dir) / STATE_DIR_NAME

    @property
    def tasks_dir(self) -> Path:
        return self.state_dir / "tasks"

    @property
    def index_path(self) -> Path:
        return self.tasks_dir / "index.json"

    @property
    def loop_path(self) -> Path:
        return self.state_dir / "auto-loop.json"

    @property
    def guardrails_path(self) -> Path:
        return self.state_dir / "guardrails.md"

    def state_path(self, set_id: str) -> Path:
        return self.tasks_dir / set_id / "state.json"
