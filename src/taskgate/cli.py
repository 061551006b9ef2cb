"""taskgate CLI.

Installed as ``taskgate`` console_script.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.markup import escape
from rich.table import Table

from taskgate import __version__
from taskgate import log as glog
from taskgate.config import (
    COMPLEXITY_CEILING,
    STANDALONE_ID,
    STRATEGIES,
    Config,
)
from taskgate.errors import TaskgateError, is_structural


# ── Custom Click group: short aliases + error -> exit code ───────────


class TaskgateGroup(click.Group):
    """Resolve short command aliases and turn domain errors into exit codes."""

    _ALIASES: dict[str, str] = {
        "next": "next-task",
        "start": "start-task",
        "done": "complete-task",
        "status": "task-status",
        "graph": "show-graph",
        "validate": "validate-graph",
        "ls": "tasks",
    }

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, self._ALIASES.get(cmd_name, cmd_name))

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except TaskgateError as exc:
            glog.error(str(exc))
            for problem in getattr(exc, "problems", []):
                glog.error(f"  - {problem}")
            if is_structural(exc):
                glog.info("Task graph rejected; nothing was written.")
            ctx.exit(exc.exit_code)


CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

STATUS_STYLE = {
    "pending": "white",
    "in-progress": "cyan",
    "completed": "green",
    "blocked": "yellow",
    "cancelled": "dim",
}

GATE_CHOICE = click.Choice(["pass", "fail"])


@click.group(cls=TaskgateGroup, context_settings=CONTEXT_SETTINGS)
@click.option(
    "--project-dir",
    default="",
    envvar="TASKGATE_PROJECT_DIR",
    help="Project root holding .taskgate/ (default: cwd)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskgate")
@click.pass_context
def main(ctx: click.Context, project_dir: str, verbose: bool) -> None:
    """taskgate: dependency-aware, phase-gated task tracking.

    \b
    EXAMPLES:
      taskgate create-tasks tasks.yaml --epic SPEC-001
      taskgate next-task --strategy critical-path
      taskgate start-task T-003
      taskgate complete-task T-003 --tests pass
      taskgate show-graph

    \b
    WORKFLOW:
      1. Decompose:  taskgate create-tasks tasks.yaml
      2. Pick:       taskgate next-task
      3. Work:       taskgate start-task <id> / complete-task <id>
      4. Gate:       taskgate confirm-phase when a phase is finished
    """
    glog.set_verbose(verbose)
    ctx.obj = Config(project_dir=project_dir, verbose=verbose)


def _store(cfg: Config, epic: str):
    from taskgate.project import open_store, resolve_set_id

    return open_store(cfg, resolve_set_id(cfg, epic))


def _scheduler(cfg: Config, epic: str, strategy: str = ""):
    from taskgate.scheduler import Scheduler

    return Scheduler(_store(cfg, epic), strategy or cfg.strategy)


def _task_line(task) -> str:
    style = STATUS_STYLE.get(task.status.value, "white")
    return (
        f"[bold]{task.id}[/bold] [{style}]{task.status.value}[/{style}] "
        f"c{task.complexity} {task.phase.value}: {escape(task.title)}"
    )


# ── creation ─────────────────────────────────────────────────────────


@main.command("create-tasks")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--epic", default="", help="Task set id (default: slug of the title)")
@click.option("--title", default="", help="Task set title (default: from the file)")
@click.option("--no-split", is_flag=True, help="Score and flag only; never split tasks")
@click.option("--force", is_flag=True, help="Replace an existing task set with the same id")
@click.pass_obj
def create_tasks(
    cfg: Config, file: Path, epic: str, title: str, no_split: bool, force: bool
) -> None:
    """Create a task set from a YAML/JSON decomposition file."""
    from taskgate.complexity import ComplexityGate
    from taskgate.project import index_updater, slugify
    from taskgate.store import TaskStore
    from taskgate.tasks.io import load_task_input
    from taskgate.tasks.model import TaskSet

    file_title, tasks = load_task_input(file)
    title = title or file_title or file.stem
    set_id = epic or slugify(title) or file.stem
    path = cfg.state_path(set_id)
    if path.is_file() and not force:
        raise TaskgateError(f"Task set {set_id} already exists ({path}); use --force to replace it")

    store = TaskStore(TaskSet(id=set_id, title=title), path=path, on_commit=index_updater(cfg))
    store.create_tasks(tasks, set_id=set_id, title=title)
    report = ComplexityGate(store, split=not no_split).run()

    summary = store.recompute_summary()
    glog.success(
        f"Created {set_id}: {summary.total} task(s), avg complexity "
        f"{summary.average_complexity} ({report.passes} pass(es))"
    )
    for parent, children in report.splits.items():
        glog.info(f"  {parent} -> {', '.join(children)}")
    if report.flagged:
        glog.warn(
            f"{len(report.flagged)} task(s) above complexity {COMPLEXITY_CEILING} need a manual "
            f"split: {', '.join(report.flagged)}"
        )


@main.command("new-task")
@click.argument("title")
@click.option("--description", "-d", default="", help="Full task description")
@click.option("--complexity", "-c", type=click.IntRange(1, 10), default=1, show_default=True)
@click.option(
    "--phase",
    type=click.Choice(["setup", "core", "integration", "testing", "docs", "cleanup"]),
    default="core",
    show_default=True,
)
@click.option("--blocked-by", "blocked_by", multiple=True, help="Id of a blocking task (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Label (repeatable)")
@click.option("--subtask", "subtasks", multiple=True, help="Checklist item (repeatable)")
@click.option("--epic", default=STANDALONE_ID, show_default=True, help="Task set to add to")
@click.pass_obj
def new_task(
    cfg: Config,
    title: str,
    description: str,
    complexity: int,
    phase: str,
    blocked_by: tuple[str, ...],
    tags: tuple[str, ...],
    subtasks: tuple[str, ...],
    epic: str,
) -> None:
    """Add a single task (to the standalone set by default)."""
    from taskgate.complexity import ComplexityGate
    from taskgate.project import open_store
    from taskgate.tasks.model import Phase, Subtask, Task

    store = open_store(cfg, epic, create=(epic == STANDALONE_ID))
    task = store.add_task(
        Task(
            id="",
            title=title,
            description=description,
            complexity=complexity,
            phase=Phase(phase),
            blocked_by=list(blocked_by),
            tags=list(dict.fromkeys(tags)),
            subtasks=[Subtask(title=s) for s in subtasks],
        )
    )
    glog.success(f"Added {task.id} to {epic}: {task.title}")
    if task.complexity > COMPLEXITY_CEILING:
        ComplexityGate(store).run()


@main.command("split-task")
@click.argument("task_id")
@click.option(
    "--into",
    "parts",
    multiple=True,
    required=True,
    help="Child as 'title' or 'title:complexity' (repeatable, in order)",
)
@click.option("--chain", is_flag=True, help="Make each child wait for the previous one")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def split_task(cfg: Config, task_id: str, parts: tuple[str, ...], chain: bool, epic: str) -> None:
    """Manually replace a task with smaller children."""
    from taskgate.tasks.model import TaskDraft

    drafts: list[TaskDraft] = []
    for idx, raw in enumerate(parts):
        title, sep, score = raw.rpartition(":")
        if not sep or not score.strip().isdigit():
            title, score = raw, "1"
        drafts.append(
            TaskDraft(
                title=title.strip(),
                complexity=int(score),
                after=[idx - 1] if chain and idx > 0 else [],
            )
        )
    children = _store(cfg, epic).replace_with_children(task_id, drafts)
    glog.success(f"Split {task_id} into {', '.join(c.id for c in children)}")


# ── listing / status ─────────────────────────────────────────────────


@main.command("tasks")
@click.option("--epic", default="", help="Task set id")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice(["pending", "in-progress", "completed", "blocked", "cancelled"]),
    default=None,
)
@click.pass_obj
def list_tasks(cfg: Config, epic: str, status_filter: str | None) -> None:
    """List the tasks of a set."""
    ts = _store(cfg, epic).snapshot()
    table = Table(title=f"{ts.id}: {escape(ts.title)}" if ts.title else ts.id)
    for col in ("ID", "Status", "C", "Phase", "Blocked by", "Title"):
        table.add_column(col)
    for t in ts.tasks:
        if status_filter and t.status.value != status_filter:
            continue
        style = STATUS_STYLE.get(t.status.value, "white")
        title = escape(t.title) + (" [red](split required)[/red]" if t.split_required else "")
        table.add_row(
            t.id,
            f"[{style}]{t.status.value}[/{style}]",
            str(t.complexity),
            t.phase.value,
            ", ".join(t.blocked_by),
            title,
        )
    glog.console.print(table)
    glog.console.print(
        f"Progress: {ts.summary.progress}  avg complexity: {ts.summary.average_complexity}"
    )


@main.command("task-status")
@click.pass_obj
def task_status(cfg: Config) -> None:
    """Summarize unfinished work across all task sets."""
    from taskgate.index import load_index, session_status
    from taskgate.loop import load_loop_state

    lines = session_status(load_index(cfg.index_path))
    if not lines:
        glog.success("No active task work.")
        return
    for line in lines:
        glog.console.print(escape(line))
    state = load_loop_state(cfg.loop_path)
    if state is not None:
        glog.console.print(
            f"Auto-loop: iteration {state.iteration}/{state.max_iterations} ({state.strategy})"
        )


# ── scheduling ───────────────────────────────────────────────────────


@main.command("next-task")
@click.option("--strategy", type=click.Choice(STRATEGIES), default=None)
@click.option("--epic", default="", help="Task set id")
@click.option("--all", "show_all", is_flag=True, help="List every available task in rank order")
@click.pass_obj
def next_task(cfg: Config, strategy: str | None, epic: str, show_all: bool) -> None:
    """Show the next task to work on."""
    from taskgate.scheduler import Outcome

    sched = _scheduler(cfg, epic, strategy or "")
    selection = sched.select_next()
    if selection.outcome == Outcome.SELECTED and selection.task is not None:
        glog.console.print(f"Next ({sched.strategy.value}): {_task_line(selection.task)}")
        if show_all:
            for t in selection.candidates[1:]:
                glog.console.print(f"  {_task_line(t)}")
        return
    if selection.outcome == Outcome.AWAITING_CONFIRMATION:
        glog.warn(selection.reason)
        glog.console.print("Run [bold]taskgate confirm-phase[/bold] to continue.")
        return
    if selection.outcome == Outcome.ALL_DONE:
        glog.success(selection.reason)
        return
    glog.warn(selection.reason)


@main.command("start-task")
@click.argument("task_id")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def start_task(cfg: Config, task_id: str, epic: str) -> None:
    """Move a task to in-progress."""
    _scheduler(cfg, epic).start_task(task_id)


@main.command("complete-task")
@click.argument("task_id")
@click.option("--lint", type=GATE_CHOICE, default=None)
@click.option("--typecheck", type=GATE_CHOICE, default=None)
@click.option("--tests", type=GATE_CHOICE, default=None)
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def complete_task(
    cfg: Config,
    task_id: str,
    lint: str | None,
    typecheck: str | None,
    tests: str | None,
    epic: str,
) -> None:
    """Complete an in-progress task, recording quality-gate results."""
    from taskgate.scheduler import gate_from_flags

    sched = _scheduler(cfg, epic)
    gate = gate_from_flags(lint, typecheck, tests) if (lint or typecheck or tests) else None
    done = sched.complete_task(task_id, gate)
    if not done.completed:
        glog.error(f"{task_id} stays in-progress: failed {', '.join(done.failed_checks)}")
        sys.exit(1)
    if done.gate is not None:
        glog.console.print("Run [bold]taskgate confirm-phase[/bold] to continue.")


@main.command("block-task")
@click.argument("task_id")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def block_task(cfg: Config, task_id: str, epic: str) -> None:
    """Put a pending task on hold."""
    task = _scheduler(cfg, epic).block_task(task_id)
    glog.info(f"{task.id} is blocked")


@main.command("unblock-task")
@click.argument("task_id")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def unblock_task(cfg: Config, task_id: str, epic: str) -> None:
    """Release a held task back to pending."""
    task = _scheduler(cfg, epic).unblock_task(task_id)
    glog.info(f"{task.id} is pending")


@main.command("cancel-task")
@click.argument("task_id")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def cancel_task(cfg: Config, task_id: str, epic: str) -> None:
    """Cancel a pending or held task."""
    task = _scheduler(cfg, epic).cancel_task(task_id)
    glog.info(f"{task.id} is cancelled")


@main.command("confirm-phase")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def confirm_phase(cfg: Config, epic: str) -> None:
    """Confirm a finished phase so scheduling can move on."""
    gate = _scheduler(cfg, epic).confirm_phase()
    if gate is None:
        glog.info("No phase boundary is awaiting confirmation.")


# ── graph ────────────────────────────────────────────────────────────


@main.command("show-graph")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def show_graph(cfg: Config, epic: str) -> None:
    """Print levels, critical path and parallel tracks."""
    from taskgate.tasks.validate import validate_graph

    ts = _store(cfg, epic).snapshot()
    report = validate_graph(ts)
    by_id = ts.by_id()

    glog.console.print(f"[bold]{ts.id}[/bold] {escape(ts.title)}")
    glog.console.print("[bold]Levels[/bold]")
    for level, ids in enumerate(report.by_level()):
        glog.console.print(f"  L{level}: {' '.join(ids)}")
    weight = sum(by_id[tid].complexity for tid in report.critical_path)
    glog.console.print(
        f"[bold]Critical path[/bold] ({len(report.critical_path)} tasks, complexity {weight}): "
        f"{' -> '.join(report.critical_path)}"
    )
    glog.console.print(f"[bold]Parallel tracks[/bold] ({len(report.tracks)})")
    for n, track in enumerate(report.tracks, 1):
        glog.console.print(f"  {n}: {' '.join(track)}")


@main.command("validate-graph")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def validate_graph_cmd(cfg: Config, epic: str) -> None:
    """Check a task set for cycles, dangling references and schema problems."""
    from taskgate.errors import ValidationError
    from taskgate.project import resolve_set_id
    from taskgate.tasks.io import load_task_set, save_task_set
    from taskgate.tasks.validate import validate_and_report, validate_graph

    set_id = resolve_set_id(cfg, epic)
    path = cfg.state_path(set_id)
    if not path.is_file():
        raise TaskgateError(f"No task set named {set_id} (expected {path})")
    ts = load_task_set(path)
    if not validate_and_report(ts):
        # Re-raise the most specific structural error for the exit code.
        validate_graph(ts)
        raise ValidationError(f"Task set {set_id} failed validation")
    report = validate_graph(ts)
    if report.repairs:
        save_task_set(ts, path)
    glog.success(f"{set_id}: {len(ts.tasks)} task(s), graph is valid")


# ── auto-loop ────────────────────────────────────────────────────────


@main.command("auto-loop")
@click.option("--max-iterations", type=click.IntRange(min=1), default=None)
@click.option("--strategy", type=click.Choice(STRATEGIES), default=None)
@click.option("--exec", "command", default="", help="Run this command per task ({id}, {title})")
@click.option("--epic", default="", help="Task set id")
@click.pass_obj
def auto_loop(
    cfg: Config, max_iterations: int | None, strategy: str | None, command: str, epic: str
) -> None:
    """Start an auto-loop; with --exec, run it here until it pauses."""
    from taskgate.loop import AutoLoop, CommandExecutor, LoopOutcome, start_loop
    from taskgate.project import resolve_set_id

    if max_iterations:
        cfg.max_iterations = max_iterations
    if strategy:
        cfg.strategy = strategy
    set_id = resolve_set_id(cfg, epic)
    start_loop(cfg, set_id)

    sched = _scheduler(cfg, set_id)
    if not command:
        selection = sched.select_next()
        if selection.task is not None:
            glog.console.print(f"First task: {_task_line(selection.task)}")
        else:
            glog.warn(selection.reason)
        return

    result = AutoLoop(
        sched,
        CommandExecutor(command, cwd=Path(cfg.project_dir)),
        cfg.max_iterations,
        state_path=cfg.loop_path,
    ).run()
    glog.console.print(
        f"Auto-loop stopped after {result.iterations} iteration(s): {result.outcome.value}"
    )
    if result.outcome == LoopOutcome.QUALITY_GATE_FAILED:
        sys.exit(1)


@main.command("loop-check")
@click.pass_obj
def loop_check(cfg: Config) -> None:
    """Print a continuation message if the active loop should keep going."""
    from taskgate.loop import check_continue

    for line in check_continue(cfg):
        click.echo(line)


@main.command("cancel-loop")
@click.pass_obj
def cancel_loop_cmd(cfg: Config) -> None:
    """Stop the active auto-loop. Task state is left as is."""
    from taskgate.loop import cancel_loop

    if cancel_loop(cfg.loop_path):
        glog.success("Auto-loop cancelled.")
    else:
        glog.info("No active auto-loop.")
