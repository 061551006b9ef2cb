"""Error taxonomy shared by the store, validator, gate and scheduler.

Every error carries the process exit code the CLI uses for it.
"""

from __future__ import annotations


class TaskgateError(Exception):
    """Base class for all taskgate failures."""

    exit_code = 1


class ConfigError(TaskgateError):
    """A setting from the command line or environment is not usable."""

    exit_code = 2


class ValidationError(TaskgateError):
    """Structurally bad input: duplicate ids, unresolved references, bad fields."""

    exit_code = 3

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


class CycleError(ValidationError):
    """The ``blockedBy`` graph contains a cycle.

    ``source`` -> ``target`` is the back edge found by the traversal; removing
    it breaks the reported cycle.
    """

    exit_code = 4

    def __init__(self, source: str, target: str, path: list[str] | None = None) -> None:
        self.source = source
        self.target = target
        self.path = path or [source, target]
        chain = " -> ".join(self.path)
        super().__init__(
            f"Cycle detected: {chain} (remove edge {source} -> {target})"
        )


class DanglingReferenceError(ValidationError):
    """A ``blockedBy``/``blocks`` entry names a task that does not exist."""

    exit_code = 5

    def __init__(self, task_id: str, ref: str, field: str = "blockedBy") -> None:
        self.task_id = task_id
        self.ref = ref
        self.field = field
        super().__init__(f"Task {task_id}: {field} reference {ref} not found")


class InvalidTransitionError(TaskgateError):
    """Illegal status change; the task keeps its previous status."""

    exit_code = 6

    def __init__(self, task_id: str, old: str, new: str, reason: str = "") -> None:
        self.task_id = task_id
        self.old = old
        self.new = new
        msg = f"Task {task_id}: illegal transition {old} -> {new}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class ComplexityExceededError(TaskgateError):
    """A task above the complexity ceiling was forced into execution."""

    exit_code = 7

    def __init__(self, task_id: str, complexity: int, ceiling: int) -> None:
        self.task_id = task_id
        self.complexity = complexity
        self.ceiling = ceiling
        super().__init__(
            f"Task {task_id} has complexity {complexity} (ceiling {ceiling}); split it first"
        )


class UnknownTaskError(TaskgateError):
    """No task with the given id exists in the set."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


def is_structural(exc: BaseException) -> bool:
    """Return ``True`` for errors that block accepting a task set."""
    return isinstance(exc, (CycleError, DanglingReferenceError)) or (
        type(exc) is ValidationError
    )
