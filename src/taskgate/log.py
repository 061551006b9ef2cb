"""Console logging for taskgate, colored via Rich.

Each level prints a bracketed tag (``[INFO]``, ``[REPAIR]`` ...) in its own
color. Errors go to stderr; ``debug`` is silent unless verbose mode is on.
"""

from __future__ import annotations

from rich.console import Console

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

# level -> (tag, rich style)
LEVELS: dict[str, tuple[str, str]] = {
    "info": ("INFO", "blue"),
    "success": ("OK", "green"),
    "warn": ("WARN", "yellow"),
    "repair": ("REPAIR", "magenta"),
    "error": ("ERROR", "red"),
}

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def emit(level: str, msg: str) -> None:
    tag, style = LEVELS[level]
    out = _err_console if level == "error" else console
    out.print(f"[{style}]\\[{tag}][/{style}] {msg}")


def info(msg: str) -> None:
    emit("info", msg)


def success(msg: str) -> None:
    emit("success", msg)


def warn(msg: str) -> None:
    emit("warn", msg)


def repair(msg: str) -> None:
    """Consistency fixes applied on load; informational, never failures."""
    emit("repair", msg)


def error(msg: str) -> None:
    emit("error", msg)


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {msg}[/dim]")
