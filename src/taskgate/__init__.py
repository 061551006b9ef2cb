"""taskgate: dependency-aware, phase-gated task tracking."""

from taskgate.config import VERSION

__version__ = VERSION
