"""Runtime module for supervised subprocess execution.

This module runs a single child process with a wall-clock timeout, promotion
of captured output into errors, and line streaming to callbacks.
"""

from __future__ import annotations

from .errors import (
    CommandTimeoutError,
    DeputyError,
    DrainError,
    ExitError,
    is_timeout,
)
from .process_runner import CancelSignal, Deputy, ErrorSource, ProcessSpec
from .sinks import LineSink, collect_lines, logging_sink

__all__ = [
    "CancelSignal",
    "CommandTimeoutError",
    "Deputy",
    "DeputyError",
    "DrainError",
    "ErrorSource",
    "ExitError",
    "LineSink",
    "ProcessSpec",
    "collect_lines",
    "is_timeout",
    "logging_sink",
]
