"""Line sinks for streaming command output.

A sink is any callable taking one line of output as bytes, without its line
terminator. It is called synchronously from the pump task, in order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

__all__ = ["LineSink", "logging_sink", "collect_lines"]

LineSink = Callable[[bytes], None]


def logging_sink(
    target: logging.Logger,
    level: int = logging.INFO,
    prefix: str = "",
    encoding: str = "utf-8",
) -> LineSink:
    """Create a sink that writes each line to ``target``.

    Args:
        target: Logger receiving the lines
        level: Log level for every line
        prefix: Text placed in front of each line (e.g. "[stderr] ")
        encoding: Encoding used to decode lines (invalid bytes are replaced)

    Returns:
        Sink suitable for Deputy.stdout_log / Deputy.stderr_log
    """

    def sink(line: bytes) -> None:
        target.log(level, "%s%s", prefix, line.decode(encoding, errors="replace"))

    return sink


def collect_lines(lines: list[bytes]) -> LineSink:
    """Create a sink that appends every line to ``lines``."""
    return lines.append
