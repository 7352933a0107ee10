"""Error types raised by the run orchestrator.

proc-deputy runtime module v0.1.0

Start failures are not wrapped: the ``OSError`` raised by the OS (for example
``FileNotFoundError``) reaches the caller unchanged. Everything that happens
after the child was started is reported as a ``DeputyError``.
"""

from __future__ import annotations

import signal

__all__ = [
    "DeputyError",
    "ExitError",
    "DrainError",
    "CommandTimeoutError",
    "is_timeout",
]


class DeputyError(Exception):
    """Base error for a command that started but did not succeed.

    Attributes:
        message: Error text without captured output
        output: Trimmed captured output appended to the message ("" if none)
        path: Executable of the command (argv[0])
    """

    def __init__(self, message: str, path: str = "", output: str = "") -> None:
        self.message = message
        self.path = path
        self.output = output
        super().__init__(message)

    @property
    def is_timeout(self) -> bool:
        return False

    def __str__(self) -> str:
        if self.output:
            return f"{self.message}: {self.output}"
        return self.message


class ExitError(DeputyError):
    """The command exited with a non-zero status or was killed by a signal.

    Attributes:
        returncode: Return code as reported by asyncio (negative = signal)
    """

    def __init__(self, returncode: int, path: str = "", output: str = "") -> None:
        self.returncode = returncode
        super().__init__(_describe_returncode(returncode), path=path, output=output)


class DrainError(DeputyError):
    """Reading one of the command's output pipes failed.

    Attributes:
        stream: "stdout" or "stderr"
        cause: The underlying exception
    """

    def __init__(self, stream: str, cause: BaseException, path: str = "") -> None:
        self.stream = stream
        self.cause = cause
        super().__init__(f"reading {stream}: {cause}", path=path)
        self.__cause__ = cause


class CommandTimeoutError(DeputyError, TimeoutError):
    """The command was killed because its timeout expired or it was cancelled."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f"timed out waiting for command {path!r} to execute", path=path
        )

    @property
    def is_timeout(self) -> bool:
        return True


def is_timeout(exc: BaseException | None) -> bool:
    """Report whether ``exc`` was caused by a timeout or cancellation.

    Any exception exposing a true ``is_timeout`` attribute qualifies, so
    callers never have to match on error text.
    """
    return getattr(exc, "is_timeout", False) is True


def _describe_returncode(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"signal: {name}"
    return f"exit status {returncode}"
