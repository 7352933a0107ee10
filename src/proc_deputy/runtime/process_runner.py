"""Run orchestrator: supervised subprocess execution.

proc-deputy runtime module v0.1.0

This module provides:
- Wall-clock timeout with forced termination of the child
- Promotion of captured stdout/stderr into the raised error on failure
- Line-by-line streaming of stdout/stderr to callbacks while the child runs
- Cancellation through an external signal (asyncio.Event / anyio.Event)

Key design points:
- Every attached pipe is drained by its own task, and all pumps finish before
  the child is reaped, so output written right before exit is never lost
- Pipes, capture buffers and tasks are local to one run() call; a Deputy is
  immutable and can be shared by concurrent runs
- On timeout the child is killed and run() returns at once; the in-flight
  wait task finishes in the background and its result is discarded
"""

from __future__ import annotations

import asyncio
import functools
import io
import logging
import subprocess
import sys
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Protocol

import anyio

from .errors import CommandTimeoutError, DeputyError, DrainError, ExitError
from .sinks import LineSink

__all__ = [
    "CancelSignal",
    "Deputy",
    "ErrorSource",
    "ProcessSpec",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Longest line a line callback accepts (same as a default bufio.Scanner)
DEFAULT_MAX_LINE_BYTES = 64 * 1024

_CHUNK_SIZE = 4096

# Wait tasks abandoned after a kill; kept referenced until they finish
_background_tasks: set[asyncio.Task[Any]] = set()


class ErrorSource(Enum):
    """Which output stream is promoted into the error text on failure.

    - NONE: raise the exit error unchanged
    - STDOUT / STDERR: append that stream's trimmed output
    - BOTH: append both streams, collected into one shared buffer
    """

    NONE = "none"
    STDOUT = "stdout"
    STDERR = "stderr"
    BOTH = "both"

    @classmethod
    def from_string(cls, value: str) -> "ErrorSource":
        """Parse a mode name, case-insensitive. Unknown values map to NONE."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.NONE

    @property
    def captures_stdout(self) -> bool:
        return self in (ErrorSource.STDOUT, ErrorSource.BOTH)

    @property
    def captures_stderr(self) -> bool:
        return self in (ErrorSource.STDERR, ErrorSource.BOTH)


class CancelSignal(Protocol):
    """Anything that can be awaited until set, e.g. asyncio.Event or anyio.Event."""

    def is_set(self) -> bool: ...

    def wait(self) -> Awaitable[Any]: ...


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
        stdin_bytes: Optional bytes to write to stdin
        stdout: Optional binary destination for the child's stdout
        stderr: Optional binary destination for the child's stderr
        new_session: Start the child in its own session/process group so
            terminal signals aimed at the supervisor do not reach it
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None
    stdout: IO[bytes] | None = None
    stderr: IO[bytes] | None = None
    new_session: bool = False

    @property
    def path(self) -> str:
        return self.argv[0] if self.argv else ""


class _Tee:
    """Writes every chunk to the caller's destination and the capture buffer."""

    def __init__(self, destination: IO[bytes] | None, capture: bytearray | None) -> None:
        self.destination = destination
        self.capture = capture

    def write(self, data: bytes) -> None:
        if self.destination is not None:
            self.destination.write(data)
            _flush(self.destination)
        if self.capture is not None:
            self.capture.extend(data)


@dataclass
class _StreamPlan:
    """How one output stream is wired for a single run."""

    name: str
    target: Any
    tee: _Tee | None = None
    callback: LineSink | None = None

    @property
    def piped(self) -> bool:
        return self.target is asyncio.subprocess.PIPE


@dataclass(frozen=True)
class Deputy:
    """Runs commands with a timeout, error capture and line logging.

    A Deputy only holds configuration, so one instance can serve any number
    of concurrent runs.

    Example:
        deputy = Deputy(
            timeout=30,
            errors=ErrorSource.STDERR,
            stdout_log=logging_sink(logger),
        )
        try:
            await deputy.run(ProcessSpec(argv=["make", "test"]))
        except DeputyError as e:
            if is_timeout(e):
                ...

    Attributes:
        timeout: Seconds before the command is killed (0 or None = no limit)
        errors: Which captured output is appended to the error on failure
        stdout_log: Callback receiving each stdout line without its newline
        stderr_log: Callback receiving each stderr line without its newline
        cancel: Signal that kills the command as soon as it is set
        max_line_bytes: Longest line the line callbacks accept
    """

    timeout: float | None = None
    errors: ErrorSource = ErrorSource.NONE
    stdout_log: LineSink | None = field(default=None, compare=False)
    stderr_log: LineSink | None = field(default=None, compare=False)
    cancel: CancelSignal | None = field(default=None, compare=False)
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES

    def __post_init__(self) -> None:
        if isinstance(self.errors, str):
            object.__setattr__(self, "errors", ErrorSource(self.errors.lower()))
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"timeout must not be negative, got {self.timeout}")
        if self.max_line_bytes <= 0:
            raise ValueError(f"max_line_bytes must be positive, got {self.max_line_bytes}")

    async def run(self, spec: ProcessSpec, *, cancel: CancelSignal | None = None) -> None:
        """Start the command and wait for it to complete.

        This method:
        1. Wires stdout/stderr (tee into the capture buffer, line pipes)
        2. Starts the subprocess; start failures are raised unchanged
        3. Drains every attached pipe in its own task
        4. Races completion against the timeout and the cancel signal
        5. Appends captured output to the error if configured

        Args:
            spec: Process specification
            cancel: Cancel signal for this run only (overrides self.cancel)

        Raises:
            OSError: If the process cannot be started
            ExitError: If the process exits unsuccessfully
            DrainError: If reading an output pipe fails
            CommandTimeoutError: If the timeout expires or cancel is set
        """
        if not spec.argv:
            raise ValueError("ProcessSpec.argv must not be empty")
        if cancel is None:
            cancel = self.cancel

        capture = bytearray() if self.errors is not ErrorSource.NONE else None
        stdout_plan = _plan_stream(
            "stdout",
            spec.stdout,
            self.stdout_log,
            capture if self.errors.captures_stdout else None,
        )
        stderr_plan = _plan_stream(
            "stderr",
            spec.stderr,
            self.stderr_log,
            capture if self.errors.captures_stderr else None,
        )

        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE if spec.stdin_bytes is not None else asyncio.subprocess.DEVNULL,
            stdout=stdout_plan.target,
            stderr=stderr_plan.target,
            limit=self.max_line_bytes,
            **self._build_subprocess_kwargs(spec),
        )

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.path} cwd={spec.cwd}"
        )

        pumps = self._start_pumps(process, spec, stdout_plan, stderr_plan)
        error = await self._supervise(process, pumps, spec.path, cancel)
        if error is None:
            return

        if capture and not error.is_timeout:
            output = bytes(capture).strip().decode("utf-8", errors="replace")
            if output:
                error.output = output
        raise error

    def run_sync(self, spec: ProcessSpec, *, cancel: CancelSignal | None = None) -> None:
        """Blocking variant of run() for callers without an event loop."""
        anyio.run(functools.partial(self.run, spec, cancel=cancel))

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        if spec.cwd is not None:
            kwargs["cwd"] = spec.cwd

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if spec.new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        return kwargs

    def _start_pumps(
        self,
        process: asyncio.subprocess.Process,
        spec: ProcessSpec,
        stdout_plan: _StreamPlan,
        stderr_plan: _StreamPlan,
    ) -> list[asyncio.Task[DeputyError | None]]:
        """Create the stdin feeder and one drain task per attached pipe.

        The stdout pump is listed before the stderr pump so that a stdout
        failure wins over a stderr failure.
        """
        pumps: list[asyncio.Task[DeputyError | None]] = []

        if spec.stdin_bytes is not None and process.stdin is not None:
            pumps.append(asyncio.create_task(_feed_stdin(process.stdin, spec.stdin_bytes)))

        for plan, reader in (
            (stdout_plan, process.stdout),
            (stderr_plan, process.stderr),
        ):
            if plan.piped and reader is not None:
                pumps.append(asyncio.create_task(_pump(plan, reader, spec.path)))

        return pumps

    async def _supervise(
        self,
        process: asyncio.subprocess.Process,
        pumps: list[asyncio.Task[DeputyError | None]],
        path: str,
        cancel: CancelSignal | None,
    ) -> DeputyError | None:
        """Race completion against the timeout and the cancel signal.

        Returns:
            The outcome of the run, or CommandTimeoutError if the timer or the
            cancel signal fired first
        """
        wait_task = asyncio.create_task(_wait(process, pumps, path))
        watchers: set[asyncio.Future[Any]] = set()
        if cancel is not None:
            watchers.add(asyncio.ensure_future(cancel.wait()))

        try:
            done, _ = await asyncio.wait(
                {wait_task, *watchers},
                timeout=self.timeout or None,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            logger.debug(f"Run cancelled, killing subprocess pid={process.pid}")
            _kill(process)
            _detach(wait_task)
            raise
        finally:
            for watcher in watchers:
                watcher.cancel()

        if wait_task in done:
            return wait_task.result()

        reason = "cancelled" if done else f"timed out after {self.timeout}s"
        logger.info(f"Subprocess {reason}, killing pid={process.pid} argv={path}")
        _kill(process)
        _detach(wait_task)
        return CommandTimeoutError(path)


def _plan_stream(
    name: str,
    destination: IO[bytes] | None,
    callback: LineSink | None,
    capture: bytearray | None,
) -> _StreamPlan:
    """Decide how one output stream is wired for a run.

    - nothing to capture or stream: discard when there is no destination,
      hand the destination to the OS when it has a real file descriptor
    - capture and/or callback: attach a pipe; the pump writes every chunk to
      the destination and the capture buffer and feeds lines to the callback
    """
    destination = _binary_destination(name, destination)
    if callback is None and capture is None:
        if destination is None:
            return _StreamPlan(name, asyncio.subprocess.DEVNULL)
        if _has_fileno(destination):
            _flush(destination)
            return _StreamPlan(name, destination)

    return _StreamPlan(
        name,
        asyncio.subprocess.PIPE,
        tee=_Tee(destination, capture),
        callback=callback,
    )


def _binary_destination(name: str, stream: Any) -> IO[bytes] | None:
    """Return a byte-oriented view of a caller destination.

    Text streams are unwrapped to their underlying binary buffer; a text stream
    without one (io.StringIO) cannot take raw child output.
    """
    if stream is None or not isinstance(stream, io.TextIOBase):
        return stream
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        raise TypeError(
            f"{name} destination must accept bytes, got text stream {stream!r}"
        )
    stream.flush()
    return buffer


def _flush(stream: IO[bytes]) -> None:
    flush = getattr(stream, "flush", None)
    if callable(flush):
        flush()


def _has_fileno(stream: IO[bytes]) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


async def _pump(
    plan: _StreamPlan,
    reader: asyncio.StreamReader,
    path: str,
) -> DeputyError | None:
    """Drain one pipe until EOF.

    With a callback the pipe is scanned line by line, otherwise it is copied
    in chunks. After a failure the rest of the pipe is discarded so the child
    never blocks on a full pipe.

    Returns:
        DrainError if reading or delivering the output failed, else None
    """
    try:
        if plan.callback is not None:
            await _scan_lines(reader, plan.tee, plan.callback)
        else:
            await _copy_chunks(reader, plan.tee)
    except Exception as e:
        logger.debug(f"Draining {plan.name} of {path} failed: {e!r}")
        await _discard(reader, plan.name)
        return DrainError(plan.name, e, path=path)
    return None


async def _scan_lines(
    reader: asyncio.StreamReader,
    tee: _Tee | None,
    callback: LineSink,
) -> None:
    while True:
        line = await reader.readline()
        if not line:
            return
        if tee is not None:
            tee.write(line)
        callback(_strip_eol(line))


async def _copy_chunks(reader: asyncio.StreamReader, tee: _Tee | None) -> None:
    while True:
        chunk = await reader.read(_CHUNK_SIZE)
        if not chunk:
            return
        if tee is not None:
            tee.write(chunk)


async def _discard(reader: asyncio.StreamReader, name: str) -> None:
    try:
        while await reader.read(_CHUNK_SIZE):
            pass
    except Exception as e:
        logger.debug(f"Discarding rest of {name} failed: {e!r}")


def _strip_eol(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


async def _feed_stdin(stdin: asyncio.StreamWriter, data: bytes) -> None:
    """Write stdin_bytes and close stdin; a child that exits early is not an error."""
    try:
        stdin.write(data)
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Subprocess closed stdin before reading all input")
    finally:
        stdin.close()


async def _wait(
    process: asyncio.subprocess.Process,
    pumps: list[asyncio.Task[DeputyError | None]],
    path: str,
) -> DeputyError | None:
    """Wait for all pumps, then reap the process.

    The pumps must finish first: the pipes are closed when the process is
    reaped and unread buffered output would be lost.
    """
    pump_errors = await asyncio.gather(*pumps)
    returncode = await process.wait()

    logger.debug(
        f"Subprocess completed pid={process.pid} "
        f"returncode={returncode}"
    )

    exit_error = ExitError(returncode, path=path) if returncode != 0 else None
    return _first_error(exit_error, *pump_errors)


def _first_error(*errors: DeputyError | None) -> DeputyError | None:
    for error in errors:
        if error is not None:
            return error
    return None


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the subprocess. Failures are logged and ignored."""
    if process.returncode is not None:
        return
    try:
        process.kill()
        logger.debug(f"Killed subprocess pid={process.pid}")
    except ProcessLookupError:
        logger.debug(f"Subprocess already exited pid={process.pid}")
    except OSError as e:
        logger.debug(f"Error killing subprocess pid={process.pid}: {e}")


def _detach(task: asyncio.Task[Any]) -> None:
    """Let a task finish in the background without awaiting it."""
    _background_tasks.add(task)
    task.add_done_callback(_on_background_done)


def _on_background_done(task: asyncio.Task[Any]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Background wait task failed: {exc!r}")
