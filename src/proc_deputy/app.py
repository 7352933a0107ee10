"""proc-deputy 命令行入口。

用法:
    python -m proc_deputy [--timeout S] [--errors MODE] [--log-stdout] [--log-stderr] -- COMMAND [ARGS...]

退出码:
    0       命令成功
    N       命令的退出码（被信号杀死时为 128 + 信号值）
    124     命令超时
    126     命令不可执行
    127     命令不存在
    128+N   proc-deputy 自身收到信号 N 后取消了命令
    2       参数错误
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .config import Config, get_config
from .runtime import DeputyError, ErrorSource, ExitError, ProcessSpec, is_timeout
from .signal_manager import SignalManager

__all__ = ["main", "parse_args", "run_command", "setup_logging"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="proc-deputy",
        description="Run a command with a timeout, error capture and output logging.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Kill the command after this many seconds (0 = no limit).",
    )
    parser.add_argument(
        "--errors",
        choices=[mode.value for mode in ErrorSource],
        default=None,
        help="Append this output to the error message when the command fails.",
    )
    parser.add_argument("--log-stdout", action="store_true", help="Log every stdout line.")
    parser.add_argument("--log-stderr", action="store_true", help="Log every stderr line.")
    parser.add_argument("--cwd", type=Path, default=None, help="Working directory.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "cmd",
        nargs=argparse.REMAINDER,
        help="Command to execute; prefix with '--' before the actual command.",
    )
    return parser.parse_args(argv)


def _merge_config(config: Config, args: argparse.Namespace) -> Config:
    """命令行参数覆盖环境变量配置。"""
    overrides: dict[str, object] = {}
    if args.timeout is not None:
        overrides["timeout"] = max(args.timeout, 0.0)
    if args.errors is not None:
        overrides["errors"] = ErrorSource.from_string(args.errors)
    if args.log_stdout:
        overrides["log_stdout"] = True
    if args.log_stderr:
        overrides["log_stderr"] = True
    return replace(config, **overrides)


def setup_logging(config: Config, verbose: bool = False) -> None:
    """配置日志输出。

    LOG_DEBUG 模式输出到临时文件，否则输出到 stderr。
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if verbose else logging.INFO

    # 第三方库保持 WARNING，只对 proc_deputy 命名空间启用详细日志
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("proc_deputy").setLevel(log_level)


def _force_exit(signal_manager: SignalManager) -> None:
    """双击信号：不再等待清理，立即退出。"""
    signum = int(signal_manager.received or signal.SIGINT)
    logger.warning(f"Force exit requested, terminating with exit code {128 + signum}")
    os._exit(128 + signum)


async def run_command(config: Config, spec: ProcessSpec) -> int:
    """运行命令并返回进程退出码。

    SIGINT/SIGTERM 会取消命令而不是直接杀死 proc-deputy。
    双击窗口内再次收到信号时立即退出（128 + 信号值）。
    """
    deputy = config.to_deputy()
    signal_manager = SignalManager(on_force_exit=lambda: _force_exit(signal_manager))
    await signal_manager.start()

    try:
        await deputy.run(spec, cancel=signal_manager.cancel_event)
        return 0
    except FileNotFoundError as e:
        print(f"proc-deputy: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except PermissionError as e:
        print(f"proc-deputy: {e}", file=sys.stderr)
        return EXIT_NOT_EXECUTABLE
    except DeputyError as e:
        print(f"proc-deputy: {e}", file=sys.stderr)
        if is_timeout(e):
            if signal_manager.received is not None:
                return 128 + int(signal_manager.received)
            return EXIT_TIMEOUT
        if isinstance(e, ExitError):
            return e.returncode if e.returncode > 0 else 128 - e.returncode
        return 1
    finally:
        await signal_manager.stop()


def main(argv: list[str] | None = None) -> int:
    """主入口点。"""
    args = parse_args(argv)
    command = list(args.cmd)
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        print("proc-deputy: missing command after '--'", file=sys.stderr)
        return EXIT_USAGE

    config = _merge_config(get_config(), args)
    setup_logging(config, verbose=args.verbose)
    logger.debug(f"Running {command[0]} with {config}")

    spec = ProcessSpec(
        argv=command,
        cwd=args.cwd,
        stdout=sys.stdout.buffer,
        stderr=sys.stderr.buffer,
        new_session=True,
    )
    return asyncio.run(run_command(config, spec))


if __name__ == "__main__":
    raise SystemExit(main())
