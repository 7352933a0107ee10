"""proc-deputy - 带超时、错误输出捕获和逐行日志的子进程执行。

环境变量:
    DEPUTY_TIMEOUT: 命令超时时间（秒，默认不限时）
    DEPUTY_ERRORS: 失败时拼接到错误信息的输出 (none/stdout/stderr/both)
    DEPUTY_LOG_STDOUT / DEPUTY_LOG_STDERR: 逐行写入日志 (默认 false)

用法:
    python -m proc_deputy --timeout 30 --errors stderr -- make test
"""

__version__ = "0.1.0"

from .app import main
from .runtime import (
    CommandTimeoutError,
    Deputy,
    DeputyError,
    DrainError,
    ErrorSource,
    ExitError,
    ProcessSpec,
    is_timeout,
    logging_sink,
)

__all__ = [
    "__version__",
    "main",
    "CommandTimeoutError",
    "Deputy",
    "DeputyError",
    "DrainError",
    "ErrorSource",
    "ExitError",
    "ProcessSpec",
    "is_timeout",
    "logging_sink",
]
