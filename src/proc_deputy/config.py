"""proc-deputy 环境变量配置管理。

环境变量:
    DEPUTY_TIMEOUT: 命令超时时间（秒）
        - 空/未设置/0 = 不限时 (默认)
        - 无效值或负数按 0 处理

    DEPUTY_ERRORS: 失败时将哪路输出拼接到错误信息
        - none = 不拼接 (默认)
        - stdout / stderr = 拼接对应输出
        - both = 两路输出写入同一缓冲区后拼接
        - 忽略大小写，无效值按 none 处理

    DEPUTY_LOG_STDOUT: 是否将 stdout 逐行写入日志
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    DEPUTY_LOG_STDERR: 是否将 stderr 逐行写入日志
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    DEPUTY_MAX_LINE_BYTES: 逐行回调允许的最大行长度（字节）
        - 默认 65536
        - 限制在 1 KiB - 16 MiB 范围

    DEPUTY_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (DEBUG 日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .runtime import Deputy, ErrorSource, logging_sink
from .runtime.process_runner import DEFAULT_MAX_LINE_BYTES

__all__ = ["Config", "load_config", "get_config", "reload_config"]

MIN_LINE_BYTES = 1024
MAX_LINE_BYTES = 16 * 1024 * 1024


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None) -> float:
    """解析超时时间环境变量，无效值返回 0（不限时）。"""
    if not value:
        return 0.0
    try:
        timeout = float(value)
    except ValueError:
        return 0.0
    return timeout if timeout > 0 else 0.0


def _parse_errors(value: str | None) -> ErrorSource:
    """解析错误来源环境变量。"""
    if not value:
        return ErrorSource.NONE
    return ErrorSource.from_string(value)


def _parse_max_line_bytes(value: str | None) -> int:
    """解析最大行长度环境变量。"""
    if not value:
        return DEFAULT_MAX_LINE_BYTES
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_MAX_LINE_BYTES
    return max(MIN_LINE_BYTES, min(size, MAX_LINE_BYTES))


@dataclass
class Config:
    """proc-deputy 配置。

    Attributes:
        timeout: 命令超时时间（秒），0 表示不限时
        errors: 失败时拼接到错误信息的输出来源
        log_stdout: 是否将 stdout 逐行写入日志
        log_stderr: 是否将 stderr 逐行写入日志
        max_line_bytes: 逐行回调允许的最大行长度
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    timeout: float = 0.0
    errors: ErrorSource = ErrorSource.NONE
    log_stdout: bool = False
    log_stderr: bool = False
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    log_debug: bool = False
    log_file: str | None = None

    def to_deputy(self, output_logger: logging.Logger | None = None) -> Deputy:
        """根据配置创建 Deputy。

        Args:
            output_logger: 接收子进程输出行的 logger（默认 "proc_deputy.output"）

        Returns:
            配置好的 Deputy 实例
        """
        output_logger = output_logger or logging.getLogger("proc_deputy.output")
        return Deputy(
            timeout=self.timeout,
            errors=self.errors,
            stdout_log=logging_sink(output_logger) if self.log_stdout else None,
            stderr_log=(
                logging_sink(output_logger, prefix="[stderr] ") if self.log_stderr else None
            ),
            max_line_bytes=self.max_line_bytes,
        )

    def __repr__(self) -> str:
        return (
            f"Config(timeout={self.timeout}, "
            f"errors={self.errors.value}, "
            f"log_stdout={self.log_stdout}, "
            f"log_stderr={self.log_stderr}, "
            f"max_line_bytes={self.max_line_bytes}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "proc-deputy"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"deputy_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("DEPUTY_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        timeout=_parse_timeout(os.environ.get("DEPUTY_TIMEOUT")),
        errors=_parse_errors(os.environ.get("DEPUTY_ERRORS")),
        log_stdout=_parse_bool(os.environ.get("DEPUTY_LOG_STDOUT"), default=False),
        log_stderr=_parse_bool(os.environ.get("DEPUTY_LOG_STDERR"), default=False),
        max_line_bytes=_parse_max_line_bytes(os.environ.get("DEPUTY_MAX_LINE_BYTES")),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
