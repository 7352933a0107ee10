"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from proc_deputy.runtime import ProcessSpec  # noqa: E402

# 子进程脚本模板：先睡眠，再写 stdout/stderr，最后以指定退出码退出
_CHILD_TEMPLATE = """\
import sys, time
time.sleep({sleep!r})
sys.stdout.buffer.write({stdout!r})
sys.stdout.flush()
sys.stderr.buffer.write({stderr!r})
sys.stderr.flush()
sys.exit({exit_code!r})
"""


def python_argv(code: str) -> list[str]:
    """用当前解释器执行一段脚本的 argv。"""
    return [sys.executable, "-c", textwrap.dedent(code)]


@pytest.fixture
def make_command(tmp_path: Path) -> Callable[..., ProcessSpec]:
    """创建一个输出固定内容的子进程 ProcessSpec。

    Args（返回的工厂函数）:
        stdout: 写入 stdout 的文本（非空时末尾追加换行）
        stderr: 写入 stderr 的文本（非空时末尾追加换行）
        exit_code: 退出码
        sleep: 输出前睡眠的秒数
        stdout_to: stdout 目标（ProcessSpec.stdout）
        stderr_to: stderr 目标（ProcessSpec.stderr）
        **kwargs: 透传给 ProcessSpec
    """

    def make(
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        sleep: float = 0.0,
        *,
        stdout_to=None,
        stderr_to=None,
        **kwargs,
    ) -> ProcessSpec:
        code = _CHILD_TEMPLATE.format(
            sleep=sleep,
            stdout=(stdout + "\n").encode() if stdout else b"",
            stderr=(stderr + "\n").encode() if stderr else b"",
            exit_code=exit_code,
        )
        kwargs.setdefault("cwd", tmp_path)
        return ProcessSpec(
            argv=python_argv(code),
            stdout=stdout_to,
            stderr=stderr_to,
            **kwargs,
        )

    return make


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[..., ProcessSpec]:
    """创建执行任意 Python 脚本的 ProcessSpec。"""

    def make(code: str, **kwargs) -> ProcessSpec:
        kwargs.setdefault("cwd", tmp_path)
        return ProcessSpec(argv=python_argv(code), **kwargs)

    return make
