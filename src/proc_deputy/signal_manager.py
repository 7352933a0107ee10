"""信号管理模块。

将 OS 信号转换为运行级别的取消操作：
- SIGINT: 设置取消信号，Deputy 杀死子进程并返回超时类错误
- SIGTERM: 同上

子进程以独立会话启动时，终端的 Ctrl+C 只会到达 proc-deputy，
由它负责终止子进程，保证每次运行都得到一个完整的结果。
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        async def main():
            signal_manager = SignalManager()
            await signal_manager.start()
            try:
                await deputy.run(spec, cancel=signal_manager.cancel_event)
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        cancel_event: 收到信号后被设置的取消信号
        double_tap_window: 双击强制退出的时间窗口（秒）
    """

    def __init__(
        self,
        double_tap_window: float = 1.0,
        on_force_exit: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            double_tap_window: 在此时间窗口内第二次收到信号时触发强制退出
            on_force_exit: 强制退出时的回调函数
        """
        self.double_tap_window = double_tap_window
        self._on_force_exit = on_force_exit

        self.cancel_event: asyncio.Event = asyncio.Event()
        self._last_signal_time: float = 0.0
        self._received: Optional[signal.Signals] = None
        self._force_exit: bool = False
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_cancel_requested(self) -> bool:
        """是否已请求取消。"""
        return self.cancel_event.is_set()

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击）。"""
        return self._force_exit

    @property
    def received(self) -> Optional[signal.Signals]:
        """最后收到的信号。"""
        return self._received

    async def start(self) -> None:
        """启动信号监听。

        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_signal, signal.SIGINT)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_signal, signal.SIGTERM)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: 信号处理器在主线程执行，通过 call_soon_threadsafe 回到事件循环
            loop = self._loop
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: loop.call_soon_threadsafe(self._handle_signal, signal.SIGINT),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """停止信号监听，恢复原始信号处理器。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    def _handle_signal(self, signum: signal.Signals) -> None:
        """处理 SIGINT/SIGTERM。

        - 第一次：设置取消信号，由 Deputy 终止子进程
        - 双击窗口内再次收到：强制退出
        """
        current_time = time.time()
        time_since_last = current_time - self._last_signal_time
        self._last_signal_time = current_time
        self._received = signal.Signals(signum)

        if self.cancel_event.is_set():
            if time_since_last < self.double_tap_window:
                logger.warning(f"Double {self._received.name} detected, forcing exit")
                self._force_exit = True
                if self._on_force_exit:
                    try:
                        self._on_force_exit()
                    except Exception as e:
                        logger.warning(f"Error in force exit callback: {e}")
            return

        logger.info(f"{self._received.name} received, cancelling command")
        self.cancel_event.set()
