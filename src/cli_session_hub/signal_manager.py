"""信号管理模块。

实现信号隔离策略，将 OS 信号转换为会话级别的操作：
- SIGINT: 中断正在响应的会话（而不是直接退出进程）
- SIGTERM: 优雅退出（停止所有会话 + 清理 + 退出）

会话子进程运行在独立的进程组中，不会直接收到终端的 SIGINT，
由本模块决定是否通过 SessionRegistry.cancel_all() 转发中断。

支持的配置：
- CSH_SIGINT_MODE: cancel | exit | cancel_then_exit
- CSH_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import SigintMode, get_config
from .sessions.registry import SessionRegistry

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        registry = SessionRegistry(channel)
        signal_manager = SignalManager(registry)

        await signal_manager.start()
        try:
            await signal_manager.wait_for_shutdown()
        finally:
            await signal_manager.stop()
            await registry.close()
        ```

    Attributes:
        registry: 会话注册表
        sigint_mode: SIGINT 处理模式
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        registry: SessionRegistry,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            registry: 会话注册表
            sigint_mode: SIGINT 处理模式（默认从配置读取）
            double_tap_window: 双击退出窗口时间（默认从配置读取）
            on_shutdown: 关闭时的回调函数
        """
        self.registry = registry

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        """是否已请求关闭。"""
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """启动信号监听（必须在 asyncio 事件循环中调用）。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (mode={self.sigint_mode.value}, "
                f"double_tap_window={self.double_tap_window}s)"
            )
        else:
            signal.signal(signal.SIGINT, lambda sig, frame: self._handle_sigint())
            logger.debug(
                f"SIGINT handler installed on Windows (mode={self.sigint_mode.value})"
            )

    async def stop(self) -> None:
        """停止信号监听，恢复默认处理器。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32":
            signal.signal(signal.SIGINT, signal.default_int_handler)

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        - 有 busy 会话：中断这些会话的当前响应
        - 没有 busy 会话或模式为 EXIT：请求关闭
        - 在双击窗口内再次收到 SIGINT：强制退出
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL:
            if self.registry.has_busy_sessions():
                count = self.registry.cancel_all()
                logger.info(f"SIGINT received (mode=cancel), interrupted {count} session(s)")
            else:
                logger.info(
                    "SIGINT received (mode=cancel), no busy sessions, requesting shutdown"
                )
                self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            if self.registry.has_busy_sessions():
                count = self.registry.cancel_all()
                logger.info(
                    f"SIGINT received (mode=cancel_then_exit), interrupted {count} session(s). "
                    f"Press Ctrl+C again within {self.double_tap_window}s to exit."
                )
                # 标记为已请求关闭，但不触发实际关闭
                self._shutdown_requested = True
            else:
                logger.info(
                    "SIGINT received (mode=cancel_then_exit), no busy sessions, requesting shutdown"
                )
                self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM 信号：始终进入优雅退出流程。"""
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        self._notify_shutdown()

    def _force_shutdown(self) -> None:
        """强制退出。

        设置 force_exit 标志并触发 shutdown event，实际退出由 run_server() 在清理完成后执行。
        """
        self._force_exit = True
        self._shutdown_requested = True
        self._notify_shutdown()

    def _notify_shutdown(self) -> None:
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._request_shutdown()
