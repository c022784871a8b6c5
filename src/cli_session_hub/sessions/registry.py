"""会话注册表模块。

管理会话 ID 到 CLI 进程的映射，并提供控制 API：
- start / stop / send_message / cancel / get_status / is_running

并发模型：
- 读写锁保护映射：状态查询可以并发，start/stop/send 及流式循环的状态更新互斥
- 每个会话一个流式循环任务，负责读取 stdout 直到进程结束
- 移除会话有两条路径（stop() 与流式循环的 EOF 处理），都以
  "handle 仍属于该会话" 为前提，谁移除了条目谁负责推送 stopped
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ..config import get_config
from ..errors import ExecutableNotFound, InvalidInput, ProcessNotRunning, SessionError
from ..notifications import EventSink, StatusPayload
from ..runtime.cancellation import CancellationController
from ..runtime.process_runner import ProcessHandle, ProcessRunner, ProcessSpec
from ..types import SessionStatus
from .streaming import StreamingLoop

__all__ = ["RWLock", "SessionEntry", "SessionRegistry"]

logger = logging.getLogger(__name__)


class RWLock:
    """asyncio 读写锁（写优先）。

    有写者等待时，新的读者会排队，避免写者饥饿。
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class SessionEntry:
    """注册表中的一个活动会话。

    Attributes:
        session_id: 会话 ID
        handle: 独占的进程句柄
        status: 当前状态
        working_dir: 进程工作目录
        task: 流式循环任务
        created_at: 创建时间
    """

    session_id: str
    handle: ProcessHandle
    status: SessionStatus
    working_dir: Path
    task: asyncio.Task | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        return (
            f"SessionEntry(id={self.session_id}, "
            f"pid={self.handle.pid}, "
            f"status={self.status.value}, "
            f"elapsed={elapsed:.1f}s)"
        )


class SessionRegistry:
    """会话注册表。

    单一服务对象，以引用方式注入给所有调用方（没有进程级单例）。

    Example:
        ```python
        channel = EventChannel(sink)
        async with SessionRegistry(channel) as registry:
            await registry.start("s1", Path("/workspace"))
            await registry.send_message("s1", "hello")
            status = await registry.get_status("s1")
        # 退出时所有会话进程都会被终止
        ```
    """

    def __init__(
        self,
        sink: EventSink,
        *,
        executable: str | None = None,
        cli_args: Sequence[str] | None = None,
        runner: ProcessRunner | None = None,
        canceller: CancellationController | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        """初始化会话注册表。

        Args:
            sink: 事件接收方（应当是非阻塞的，通常为 EventChannel）
            executable: CLI 可执行文件（默认从配置读取）
            cli_args: CLI 参数（默认从配置读取）
            runner: 进程启动器
            canceller: 中断信号投递器
            which: 可执行文件解析函数
        """
        config = get_config()
        self._sink = sink
        self._executable = executable or config.executable
        self._cli_args = tuple(cli_args) if cli_args is not None else config.cli_args
        self._runner = runner or ProcessRunner(kill_timeout=config.kill_timeout)
        self._canceller = canceller or CancellationController()
        self._which = which

        self._entries: dict[str, SessionEntry] = {}
        self._lock = RWLock()

    async def __aenter__(self) -> "SessionRegistry":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # =========================================================================
    # 控制 API
    # =========================================================================

    async def start(
        self,
        session_id: str,
        working_dir: Path | str,
        resume_context: str | None = None,
    ) -> None:
        """为会话启动 CLI 进程。

        幂等：会话已存在时直接返回，不会启动第二个进程。

        Args:
            session_id: 会话 ID
            working_dir: 进程工作目录
            resume_context: 启动后立即写入 stdin 的恢复上下文（仅一次）

        Raises:
            InvalidInput: 工作目录不存在
            ExecutableNotFound: CLI 不在 PATH 中
            SpawnFailure: 进程启动失败
            WriteFailure: 恢复上下文写入失败
        """
        async with self._lock.read():
            if session_id in self._entries:
                return

        cwd = Path(working_dir)
        if not cwd.is_dir():
            raise InvalidInput("Directory not found", str(cwd))

        async with self._lock.write():
            # 等待写锁期间可能已有其他调用者启动了该会话
            if session_id in self._entries:
                return

            self._push_status(session_id, SessionStatus.STARTING)

            try:
                handle = await self._spawn(cwd, resume_context)
            except SessionError as e:
                logger.warning(f"Failed to start session {session_id}: {e}")
                self._push_status(session_id, SessionStatus.ERROR, error=e.message)
                raise

            entry = SessionEntry(
                session_id=session_id,
                handle=handle,
                status=SessionStatus.READY,
                working_dir=cwd,
            )
            self._entries[session_id] = entry
            self._push_status(session_id, SessionStatus.READY)

            loop = StreamingLoop(session_id, handle, host=self, sink=self._sink)
            entry.task = asyncio.create_task(loop.run(), name=f"stream-{session_id}")

        logger.info(f"Started session: {entry}")

    async def stop(self, session_id: str) -> None:
        """停止会话并强制终止进程。会话不存在时什么也不做。"""
        async with self._lock.write():
            entry = self._entries.pop(session_id, None)

        if entry is None:
            return

        await entry.handle.kill()

        # 让流式循环处理完已读取的输出，保证 stopped 是最后一个状态
        if entry.task is not None and entry.task is not asyncio.current_task():
            await asyncio.wait({entry.task}, timeout=1.0)

        logger.info(f"Stopped session: {entry}")

        async with self._lock.read():
            # 等待期间同一 ID 已被重新启动，stopped 不再描述当前会话
            if session_id in self._entries:
                logger.info(f"Session {session_id} restarted during stop, not reporting stopped")
                return
            self._push_status(session_id, SessionStatus.STOPPED)

    async def send_message(self, session_id: str, content: str) -> None:
        """向会话进程写入一行输入并标记为 busy。

        写入和状态更新在同一个互斥区内完成，串行化并发发送者。

        Raises:
            InvalidInput: 消息内容为空
            ProcessNotRunning: 会话不存在
            WriteFailure: stdin 不可用或写入失败
        """
        if not content.strip():
            raise InvalidInput("Message content cannot be empty")

        async with self._lock.write():
            entry = self._entries.get(session_id)
            if entry is None:
                raise ProcessNotRunning(session_id)

            await entry.handle.write_line(content)

            entry.status = SessionStatus.BUSY
            self._push_status(session_id, SessionStatus.BUSY)

    async def cancel(self, session_id: str) -> bool:
        """尽力中断会话的当前响应。

        从不向调用方抛出异常。

        Returns:
            中断信号是否真正送达
        """
        async with self._lock.read():
            entry = self._entries.get(session_id)
            pid = entry.handle.pid if entry and entry.handle.is_alive else None

        if pid is None:
            logger.debug(f"Cancel requested for inactive session {session_id}")
            return False

        try:
            return self._canceller.interrupt(pid)
        except Exception as e:
            logger.warning(f"Error cancelling session {session_id}: {e}")
            return False

    async def get_status(self, session_id: str) -> SessionStatus:
        """获取会话状态，不存在时返回 stopped。"""
        async with self._lock.read():
            entry = self._entries.get(session_id)
            return entry.status if entry else SessionStatus.STOPPED

    async def is_running(self, session_id: str) -> bool:
        """会话是否有活动进程。"""
        async with self._lock.read():
            return session_id in self._entries

    async def list_sessions(self) -> dict[str, SessionStatus]:
        """列出所有活动会话及其状态。"""
        async with self._lock.read():
            return {sid: entry.status for sid, entry in self._entries.items()}

    # =========================================================================
    # 信号处理辅助（同步，由调用方保证在事件循环线程中调用）
    # =========================================================================

    def has_busy_sessions(self) -> bool:
        """是否有正在响应的会话。"""
        return any(
            entry.status == SessionStatus.BUSY for entry in self._entries.values()
        )

    def cancel_all(self) -> int:
        """中断所有 busy 会话。

        Returns:
            中断信号送达的会话数量
        """
        delivered = 0
        for entry in list(self._entries.values()):
            if entry.status != SessionStatus.BUSY or not entry.handle.is_alive:
                continue
            if self._canceller.interrupt(entry.handle.pid):
                delivered += 1

        if delivered > 0:
            logger.info(f"Interrupted {delivered} busy session(s)")

        return delivered

    async def close(self) -> None:
        """停止所有会话（进程全部终止）。"""
        async with self._lock.read():
            session_ids = list(self._entries)

        if session_ids:
            logger.info(f"Closing registry, stopping {len(session_ids)} session(s)")
            await asyncio.gather(
                *(self.stop(session_id) for session_id in session_ids),
                return_exceptions=True,
            )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    # =========================================================================
    # SessionHost（供流式循环调用）
    # =========================================================================

    async def mark_ready(self, session_id: str, handle: ProcessHandle) -> bool:
        async with self._lock.write():
            entry = self._entries.get(session_id)
            if entry is None or entry.handle is not handle:
                return False
            entry.status = SessionStatus.READY
            return True

    async def release(self, session_id: str, handle: ProcessHandle) -> bool:
        # 移除条目之后、调用方推送 stopped 之前不能有挂起点
        await handle.kill()

        async with self._lock.write():
            entry = self._entries.get(session_id)
            released = entry is not None and entry.handle is handle
            if released:
                del self._entries[session_id]

        return released

    # =========================================================================
    # 内部方法
    # =========================================================================

    async def _spawn(self, cwd: Path, resume_context: str | None) -> ProcessHandle:
        executable = self._which(self._executable)
        if executable is None:
            raise ExecutableNotFound(self._executable)

        handle = await self._runner.spawn(
            ProcessSpec(argv=[executable, *self._cli_args], cwd=cwd)
        )

        if resume_context is not None:
            try:
                await handle.write_line(resume_context)
            except SessionError:
                await handle.kill()
                raise

        return handle

    def _push_status(
        self,
        session_id: str,
        status: SessionStatus,
        error: str | None = None,
    ) -> None:
        self._sink.push(StatusPayload(session_id=session_id, status=status, error=error))
