"""事件通知模块。

定义发往外部观察者（sink）的三种负载，以及一个非阻塞的有界通道：
- 生产者（流式循环、注册表）只调用 push()，永远不会等待消费者
- 通道满时丢弃新事件并记录警告，不向子进程的 stdout 传播背压
- 单一 FIFO 队列保证同一会话内的事件顺序

投递是尽力而为的（best-effort）。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from typing import Any, Literal, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .types import SessionStatus

__all__ = [
    "OUTPUT_EVENT",
    "STATUS_EVENT",
    "ERROR_EVENT",
    "OutputPayload",
    "StatusPayload",
    "ErrorPayload",
    "Notification",
    "EventSink",
    "EventChannel",
    "BufferedEventSink",
]

logger = logging.getLogger(__name__)

# 事件名称（与前端约定一致）
OUTPUT_EVENT = "claude_output"
STATUS_EVENT = "claude_status"
ERROR_EVENT = "claude_error"


class _PayloadBase(BaseModel):
    """负载基类，序列化时使用 camelCase。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    session_id: str
    timestamp: float = Field(default_factory=time.time)

    def to_wire(self) -> dict[str, Any]:
        """转换为发送给前端的字典。"""
        return self.model_dump(by_alias=True, mode="json")


class OutputPayload(_PayloadBase):
    """文本输出。

    chunk 只包含新片段；is_complete=True 时 chunk 为空，表示消息结束。
    """

    event: Literal["claude_output"] = OUTPUT_EVENT
    message_id: str
    chunk: str = ""
    is_complete: bool = False


class StatusPayload(_PayloadBase):
    """会话状态变化。"""

    event: Literal["claude_status"] = STATUS_EVENT
    status: SessionStatus
    error: str | None = None


class ErrorPayload(_PayloadBase):
    """CLI 报告的错误。"""

    event: Literal["claude_error"] = ERROR_EVENT
    error: str
    recoverable: bool = True


Notification = Union[OutputPayload, StatusPayload, ErrorPayload]


@runtime_checkable
class EventSink(Protocol):
    """事件接收方协议。

    push() 必须是非阻塞的；需要异步消费时请用 EventChannel 包装。
    """

    def push(self, payload: Notification) -> Any:
        ...


class EventChannel:
    """有界、非阻塞的事件通道。

    Example:
        channel = EventChannel(BufferedEventSink(), maxsize=5000)
        channel.push(StatusPayload(session_id="s1", status=SessionStatus.READY))
        ...
        await channel.close()  # 投递剩余事件后停止
    """

    def __init__(self, sink: EventSink, maxsize: int = 5000) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """启动投递任务（必须在事件循环中调用）。"""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self._dispatch(), name="event-channel"
            )

    def push(self, payload: Notification) -> bool:
        """投递事件，永不阻塞。

        Returns:
            是否成功入队
        """
        if self._closed:
            return False
        if self._task is None:
            try:
                self.start()
            except RuntimeError:
                # 没有运行中的事件循环，先入队，等 start() 后再投递
                pass
        try:
            self._queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Event channel full, dropped {payload.event} for session {payload.session_id}"
            )
            return False

    async def flush(self) -> None:
        """等待当前排队的事件全部投递。"""
        if self._task is None or self._task.done():
            return
        await self._queue.join()

    async def close(self) -> None:
        """停止接收新事件，投递完队列中的事件后结束。"""
        self._closed = True
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.join()
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _dispatch(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                result = self._sink.push(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Event sink failed on {payload.event}: {e}")
            finally:
                self._queue.task_done()


class BufferedEventSink:
    """按会话缓存最近事件的 sink。

    供 MCP 控制面的 session_events 工具拉取事件。
    """

    def __init__(self, max_per_session: int = 1000) -> None:
        self._max_per_session = max_per_session
        self._buffers: dict[str, deque[Notification]] = {}

    def push(self, payload: Notification) -> None:
        buffer = self._buffers.get(payload.session_id)
        if buffer is None:
            buffer = deque(maxlen=self._max_per_session)
            self._buffers[payload.session_id] = buffer
        buffer.append(payload)

    def peek(self, session_id: str) -> list[Notification]:
        """查看缓存的事件（不清空）。"""
        return list(self._buffers.get(session_id, ()))

    def drain(self, session_id: str) -> list[Notification]:
        """取出并清空会话的缓存事件。"""
        buffer = self._buffers.pop(session_id, None)
        return list(buffer) if buffer else []

    def __len__(self) -> int:
        return sum(len(buffer) for buffer in self._buffers.values())
