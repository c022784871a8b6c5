"""会话共享类型定义。"""

from __future__ import annotations

from enum import Enum

__all__ = ["SessionStatus"]


class SessionStatus(str, Enum):
    """会话状态机。

    starting -> ready -> busy -> ready ... -> stopped
    注册表中不存在的会话等同于 stopped。
    """

    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    STOPPED = "stopped"
    ERROR = "error"
