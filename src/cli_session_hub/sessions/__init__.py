"""会话管理模块。

提供会话注册表、per-session 流式循环和恢复上下文构建。
"""

from __future__ import annotations

from .registry import RWLock, SessionEntry, SessionRegistry
from .resume import build_resume_context
from .streaming import MessageAccumulator, StreamingLoop

__all__ = [
    "MessageAccumulator",
    "RWLock",
    "SessionEntry",
    "SessionRegistry",
    "StreamingLoop",
    "build_resume_context",
]
