"""会话管理异常类。

控制 API 的所有失败都以 SessionError 子类的形式同步返回给调用方；
ParseFailure 只在流式循环内部被记录并跳过。
"""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    "ErrorCode",
    "SessionError",
    "ExecutableNotFound",
    "SpawnFailure",
    "WriteFailure",
    "ParseFailure",
    "ProcessNotRunning",
    "InvalidInput",
]


class ErrorCode(str, Enum):
    """错误码（序列化给上层时使用）。"""

    CLI_NOT_FOUND = "CLI_NOT_FOUND"
    SPAWN_FAILED = "SPAWN_FAILED"
    WRITE_FAILED = "WRITE_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    PROCESS_NOT_RUNNING = "PROCESS_NOT_RUNNING"
    INVALID_INPUT = "INVALID_INPUT"


class SessionError(Exception):
    """会话模块基础异常。

    Attributes:
        code: 错误码
        message: 错误消息
        details: 附加信息（可选）
    """

    code: ErrorCode = ErrorCode.SPAWN_FAILED

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """转换为可序列化的字典。"""
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


class ExecutableNotFound(SessionError):
    """CLI 可执行文件不在 PATH 中。"""

    code = ErrorCode.CLI_NOT_FOUND

    def __init__(self, executable: str) -> None:
        self.executable = executable
        super().__init__(
            f"CLI executable '{executable}' is not installed or not in PATH",
        )


class SpawnFailure(SessionError):
    """子进程启动失败（OS 级别错误）。"""

    code = ErrorCode.SPAWN_FAILED


class WriteFailure(SessionError):
    """stdin 写入失败。

    通常意味着子进程已经退出，流式循环会随后完成清理。
    """

    code = ErrorCode.WRITE_FAILED


class ParseFailure(SessionError):
    """协议行无法解析。

    Attributes:
        line: 原始行内容
    """

    code = ErrorCode.PARSE_FAILED

    def __init__(self, message: str, line: str = "") -> None:
        self.line = line
        super().__init__(message, details=line[:200] if line else None)


class ProcessNotRunning(SessionError):
    """目标会话没有活动进程。"""

    code = ErrorCode.PROCESS_NOT_RUNNING

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"CLI is not running for session '{session_id}'")


class InvalidInput(SessionError):
    """参数不合法。"""

    code = ErrorCode.INVALID_INPUT
