"""Tool Schema 定义。

包含会话控制工具的描述和参数 schema。
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

_SESSION_ID = {
    "type": "string",
    "description": "Opaque session identifier chosen by the caller.",
}

# 工具描述
TOOL_DESCRIPTIONS = {
    "session_start": """Start the CLI process for a session.

Idempotent: calling it again for a running session does nothing.
Optionally primes the new process with a resume context, either as raw text
(resume_context) or built from prior messages (history).""",

    "session_stop": "Stop the CLI process for a session. No-op if the session is not running.",

    "session_send": """Send one message to a running session.

The session becomes busy until the CLI finishes its response. Poll
session_events to read the streamed output.""",

    "session_cancel": """Interrupt the in-progress response of a session (best effort).

Returns whether an interrupt signal was actually delivered.""",

    "session_status": """Get the status of a session (starting/ready/busy/stopped/error).

Without session_id, lists all running sessions.""",

    "session_events": """Fetch and clear buffered notifications for a session.

Notifications are claude_output (text chunks, is_complete marks the end of a
message), claude_status and claude_error.""",

    "cli_check": "Check whether the session CLI is installed and report its version.",
}

SUPPORTED_TOOLS = frozenset(TOOL_DESCRIPTIONS)

_SCHEMAS: dict[str, dict[str, Any]] = {
    "session_start": {
        "type": "object",
        "properties": {
            "session_id": _SESSION_ID,
            "working_dir": {
                "type": "string",
                "description": "Absolute path of the project directory the CLI runs in.",
            },
            "resume_context": {
                "type": "string",
                "description": "Text written to the new process once, before any message.",
            },
            "history": {
                "type": "array",
                "description": "Prior messages (oldest first) used to build a resume context.",
                "items": {
                    "type": "object",
                    "properties": {
                        "role": {"type": "string", "enum": ["user", "assistant"]},
                        "content": {"type": "string"},
                    },
                    "required": ["role", "content"],
                },
            },
        },
        "required": ["session_id", "working_dir"],
    },
    "session_stop": {
        "type": "object",
        "properties": {"session_id": _SESSION_ID},
        "required": ["session_id"],
    },
    "session_send": {
        "type": "object",
        "properties": {
            "session_id": _SESSION_ID,
            "content": {"type": "string", "description": "Message text (must not be blank)."},
        },
        "required": ["session_id", "content"],
    },
    "session_cancel": {
        "type": "object",
        "properties": {"session_id": _SESSION_ID},
        "required": ["session_id"],
    },
    "session_status": {
        "type": "object",
        "properties": {"session_id": _SESSION_ID},
        "required": [],
    },
    "session_events": {
        "type": "object",
        "properties": {"session_id": _SESSION_ID},
        "required": ["session_id"],
    },
    "cli_check": {
        "type": "object",
        "properties": {},
        "required": [],
    },
}


def create_tool_schema(tool_name: str) -> dict[str, Any]:
    """获取工具的输入 schema。

    Raises:
        KeyError: 未知工具
    """
    return _SCHEMAS[tool_name]
