"""CLI Session Hub MCP Server。

通过 MCP 工具暴露会话控制 API（start/stop/send/cancel/status），
并通过 session_events 拉取流式输出。

控制 API 的失败以 {"ok": false, "error": {...}} 的形式返回，不会抛给 MCP 框架。
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import anyio
from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import get_config
from .errors import InvalidInput, SessionError
from .notifications import BufferedEventSink, EventChannel
from .runtime.cli_check import check_cli
from .sessions.registry import SessionRegistry
from .sessions.resume import build_resume_context
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

__all__ = ["SessionTools", "create_server"]

logger = logging.getLogger(__name__)


def _require_str(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidInput(f"'{key}' is required")
    return value


def _history_items(history: Any) -> list[tuple[str, str]]:
    """校验 history 参数，返回 (role, content) 列表。"""
    if not isinstance(history, list):
        raise InvalidInput("'history' must be a list of messages")

    items = []
    for index, item in enumerate(history):
        if not isinstance(item, dict):
            raise InvalidInput(f"history[{index}] must be an object")
        role = item.get("role")
        content = item.get("content")
        if not isinstance(role, str) or not isinstance(content, str):
            raise InvalidInput(f"history[{index}] needs string 'role' and 'content'")
        items.append((role, content))
    return items


class SessionTools:
    """会话控制工具的实现（与 MCP 传输层解耦，便于测试）。"""

    def __init__(
        self,
        registry: SessionRegistry,
        events: BufferedEventSink,
        channel: EventChannel | None = None,
        executable: str | None = None,
    ) -> None:
        self.registry = registry
        self.events = events
        self.channel = channel
        self.executable = executable or get_config().executable

    async def call(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """执行工具调用，返回可 JSON 序列化的结果。"""
        handler = getattr(self, f"_tool_{name}", None)
        if name not in SUPPORTED_TOOLS or handler is None:
            return {"ok": False, "error": {"code": "UNKNOWN_TOOL", "message": f"Unknown tool '{name}'"}}

        try:
            result = await handler(arguments)
        except SessionError as e:
            logger.info(f"Tool '{name}' failed: {e}")
            return {"ok": False, "error": e.to_dict()}

        return {"ok": True, **result}

    async def _tool_session_start(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = _require_str(arguments, "session_id")
        working_dir = Path(_require_str(arguments, "working_dir"))

        if not working_dir.is_absolute():
            raise InvalidInput("Working directory must be an absolute path")

        resume_context = arguments.get("resume_context")
        if resume_context is not None and not isinstance(resume_context, str):
            raise InvalidInput("'resume_context' must be a string")

        history = arguments.get("history")
        if resume_context is None and history:
            resume_context = build_resume_context(_history_items(history))

        await self.registry.start(session_id, working_dir, resume_context)
        return {"status": (await self.registry.get_status(session_id)).value}

    async def _tool_session_stop(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = _require_str(arguments, "session_id")
        await self.registry.stop(session_id)
        return {"status": "stopped"}

    async def _tool_session_send(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = _require_str(arguments, "session_id")
        content = arguments.get("content")
        if not isinstance(content, str):
            raise InvalidInput("Message content cannot be empty")

        await self.registry.send_message(session_id, content)
        return {"status": (await self.registry.get_status(session_id)).value}

    async def _tool_session_cancel(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = _require_str(arguments, "session_id")
        delivered = await self.registry.cancel(session_id)
        return {"delivered": delivered}

    async def _tool_session_status(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = arguments.get("session_id")
        if session_id:
            status = await self.registry.get_status(session_id)
            return {"session_id": session_id, "status": status.value}

        sessions = await self.registry.list_sessions()
        return {"sessions": {sid: status.value for sid, status in sessions.items()}}

    async def _tool_session_events(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = _require_str(arguments, "session_id")
        # 让通道中排队的事件先投递到缓冲区
        if self.channel is not None:
            await self.channel.flush()
        events = self.events.drain(session_id)
        return {"events": [event.to_wire() for event in events]}

    async def _tool_cli_check(self, arguments: dict[str, Any]) -> dict[str, Any]:
        status = await check_cli(self.executable)
        return status.model_dump()


def create_server(
    registry: SessionRegistry,
    events: BufferedEventSink,
    channel: EventChannel | None = None,
) -> Server:
    """创建 MCP Server 实例。

    Args:
        registry: 会话注册表
        events: 事件缓冲区（session_events 从这里取事件）
        channel: 向 events 投递事件的通道
    """
    server = Server("cli-session-hub")
    tools = SessionTools(registry, events, channel)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        return [
            Tool(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                inputSchema=create_tool_schema(name),
            )
            for name in TOOL_DESCRIPTIONS
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        logger.debug(f"[MCP] call_tool: name={name}, arguments={list(arguments or {})}")

        try:
            result = await tools.call(name, arguments or {})
        except (anyio.get_cancelled_exc_class(), asyncio.CancelledError):
            logger.info(f"Tool '{name}' cancelled")
            raise

        return [TextContent(type="text", text=json.dumps(result, ensure_ascii=False))]

    return server
