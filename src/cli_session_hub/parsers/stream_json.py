"""CLI NDJSON 流事件解析器。

cli-session-hub parsers v0.1.0

将 CLI 以 --print 模式输出的单行 JSON 记录解析为协议事件。

事件类型:
- assistant: 助手消息开始（message.id 为消息 ID）
- content_block_delta: 文本增量（delta.text）
- tool_use / tool_result: 工具调用及结果
- message_stop: 消息结束
- error: 错误（error.message）
- content_block_start / content_block_stop / message_start / message_delta / ping: 忽略
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from ..errors import ParseFailure
from .events import (
    AssistantStart,
    ErrorEvent,
    Event,
    Ignored,
    MessageStop,
    TextDelta,
    ToolResult,
    ToolUse,
)

__all__ = [
    "IGNORED_TYPES",
    "parse_line",
    "parse_record",
]

logger = logging.getLogger(__name__)

# 已知但无需处理的事件类型
IGNORED_TYPES = frozenset({
    "content_block_start",
    "content_block_stop",
    "message_start",
    "message_delta",
    "ping",
})


def _nested(data: dict[str, Any], *keys: str) -> Any:
    """沿路径取嵌套字段，任一层不是 dict 时返回 None。"""
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _parse_assistant(data: dict[str, Any]) -> Event:
    message_id = _nested(data, "message", "id")
    return AssistantStart(message_id=message_id if isinstance(message_id, str) else None)


def _parse_content_block_delta(data: dict[str, Any]) -> Event:
    text = _nested(data, "delta", "text")
    if isinstance(text, str):
        return TextDelta(text=text)
    return Ignored(event_type="content_block_delta")


def _parse_tool_use(data: dict[str, Any]) -> Event:
    name = data.get("name")
    tool_input = data.get("input")
    return ToolUse(
        name=name if isinstance(name, str) else "unknown",
        input=tool_input if tool_input is not None else {},
    )


def _parse_tool_result(data: dict[str, Any]) -> Event:
    tool_call_id = data.get("tool_use_id")
    content = data.get("content")
    return ToolResult(
        tool_call_id=tool_call_id if isinstance(tool_call_id, str) else "",
        content=content if isinstance(content, str) else "",
    )


def _parse_error(data: dict[str, Any]) -> Event:
    message = _nested(data, "error", "message")
    return ErrorEvent(message=message if isinstance(message, str) else "Unknown error")


_HANDLERS: dict[str, Callable[[dict[str, Any]], Event]] = {
    "assistant": _parse_assistant,
    "content_block_delta": _parse_content_block_delta,
    "tool_use": _parse_tool_use,
    "tool_result": _parse_tool_result,
    "message_stop": lambda data: MessageStop(),
    "error": _parse_error,
}


def parse_record(data: dict[str, Any]) -> Event:
    """把已解码的记录映射为事件。

    Args:
        data: 带有 type 字段的记录

    Returns:
        对应的协议事件，未知类型返回 Ignored

    Raises:
        ParseFailure: type 字段缺失或不是字符串
    """
    event_type = data.get("type")
    if not isinstance(event_type, str):
        raise ParseFailure("Record has no string 'type' field", json.dumps(data, default=str))

    handler = _HANDLERS.get(event_type)
    if handler is not None:
        return handler(data)

    if event_type not in IGNORED_TYPES:
        logger.debug(f"Unknown CLI event type: {event_type}")
    return Ignored(event_type=event_type)


def parse_line(line: str) -> Event:
    """解析一行 NDJSON 输出。

    纯函数：相同输入总是得到相同事件。

    Args:
        line: 单行文本（可带换行符）

    Returns:
        协议事件

    Raises:
        ParseFailure: 行内容不是 JSON 对象
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"JSON parse error: {e}", line) from e

    if not isinstance(data, dict):
        raise ParseFailure(f"Expected JSON object, got {type(data).__name__}", line)

    return parse_record(data)
