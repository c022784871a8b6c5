"""CLI 协议解析模块。

Example:
    event = parse_line('{"type":"content_block_delta","delta":{"text":"Hi "}}')
    assert event == TextDelta(text="Hi ")
"""

from __future__ import annotations

from .events import (
    AssistantStart,
    ErrorEvent,
    Event,
    EventBase,
    Ignored,
    MessageStop,
    TextDelta,
    ToolResult,
    ToolUse,
)
from .stream_json import IGNORED_TYPES, parse_line, parse_record

__all__ = [
    "AssistantStart",
    "ErrorEvent",
    "Event",
    "EventBase",
    "IGNORED_TYPES",
    "Ignored",
    "MessageStop",
    "TextDelta",
    "ToolResult",
    "ToolUse",
    "parse_line",
    "parse_record",
]
