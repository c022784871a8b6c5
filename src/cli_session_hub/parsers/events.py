"""协议事件模型定义。

cli-session-hub parsers v0.1.0

CLI 的每一行 NDJSON 输出被解码为下列事件之一。
设计原则：
1. 封闭联合 - 每个已知 type 对应一个模型，通过 kind 字段区分
2. 向前兼容 - 未知或无关的 type 一律映射为 Ignored
3. 不可变 - 事件创建后不会被修改
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "EventBase",
    "AssistantStart",
    "TextDelta",
    "ToolUse",
    "ToolResult",
    "MessageStop",
    "ErrorEvent",
    "Ignored",
    "Event",
]


class EventBase(BaseModel):
    """所有协议事件的基类。"""

    model_config = ConfigDict(extra="ignore", frozen=True)


class AssistantStart(EventBase):
    """助手消息开始。

    对应 type=assistant，message_id 取自嵌套的 message.id。
    """

    kind: Literal["assistant_start"] = "assistant_start"
    message_id: str | None = None


class TextDelta(EventBase):
    """增量文本片段。"""

    kind: Literal["text_delta"] = "text_delta"
    text: str


class ToolUse(EventBase):
    """工具调用。"""

    kind: Literal["tool_use"] = "tool_use"
    name: str = "unknown"
    input: Any = Field(default_factory=dict)


class ToolResult(EventBase):
    """工具执行结果。"""

    kind: Literal["tool_result"] = "tool_result"
    tool_call_id: str = ""
    content: str = ""


class MessageStop(EventBase):
    """助手消息结束。"""

    kind: Literal["message_stop"] = "message_stop"


class ErrorEvent(EventBase):
    """CLI 报告的错误（可恢复，不会中断流）。"""

    kind: Literal["error"] = "error"
    message: str = "Unknown error"


class Ignored(EventBase):
    """已识别但无需处理，或无法识别的事件。

    Attributes:
        event_type: 原始 type 值，便于调试
    """

    kind: Literal["ignored"] = "ignored"
    event_type: str | None = None


# 统一联合类型
Event = Annotated[
    Union[
        AssistantStart,
        TextDelta,
        ToolUse,
        ToolResult,
        MessageStop,
        ErrorEvent,
        Ignored,
    ],
    Field(discriminator="kind"),
]
