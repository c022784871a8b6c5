"""恢复上下文构建。

把先前对话的最近若干条消息整理成一段文本，在新进程启动后一次性写入 stdin，
让 CLI 从中断处继续对话。
"""

from __future__ import annotations

from collections.abc import Iterable

__all__ = [
    "RESUME_PREAMBLE",
    "RESUME_TRAILER",
    "TRUNCATION_MARKER",
    "build_resume_context",
]

RESUME_PREAMBLE = "You are resuming a previous conversation. Here is the context:\n\n"
RESUME_TRAILER = "Continue the conversation from where it left off.\n"
TRUNCATION_MARKER = "... [truncated]"

DEFAULT_HISTORY_LIMIT = 20
DEFAULT_MAX_CHARS = 500


def build_resume_context(
    history: Iterable[tuple[str, str]],
    *,
    limit: int = DEFAULT_HISTORY_LIMIT,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> str | None:
    """构建恢复上下文。

    Args:
        history: 按时间顺序排列的 (role, content) 列表
        limit: 只保留最近的消息条数
        max_chars: 单条消息的最大字符数，超出部分截断

    Returns:
        恢复上下文文本，历史为空时返回 None
    """
    messages = list(history)
    if limit > 0:
        messages = messages[-limit:]
    if not messages:
        return None

    parts = [RESUME_PREAMBLE]
    for role, content in messages:
        label = "User" if role == "user" else "Assistant"
        if len(content) > max_chars:
            content = f"{content[:max_chars]}{TRUNCATION_MARKER}"
        parts.append(f"{label}: {content}\n\n")
    parts.append(RESUME_TRAILER)

    return "".join(parts)
