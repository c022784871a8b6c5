"""Per-session output streaming loop.

The loop owns the read side of one session process for its whole lifetime:
it reads stdout line by line, decodes each line with parse_line(), keeps the
per-message accumulation state and forwards notifications to the sink.

Termination handling:
- Malformed lines are logged and skipped; the stream keeps going
- On end-of-stream (normal exit, crash, forced kill, read failure or task
  cancellation) the session is released from its host and, if this loop was
  the one that removed it, a single terminal stopped status is pushed
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

import anyio

from ..errors import ParseFailure
from ..notifications import ErrorPayload, EventSink, OutputPayload, StatusPayload
from ..parsers import (
    AssistantStart,
    ErrorEvent,
    Event,
    MessageStop,
    TextDelta,
    ToolResult,
    ToolUse,
    parse_line,
)
from ..runtime.process_runner import ProcessHandle
from ..types import SessionStatus

__all__ = [
    "MessageAccumulator",
    "SessionHost",
    "StreamingLoop",
    "new_message_id",
]

logger = logging.getLogger(__name__)

# Grace period for a process that closed stdout to report its exit code
EXIT_GRACE_PERIOD = 1.0


def new_message_id() -> str:
    """Generate a local message id when the protocol omits one."""
    return f"msg-{uuid.uuid4()}"


@dataclass
class MessageAccumulator:
    """Text accumulated for the message currently being streamed."""

    message_id: str
    text: str = ""

    def reset(self, message_id: str | None = None) -> None:
        self.message_id = message_id or new_message_id()
        self.text = ""

    def append(self, fragment: str) -> None:
        self.text += fragment


class SessionHost(Protocol):
    """What the loop needs from the registry that owns its session."""

    async def mark_ready(self, session_id: str, handle: ProcessHandle) -> bool:
        """Set the stored status to ready if handle is still the session's."""
        ...

    async def release(self, session_id: str, handle: ProcessHandle) -> bool:
        """Remove the entry if handle is still the session's; kill handle."""
        ...


class StreamingLoop:
    """Reads one session's output and reconciles its status.

    Example:
        loop = StreamingLoop("s1", handle, host=registry, sink=channel)
        task = asyncio.create_task(loop.run())
    """

    def __init__(
        self,
        session_id: str,
        handle: ProcessHandle,
        *,
        host: SessionHost,
        sink: EventSink,
    ) -> None:
        self.session_id = session_id
        self._handle = handle
        self._host = host
        self._sink = sink
        self.accumulator = MessageAccumulator(message_id=new_message_id())
        self.lines_read = 0
        self.parse_failures = 0

    async def run(self) -> None:
        """Consume stdout until EOF, then release the session."""
        interrupted = False
        try:
            async for line in self._handle.lines():
                if not line.strip():
                    continue
                self.lines_read += 1

                try:
                    event = parse_line(line)
                except ParseFailure as e:
                    self.parse_failures += 1
                    logger.warning(
                        f"Failed to parse CLI output: {e} - line: {line[:200]}"
                    )
                    continue

                await self._handle_event(event)

        except (anyio.get_cancelled_exc_class(), asyncio.CancelledError):
            interrupted = True
            logger.debug(f"Streaming loop cancelled for session {self.session_id}")
            raise

        except Exception as e:
            logger.error(
                f"Streaming loop failed for session {self.session_id}: {e}",
                exc_info=True,
            )

        finally:
            await self._finish(interrupted)

    async def _handle_event(self, event: Event) -> None:
        if isinstance(event, AssistantStart):
            self.accumulator.reset(event.message_id)

        elif isinstance(event, TextDelta):
            self.accumulator.append(event.text)
            self._sink.push(OutputPayload(
                session_id=self.session_id,
                message_id=self.accumulator.message_id,
                chunk=event.text,
                is_complete=False,
            ))

        elif isinstance(event, ToolUse):
            logger.debug(f"Tool use: {event.name} with {event.input!r}")

        elif isinstance(event, ToolResult):
            logger.debug(f"Tool result for {event.tool_call_id}: {event.content[:200]}")

        elif isinstance(event, MessageStop):
            self._sink.push(OutputPayload(
                session_id=self.session_id,
                message_id=self.accumulator.message_id,
                chunk="",
                is_complete=True,
            ))
            if await self._host.mark_ready(self.session_id, self._handle):
                self._sink.push(StatusPayload(
                    session_id=self.session_id,
                    status=SessionStatus.READY,
                ))

        elif isinstance(event, ErrorEvent):
            # Recoverable: stored status is left untouched
            self._sink.push(ErrorPayload(
                session_id=self.session_id,
                error=event.message,
                recoverable=True,
            ))

    async def _finish(self, interrupted: bool) -> None:
        handle = self._handle

        if not interrupted and handle.returncode is None:
            try:
                await asyncio.wait_for(handle.wait(), timeout=EXIT_GRACE_PERIOD)
            except asyncio.TimeoutError:
                pass

        returncode = handle.returncode
        released = await self._host.release(self.session_id, handle)

        logger.info(
            f"CLI output ended for session {self.session_id} "
            f"(returncode={returncode}, released={released}, "
            f"lines={self.lines_read}, parse_failures={self.parse_failures})"
        )

        if not released:
            # stop() already removed the entry and reported stopped
            return

        error: str | None = None
        if returncode not in (None, 0):
            error = f"CLI exited with code {returncode}"
            tail = handle.stderr_tail
            if tail:
                error = f"{error}: {tail[-1]}"

        self._sink.push(StatusPayload(
            session_id=self.session_id,
            status=SessionStatus.STOPPED,
            error=error,
        ))
