"""事件通知测试。

- 负载序列化（camelCase 字段名）
- EventChannel 非阻塞、有界、保序
- BufferedEventSink 按会话缓存
"""

from __future__ import annotations

import asyncio

import pytest

from cli_session_hub.notifications import (
    BufferedEventSink,
    ErrorPayload,
    EventChannel,
    EventSink,
    OutputPayload,
    StatusPayload,
)
from cli_session_hub.types import SessionStatus


class TestPayloads:
    """负载序列化测试。"""

    def test_output_wire_format(self):
        payload = OutputPayload(session_id="s1", message_id="m1", chunk="Hi ", timestamp=1.0)

        assert payload.to_wire() == {
            "sessionId": "s1",
            "timestamp": 1.0,
            "event": "claude_output",
            "messageId": "m1",
            "chunk": "Hi ",
            "isComplete": False,
        }

    def test_status_wire_format(self):
        payload = StatusPayload(session_id="s1", status=SessionStatus.BUSY, timestamp=1.0)

        wire = payload.to_wire()
        assert wire["event"] == "claude_status"
        assert wire["status"] == "busy"
        assert wire["error"] is None

    def test_error_wire_format(self):
        payload = ErrorPayload(session_id="s1", error="Rate limited")

        wire = payload.to_wire()
        assert wire["event"] == "claude_error"
        assert wire["recoverable"] is True
        assert wire["timestamp"] > 0

    def test_populate_by_alias(self):
        payload = OutputPayload.model_validate(
            {"sessionId": "s1", "messageId": "m1", "isComplete": True}
        )
        assert payload.session_id == "s1"
        assert payload.is_complete is True
        assert payload.chunk == ""


class TestBufferedEventSink:
    """按会话缓存测试。"""

    def test_drain_per_session(self):
        sink = BufferedEventSink()
        sink.push(StatusPayload(session_id="a", status=SessionStatus.READY))
        sink.push(StatusPayload(session_id="b", status=SessionStatus.READY))
        sink.push(StatusPayload(session_id="a", status=SessionStatus.BUSY))

        assert len(sink) == 3
        assert [e.status for e in sink.drain("a")] == [SessionStatus.READY, SessionStatus.BUSY]
        assert sink.drain("a") == []
        assert len(sink) == 1

    def test_peek_does_not_clear(self):
        sink = BufferedEventSink()
        sink.push(ErrorPayload(session_id="a", error="x"))

        assert len(sink.peek("a")) == 1
        assert len(sink.peek("a")) == 1

    def test_bounded(self):
        sink = BufferedEventSink(max_per_session=2)
        for chunk in ("1", "2", "3"):
            sink.push(OutputPayload(session_id="a", message_id="m", chunk=chunk))

        assert [e.chunk for e in sink.drain("a")] == ["2", "3"]

    def test_is_event_sink(self):
        assert isinstance(BufferedEventSink(), EventSink)


class TestEventChannel:
    """事件通道测试。"""

    @pytest.mark.asyncio
    async def test_delivers_in_order(self):
        sink = BufferedEventSink()
        channel = EventChannel(sink)

        for i in range(10):
            assert channel.push(OutputPayload(session_id="s1", message_id="m", chunk=str(i)))
        await channel.close()

        assert [e.chunk for e in sink.drain("s1")] == [str(i) for i in range(10)]

    @pytest.mark.asyncio
    async def test_full_channel_drops(self):
        sink = BufferedEventSink()
        channel = EventChannel(sink, maxsize=2)

        results = [
            channel.push(StatusPayload(session_id="s1", status=SessionStatus.READY))
            for _ in range(4)
        ]

        assert results == [True, True, False, False]
        assert channel.dropped == 2
        await channel.close()
        assert len(sink) == 2

    @pytest.mark.asyncio
    async def test_push_never_waits_for_slow_sink(self):
        release = asyncio.Event()
        received = []

        class SlowSink:
            async def push(self, payload):
                await release.wait()
                received.append(payload)

        channel = EventChannel(SlowSink(), maxsize=100)
        for _ in range(5):
            channel.push(StatusPayload(session_id="s1", status=SessionStatus.BUSY))
        await asyncio.sleep(0.01)

        assert received == []
        assert channel.pending >= 4

        release.set()
        await channel.close()
        assert len(received) == 5

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_stop_delivery(self):
        received = []

        class FlakySink:
            def push(self, payload):
                if payload.chunk == "bad":
                    raise RuntimeError("sink failure")
                received.append(payload.chunk)

        channel = EventChannel(FlakySink())
        for chunk in ("a", "bad", "b"):
            channel.push(OutputPayload(session_id="s1", message_id="m", chunk=chunk))
        await channel.close()

        assert received == ["a", "b"]

    @pytest.mark.asyncio
    async def test_flush(self):
        sink = BufferedEventSink()
        channel = EventChannel(sink)
        channel.push(StatusPayload(session_id="s1", status=SessionStatus.READY))

        await channel.flush()

        assert len(sink.peek("s1")) == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_push_after_close_rejected(self):
        sink = BufferedEventSink()
        channel = EventChannel(sink)
        channel.start()
        await channel.close()

        assert channel.push(StatusPayload(session_id="s1", status=SessionStatus.READY)) is False
        assert len(sink) == 0
