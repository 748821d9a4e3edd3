"""
Unit tests for progress events and the WebSocket broadcaster.
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock

from starlette.websockets import WebSocketState

from republisher.core.events import EventType, NullSink, ProgressBroadcaster, ProgressEvent


class FakeWebSocket:
    """WebSocket double that records sent frames."""

    def __init__(self, fail_send: bool = False):
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent = []
        self.fail_send = fail_send

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, payload: str):
        if self.fail_send:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(payload))

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED


class StalledWebSocket(FakeWebSocket):
    """WebSocket double whose peer has stopped reading."""

    async def send_text(self, payload: str):
        await asyncio.sleep(3600)


@pytest.mark.unit
class TestProgressEvent:
    """Test cases for ProgressEvent serialization."""

    def test_to_dict_uses_plain_type(self):
        event = ProgressEvent(type=EventType.DOWNLOAD_PROGRESS, data={"progress": 12.5}, timestamp=1.0)

        assert event.to_dict() == {"type": "download_progress", "data": {"progress": 12.5}, "timestamp": 1.0}
        assert json.loads(event.to_json())["type"] == "download_progress"

    @pytest.mark.asyncio
    async def test_null_sink_accepts_events(self):
        assert await NullSink().emit(ProgressEvent(type=EventType.QUEUE_CLEARED)) is None


@pytest.mark.unit
class TestProgressBroadcaster:
    """Test cases for ProgressBroadcaster."""

    @pytest.mark.asyncio
    async def test_connect_sends_greeting(self):
        broadcaster = ProgressBroadcaster()
        ws = FakeWebSocket()

        await broadcaster.connect(ws)

        assert broadcaster.connection_count == 1
        assert ws.sent[0]["type"] == "connected"

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_open_connection(self):
        broadcaster = ProgressBroadcaster()
        first, second = FakeWebSocket(), FakeWebSocket()
        await broadcaster.connect(first)
        await broadcaster.connect(second)

        delivered = await broadcaster.broadcast(
            ProgressEvent(type=EventType.UPLOAD_COMPLETE, data={"episode_id": 4})
        )

        assert delivered == 2
        assert first.sent[-1] == second.sent[-1]
        assert first.sent[-1]["data"] == {"episode_id": 4}
        assert broadcaster.get_stats()["total_events_emitted"] == 1

    @pytest.mark.asyncio
    async def test_closed_and_failing_connections_are_pruned(self):
        """Test dead observers are dropped when a send detects them."""
        broadcaster = ProgressBroadcaster()
        healthy, closed, failing = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        for ws in (healthy, closed, failing):
            await broadcaster.connect(ws)
        closed.close()
        failing.fail_send = True

        delivered = await broadcaster.broadcast(ProgressEvent(type=EventType.QUEUE_RETRY, data={"count": 2}))

        assert delivered == 1
        assert broadcaster.connection_count == 1
        assert broadcaster.get_stats()["active_connections"] == 1

    @pytest.mark.asyncio
    async def test_stalled_observer_does_not_block_emit(self):
        """Test a socket that never finishes a send is dropped after the send timeout."""
        broadcaster = ProgressBroadcaster(send_timeout=0.05)
        healthy, stalled = FakeWebSocket(), StalledWebSocket()
        await broadcaster.connect(healthy)
        await broadcaster.connect(stalled)

        delivered = await asyncio.wait_for(
            broadcaster.broadcast(ProgressEvent(type=EventType.DOWNLOAD_PROGRESS, data={"progress": 50})),
            timeout=2,
        )

        assert delivered == 1
        assert healthy.sent[-1]["data"] == {"progress": 50}
        assert broadcaster.connection_count == 1

        await asyncio.wait_for(broadcaster.emit_type(EventType.DOWNLOAD_COMPLETE, {"episode_id": 1}), timeout=2)
        assert healthy.sent[-1]["type"] == "download_complete"

    @pytest.mark.asyncio
    async def test_broadcast_without_observers(self):
        broadcaster = ProgressBroadcaster()
        assert await broadcaster.broadcast(ProgressEvent(type=EventType.DOWNLOAD_START)) == 0

    @pytest.mark.asyncio
    async def test_emit_type_and_disconnect(self):
        broadcaster = ProgressBroadcaster()
        ws = FakeWebSocket()
        await broadcaster.connect(ws)

        await broadcaster.emit_type(EventType.UPLOAD_SCHEDULED, {"series_id": 1})
        await broadcaster.disconnect(ws)
        await broadcaster.emit(ProgressEvent(type=EventType.UPLOAD_ERROR))

        assert [frame["type"] for frame in ws.sent] == ["connected", "upload_scheduled"]
        assert broadcaster.connection_count == 0

    @pytest.mark.asyncio
    async def test_connect_without_accept(self):
        broadcaster = ProgressBroadcaster()
        ws = FakeWebSocket()
        ws.accept = AsyncMock()

        await broadcaster.connect(ws, accept=False)

        ws.accept.assert_not_called()
        assert broadcaster.connection_count == 1
