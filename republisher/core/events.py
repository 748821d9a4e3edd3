"""
Progress Events - Typed lifecycle/progress events and their fan-out to observers.

Services never talk to observers directly. They receive an ``EventSink`` and call
``await sink.emit(event)``; the ``ProgressBroadcaster`` is the sink used by the
running application and pushes every event to all open WebSocket connections.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from republisher.config import settings

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CONNECTED = "connected"
    # Download queue
    DOWNLOAD_START = "download_start"
    DOWNLOAD_PROGRESS = "download_progress"
    DOWNLOAD_COMPLETE = "download_complete"
    DOWNLOAD_ERROR = "download_error"
    QUEUE_CLEARED = "queue_cleared"
    QUEUE_RETRY = "queue_retry"
    # Upload schedule
    UPLOAD_PROGRESS = "upload_progress"
    UPLOAD_COMPLETE = "upload_complete"
    UPLOAD_ERROR = "upload_error"
    UPLOAD_SCHEDULED = "upload_scheduled"
    UPLOAD_SCHEDULE_REMOVED = "upload_schedule_removed"


@dataclass
class ProgressEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class EventSink(Protocol):
    """Anything that accepts progress events."""

    async def emit(self, event: ProgressEvent) -> None:
        ...


class NullSink:
    """Sink that drops every event."""

    async def emit(self, event: ProgressEvent) -> None:
        return None


def _is_open(ws: WebSocket) -> bool:
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


class ProgressBroadcaster:
    """
    Fan-out of progress events to every live WebSocket observer.

    - Delivery is best-effort and at-most-once per observer
    - No replay buffer; late subscribers only see new events
    - Closed or failing connections are dropped when a send detects them
    - Sends run concurrently and each is bounded by ``send_timeout``; an
      observer that does not take the frame in time is dropped

    Args:
        send_timeout: Seconds one send may take (defaults to PROGRESS_SEND_TIMEOUT_SECONDS)
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout or settings.PROGRESS_SEND_TIMEOUT_SECONDS
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._stats = {
            "total_events_emitted": 0,
            "active_connections": 0,
        }

    # ── Connection Lifecycle ─────────────────────────────────────────────

    async def connect(self, ws: WebSocket, accept: bool = True):
        if accept:
            await ws.accept()
        async with self._lock:
            self._connections.add(ws)
            self._stats["active_connections"] = len(self._connections)
        logger.info(f"Progress WS connected (total={len(self._connections)})")

        await self._send(ws, ProgressEvent(
            type=EventType.CONNECTED,
            data={"message": "Connected to progress updates"},
        ).to_json())

    async def disconnect(self, ws: WebSocket):
        async with self._lock:
            self._connections.discard(ws)
            self._stats["active_connections"] = len(self._connections)
        logger.info(f"Progress WS disconnected (total={len(self._connections)})")

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    # ── Event Emission ───────────────────────────────────────────────────

    async def broadcast(self, event: ProgressEvent) -> int:
        """
        Send an event to all open connections.

        Returns:
            Number of observers the event was delivered to
        """
        self._stats["total_events_emitted"] += 1

        if not self._connections:
            return 0

        payload = event.to_json()
        dead: List[WebSocket] = []
        targets: List[WebSocket] = []

        for ws in list(self._connections):
            if _is_open(ws):
                targets.append(ws)
            else:
                dead.append(ws)

        results = await asyncio.gather(*[self._send(ws, payload) for ws in targets])
        dead.extend(ws for ws, sent in zip(targets, results) if not sent)
        delivered = sum(1 for sent in results if sent)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._connections.discard(ws)
                self._stats["active_connections"] = len(self._connections)
            logger.debug(f"Pruned {len(dead)} closed progress connections")

        return delivered

    async def emit(self, event: ProgressEvent) -> None:
        await self.broadcast(event)

    async def emit_type(self, event_type: EventType, data: Optional[Dict[str, Any]] = None) -> None:
        await self.broadcast(ProgressEvent(type=event_type, data=data or {}))

    async def _send(self, ws: WebSocket, payload: str) -> bool:
        try:
            await asyncio.wait_for(ws.send_text(payload), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Progress WS send timed out after {self.send_timeout}s, dropping observer")
            return False
        except Exception as e:
            logger.debug(f"Progress WS send failed: {e}")
            return False
