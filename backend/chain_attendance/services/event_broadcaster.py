"""In-process fan-out of chain and attendance events to WebSocket clients.

Connections are grouped by attendance session. Delivery is best-effort:
a send failure or timeout drops that connection and is logged, and never
reaches the caller that triggered the event. Events are hints for live
dashboards; clients re-read state over HTTP after reconnecting.

Services never send directly. They record events in an EventOutbox, and
the route dispatches the outbox after its transaction commits, so an
event never describes a change that was rolled back and a slow
subscriber never holds a request (or its row locks) open.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket

from chain_attendance.core.config import settings

logger = logging.getLogger(__name__)

# Event type names sent in the "type" field
CHAIN_UPDATE = "chain_update"
ATTENDANCE_UPDATE = "attendance_update"
STALL_ALERT = "stall_alert"
CHAIN_CLOSED = "chain_closed"
SNAPSHOT_UPDATE = "snapshot_update"


class EventBroadcaster:
    """Tracks WebSocket subscribers per session and pushes JSON events."""

    def __init__(self) -> None:
        self._connections: dict[uuid.UUID, list[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self._deliveries: set[asyncio.Task[int]] = set()

    async def connect(self, websocket: WebSocket, session_id: uuid.UUID) -> None:
        """Accept a WebSocket and subscribe it to a session's events."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(session_id, []).append(websocket)
        logger.debug("WebSocket subscribed to session %s", session_id)

    async def disconnect(self, websocket: WebSocket, session_id: uuid.UUID) -> None:
        """Unsubscribe a WebSocket. Safe to call more than once."""
        async with self._lock:
            subscribers = self._connections.get(session_id)
            if subscribers is None:
                return
            if websocket in subscribers:
                subscribers.remove(websocket)
            if not subscribers:
                del self._connections[session_id]

    def subscriber_count(self, session_id: uuid.UUID) -> int:
        """Number of live subscribers for a session."""
        return len(self._connections.get(session_id, []))

    def publish(
        self,
        session_id: uuid.UUID,
        event_type: str,
        data: dict[str, Any],
    ) -> None:
        """Schedule an event for delivery without waiting for it.

        Must be called from an async context (running event loop). No-op
        when the session has no subscribers.
        """
        if not self._connections.get(session_id):
            return
        task = asyncio.create_task(self.broadcast(session_id, event_type, data))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish.

        Useful for tests and for a graceful shutdown.
        """
        while self._deliveries:
            pending = list(self._deliveries)
            await asyncio.gather(*pending, return_exceptions=True)
            self._deliveries.difference_update(pending)

    async def broadcast(
        self,
        session_id: uuid.UUID,
        event_type: str,
        data: dict[str, Any],
    ) -> int:
        """Send an event to every subscriber of a session concurrently.

        Each send is bounded by EVENT_SEND_TIMEOUT_SECONDS; a subscriber
        that fails or times out is dropped.

        Args:
            session_id: Session whose subscribers receive the event.
            event_type: Event name (e.g., "chain_update").
            data: JSON-serializable payload.

        Returns:
            Number of subscribers the event was delivered to.
        """
        subscribers = list(self._connections.get(session_id, []))
        if not subscribers:
            return 0

        message = {
            "type": event_type,
            "session_id": str(session_id),
            "data": data,
            "sent_at": datetime.now(UTC).isoformat(),
        }
        results = await asyncio.gather(
            *(self._send(websocket, session_id, message) for websocket in subscribers)
        )
        return sum(results)

    async def _send(
        self,
        websocket: WebSocket,
        session_id: uuid.UUID,
        message: dict[str, Any],
    ) -> bool:
        try:
            await asyncio.wait_for(
                websocket.send_json(message),
                timeout=settings.event_send_timeout_seconds,
            )
        except Exception:
            # Best-effort: a dead or stuck subscriber must not affect others
            logger.warning(
                "Dropping WebSocket subscriber for session %s after send failure",
                session_id,
                exc_info=True,
            )
            await self.disconnect(websocket, session_id)
            return False
        return True


# Global broadcaster instance (single-process deployment)
broadcaster = EventBroadcaster()


@dataclass(frozen=True)
class PendingEvent:
    """An event recorded during a transaction and not yet sent."""

    session_id: uuid.UUID
    event_type: str
    data: dict[str, Any]


class EventOutbox:
    """Collects events raised inside one transaction.

    Call dispatch() only after the transaction commits. An outbox that is
    never dispatched (the request failed and rolled back) sends nothing.

    Args:
        target: Broadcaster that receives dispatched events.
    """

    def __init__(self, target: EventBroadcaster | None = None) -> None:
        self._target = target or broadcaster
        self._events: list[PendingEvent] = []

    @property
    def events(self) -> list[PendingEvent]:
        """Events recorded so far, in order."""
        return list(self._events)

    def add(
        self,
        session_id: uuid.UUID,
        event_type: str,
        data: dict[str, Any],
    ) -> None:
        """Record an event for later dispatch."""
        self._events.append(PendingEvent(session_id, event_type, data))

    def dispatch(self) -> int:
        """Hand every recorded event to the broadcaster and clear the outbox.

        Returns:
            Number of events dispatched.
        """
        events, self._events = self._events, []
        for event in events:
            self._target.publish(event.session_id, event.event_type, event.data)
        return len(events)
