"""Live event stream over WebSocket.

Clients pass their bearer token as the ``token`` query parameter, since
browsers cannot set headers on a WebSocket handshake. Incoming messages
are ignored; clients may send them as keepalives.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from chain_attendance.core.auth import decode_identity_token
from chain_attendance.core.errors import UnauthorizedError
from chain_attendance.services.event_broadcaster import broadcaster

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/{session_id}/events")
async def session_events(
    websocket: WebSocket,
    session_id: uuid.UUID,
    token: Annotated[str | None, Query()] = None,
) -> None:
    """Subscribe to a session's chain, attendance and snapshot events."""
    try:
        principal = decode_identity_token(token or "")
    except UnauthorizedError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await broadcaster.connect(websocket, session_id)
    logger.debug(
        "Participant %s watching session %s", principal.participant_id, session_id
    )
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Event stream closed for session %s", session_id)
    finally:
        await broadcaster.disconnect(websocket, session_id)
