"""Attendance session API router.

Session creation for organizers, presence heartbeats and the holder's
current-token poll for participants. Chain and snapshot routes nested
under /sessions live in chains.py and snapshots.py.
"""

import uuid
from datetime import UTC, datetime

from fastapi import APIRouter

from chain_attendance.api.deps import DbSession, Organizer, Participant
from chain_attendance.core.errors import SessionNotFoundError
from chain_attendance.core.responses import DataResponse
from chain_attendance.repositories.session_repository import SessionRepository
from chain_attendance.schemas.session import (
    HeartbeatRequest,
    PresenceResponse,
    SessionCreate,
    SessionResponse,
)
from chain_attendance.schemas.token import MyTokenResponse
from chain_attendance.services.token_store import TokenStore

router = APIRouter()


# =============================================================================
# POST /sessions
# =============================================================================


@router.post("", status_code=201)
async def create_session(
    body: SessionCreate,
    principal: Organizer,
    db: DbSession,
) -> DataResponse[SessionResponse]:
    """Create an attendance session owned by the calling organizer."""
    session = await SessionRepository.create(
        db,
        name=body.name,
        organizer_id=principal.participant_id,
        starts_at=body.starts_at,
        late_cutoff_minutes=body.late_cutoff_minutes,
        anchor_latitude=body.anchor_latitude,
        anchor_longitude=body.anchor_longitude,
        geofence_radius_m=body.geofence_radius_m,
        geofence_mode=body.geofence_mode,
        require_challenge=body.require_challenge,
    )
    return DataResponse(data=SessionResponse.model_validate(session))


# =============================================================================
# POST /sessions/{session_id}/presence
# =============================================================================


@router.post("/{session_id}/presence")
async def heartbeat(
    session_id: uuid.UUID,
    body: HeartbeatRequest,
    principal: Participant,
    db: DbSession,
) -> DataResponse[PresenceResponse]:
    """Join the session on first call; refresh presence afterwards."""
    if await SessionRepository.get_by_id(db, session_id) is None:
        raise SessionNotFoundError(str(session_id))

    participant = await SessionRepository.record_heartbeat(
        db,
        session_id=session_id,
        participant_id=principal.participant_id,
        is_online=body.is_online,
        now=datetime.now(UTC),
        left_early=body.left_early,
    )
    return DataResponse(data=PresenceResponse.model_validate(participant))


# =============================================================================
# GET /sessions/{session_id}/my-token
# =============================================================================


@router.get("/{session_id}/my-token")
async def get_my_token(
    session_id: uuid.UUID,
    principal: Participant,
    db: DbSession,
) -> DataResponse[MyTokenResponse]:
    """Return the token the caller should display, rotating it if expired.

    Returns is_holder=false and empty fields when the caller holds no
    open chain.
    """
    if await SessionRepository.get_by_id(db, session_id) is None:
        raise SessionNotFoundError(str(session_id))

    token = await TokenStore(db).current_for_holder(
        session_id, principal.participant_id
    )
    if token is None:
        return DataResponse(data=MyTokenResponse(is_holder=False))

    remaining = (token.expires_at - datetime.now(UTC)).total_seconds()
    return DataResponse(
        data=MyTokenResponse(
            is_holder=True,
            token_id=token.id,
            chain_id=token.chain_id,
            sequence=token.sequence,
            expires_at=token.expires_at,
            expires_in_seconds=max(0, int(remaining)),
        )
    )
