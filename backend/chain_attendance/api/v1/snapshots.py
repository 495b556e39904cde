"""Snapshot API routers.

Organizer-only. Session-scoped routes are mounted under /sessions,
snapshot-scoped routes under /snapshots.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Query

from chain_attendance.api.deps import DbSession, Organizer
from chain_attendance.core.responses import DataResponse, ListResponse
from chain_attendance.schemas.chain import SeededChainResponse
from chain_attendance.schemas.snapshot import (
    SnapshotCaptureResponse,
    SnapshotComparisonResponse,
    SnapshotResponse,
    TakeSnapshotRequest,
)
from chain_attendance.services.event_broadcaster import EventOutbox
from chain_attendance.services.snapshot_coordinator import SnapshotCoordinator

session_snapshots_router = APIRouter()
router = APIRouter()


# =============================================================================
# POST /sessions/{session_id}/snapshots
# =============================================================================


@session_snapshots_router.post("/{session_id}/snapshots", status_code=201)
async def take_snapshot(
    session_id: uuid.UUID,
    body: TakeSnapshotRequest,
    _principal: Organizer,
    db: DbSession,
) -> DataResponse[SnapshotCaptureResponse]:
    """Seed SNAPSHOT chains over the currently active participants."""
    outbox = EventOutbox()
    capture = await SnapshotCoordinator(db, outbox=outbox).take_snapshot(
        session_id, body.count
    )
    await db.commit()
    outbox.dispatch()
    return DataResponse(
        data=SnapshotCaptureResponse(
            snapshot=SnapshotResponse.model_validate(capture.snapshot),
            chains=[
                SeededChainResponse.from_seeded(s.chain, s.token)
                for s in capture.chains
            ],
        )
    )


# =============================================================================
# GET /sessions/{session_id}/snapshots
# =============================================================================


@session_snapshots_router.get("/{session_id}/snapshots")
async def list_snapshots(
    session_id: uuid.UUID,
    _principal: Organizer,
    db: DbSession,
) -> ListResponse[SnapshotResponse]:
    """List a session's snapshots in capture order."""
    snapshots = await SnapshotCoordinator(db).list_snapshots(session_id)
    return ListResponse(
        data=[SnapshotResponse.model_validate(s) for s in snapshots],
        total=len(snapshots),
    )


# =============================================================================
# GET /sessions/{session_id}/snapshots/compare
# =============================================================================


@session_snapshots_router.get("/{session_id}/snapshots/compare")
async def compare_snapshots(
    session_id: uuid.UUID,
    first: Annotated[uuid.UUID, Query(description="First snapshot id")],
    second: Annotated[uuid.UUID, Query(description="Second snapshot id")],
    _principal: Organizer,
    db: DbSession,
) -> DataResponse[SnapshotComparisonResponse]:
    """Compare who appeared in two snapshots of the session."""
    comparison = await SnapshotCoordinator(db).compare_snapshots(
        session_id, first, second
    )
    return DataResponse(
        data=SnapshotComparisonResponse(
            earlier_id=comparison.earlier_id,
            later_id=comparison.later_id,
            new_participants=comparison.new_participants,
            absent_participants=comparison.absent_participants,
            in_both=comparison.in_both,
            time_difference_seconds=comparison.time_difference_seconds,
        )
    )


# =============================================================================
# POST /snapshots/{snapshot_id}/complete
# =============================================================================


@router.post("/{snapshot_id}/complete")
async def complete_snapshot(
    snapshot_id: uuid.UUID,
    _principal: Organizer,
    db: DbSession,
) -> DataResponse[SnapshotResponse]:
    """Close the snapshot's chains and record the present count."""
    outbox = EventOutbox()
    snapshot = await SnapshotCoordinator(db, outbox=outbox).complete_snapshot(
        snapshot_id
    )
    await db.commit()
    outbox.dispatch()
    return DataResponse(data=SnapshotResponse.model_validate(snapshot))
