"""Snapshot schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from chain_attendance.schemas.chain import SeededChainResponse


class TakeSnapshotRequest(BaseModel):
    """Request body for POST /sessions/{session_id}/snapshots."""

    model_config = ConfigDict(extra="forbid")

    count: int = Field(default=1, ge=1, le=20)


class SnapshotResponse(BaseModel):
    """A snapshot as shown to organizers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    snapshot_index: int
    captured_at: datetime
    chains_created: int
    total_participants: int
    state: str
    completed_at: datetime | None = None
    present_count: int | None = None


class SnapshotCaptureResponse(BaseModel):
    """Response for POST /sessions/{session_id}/snapshots."""

    snapshot: SnapshotResponse
    chains: list[SeededChainResponse]


class SnapshotComparisonResponse(BaseModel):
    """Response for GET /sessions/{session_id}/snapshots/compare."""

    earlier_id: uuid.UUID
    later_id: uuid.UUID
    new_participants: list[str]
    absent_participants: list[str]
    in_both: list[str]
    time_difference_seconds: float
