"""Attendance session and presence schemas."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionCreate(BaseModel):
    """Request body for POST /sessions."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    starts_at: datetime
    late_cutoff_minutes: int = Field(default=15, ge=0, le=24 * 60)
    anchor_latitude: float | None = Field(default=None, ge=-90, le=90)
    anchor_longitude: float | None = Field(default=None, ge=-180, le=180)
    geofence_radius_m: float = Field(default=100.0, gt=0, le=100_000)
    geofence_mode: Literal["off", "warn", "enforce"] = "off"
    require_challenge: bool = False

    @model_validator(mode="after")
    def check_anchor(self) -> "SessionCreate":
        """Anchor coordinates are given together or not at all."""
        if (self.anchor_latitude is None) != (self.anchor_longitude is None):
            raise ValueError("anchor_latitude and anchor_longitude go together")
        if self.geofence_mode != "off" and self.anchor_latitude is None:
            raise ValueError("geofence_mode requires an anchor location")
        return self


class SessionResponse(BaseModel):
    """An attendance session."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    organizer_id: str
    starts_at: datetime
    late_cutoff_minutes: int
    anchor_latitude: float | None
    anchor_longitude: float | None
    geofence_radius_m: float
    geofence_mode: str
    require_challenge: bool
    created_at: datetime


class HeartbeatRequest(BaseModel):
    """Request body for POST /sessions/{session_id}/presence."""

    model_config = ConfigDict(extra="forbid")

    is_online: bool = True
    left_early: bool = False


class PresenceResponse(BaseModel):
    """A participant's presence row after a heartbeat."""

    model_config = ConfigDict(from_attributes=True)

    session_id: uuid.UUID
    participant_id: str
    joined_at: datetime
    last_seen_at: datetime
    is_online: bool
    left_early_at: datetime | None
