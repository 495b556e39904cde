"""Token, challenge and scan schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LocationPayload(BaseModel):
    """Scanner-reported location in decimal degrees."""

    model_config = ConfigDict(extra="forbid")

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ScanRequest(BaseModel):
    """Request body for POST /tokens/{token_id}/scan.

    Attributes:
        code: 6-digit confirmation code from the holder's screen.
        location: Scanner location, if the device shared one.
    """

    model_config = ConfigDict(extra="forbid")

    code: str | None = Field(default=None, pattern=r"^\d{6}$")
    location: LocationPayload | None = None


class ScanResponse(BaseModel):
    """Response for a successful scan."""

    chain_id: uuid.UUID
    new_holder_id: str
    new_token_id: str
    new_expires_at: datetime
    previous_holder_id: str
    sequence: int
    attendance_marked: bool
    warning: str | None = None


class ChallengeResponse(BaseModel):
    """Response for POST /tokens/{token_id}/challenge.

    The code is shown once and must be read from the holder's screen.
    """

    code: str
    expires_in_seconds: int


class MyTokenResponse(BaseModel):
    """Response for GET /sessions/{session_id}/my-token.

    is_holder is False and the other fields are None when the caller
    holds no open chain.
    """

    is_holder: bool
    token_id: str | None = None
    chain_id: uuid.UUID | None = None
    sequence: int | None = None
    expires_at: datetime | None = None
    expires_in_seconds: int | None = None
