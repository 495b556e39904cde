"""Chain request and response schemas."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from chain_attendance.models.chain import Chain, ChainToken

# =============================================================================
# Requests
# =============================================================================


class SeedChainsRequest(BaseModel):
    """Request body for POST /sessions/{session_id}/chains/seed.

    Attributes:
        phase: ENTRY or EXIT. SNAPSHOT chains are seeded via snapshots.
        count: Number of chains to start; upper bound checked against
            MAX_SEED_COUNT by the chain manager.
    """

    model_config = ConfigDict(extra="forbid")

    phase: Literal["ENTRY", "EXIT"]
    count: int = Field(default=1, ge=1)


# =============================================================================
# Responses
# =============================================================================


class ChainResponse(BaseModel):
    """A chain as shown to organizers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    phase: str
    state: str
    batch_index: int
    current_holder_id: str
    sequence: int
    last_activity_at: datetime
    created_at: datetime
    completed_at: datetime | None = None
    snapshot_id: uuid.UUID | None = None


class SeededChainResponse(ChainResponse):
    """A newly seeded chain with the token its first holder displays.

    Attributes:
        token_id: Sequence-0 token issued to current_holder_id.
        expires_at: When that token stops being redeemable.
    """

    token_id: str
    expires_at: datetime

    @classmethod
    def from_seeded(cls, chain: Chain, token: ChainToken) -> "SeededChainResponse":
        """Build from a chain row and its freshly issued token."""
        return cls(
            **ChainResponse.model_validate(chain).model_dump(),
            token_id=token.id,
            expires_at=token.expires_at,
        )


class ChainCloseResponse(BaseModel):
    """Response for POST /chains/{chain_id}/close."""

    chain_id: uuid.UUID
    final_holder_id: str
    completed_at: datetime


class TransferHistoryEntry(BaseModel):
    """One hand-off in a chain's history."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_holder_id: str
    to_holder_id: str
    phase: str
    transferred_at: datetime


class ChainHistoryResponse(BaseModel):
    """Response for GET /chains/{chain_id}/history."""

    chain: ChainResponse
    transfers: list[TransferHistoryEntry]
