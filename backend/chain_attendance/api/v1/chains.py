"""Chain API routers.

Organizer-only endpoints for seeding, listing, stall detection, closing
and history. Two routers: session-scoped routes are mounted under
/sessions, chain-scoped routes under /chains.
"""

import uuid
from typing import Annotated, Literal

from fastapi import APIRouter, Query

from chain_attendance.api.deps import DbSession, Organizer
from chain_attendance.core.responses import DataResponse, ListResponse
from chain_attendance.models.chain import ChainPhase
from chain_attendance.schemas.chain import (
    ChainCloseResponse,
    ChainHistoryResponse,
    ChainResponse,
    SeedChainsRequest,
    SeededChainResponse,
    TransferHistoryEntry,
)
from chain_attendance.services.chain_manager import ChainManager
from chain_attendance.services.event_broadcaster import EventOutbox

session_chains_router = APIRouter()
router = APIRouter()

PhaseFilter = Annotated[
    Literal["ENTRY", "EXIT", "SNAPSHOT"] | None,
    Query(description="Filter: ENTRY, EXIT, SNAPSHOT"),
]


# =============================================================================
# POST /sessions/{session_id}/chains/seed
# =============================================================================


@session_chains_router.post("/{session_id}/chains/seed", status_code=201)
async def seed_chains(
    session_id: uuid.UUID,
    body: SeedChainsRequest,
    _principal: Organizer,
    db: DbSession,
) -> ListResponse[SeededChainResponse]:
    """Start a batch of chains with randomly chosen holders.

    Each entry carries the sequence-0 token issued to its holder.
    """
    outbox = EventOutbox()
    seeded = await ChainManager(db, outbox=outbox).seed(
        session_id, ChainPhase(body.phase), body.count
    )
    # Events go out only once the change is durable
    await db.commit()
    outbox.dispatch()
    return ListResponse(
        data=[SeededChainResponse.from_seeded(s.chain, s.token) for s in seeded],
        total=len(seeded),
    )


# =============================================================================
# GET /sessions/{session_id}/chains
# =============================================================================


@session_chains_router.get("/{session_id}/chains")
async def list_chains(
    session_id: uuid.UUID,
    _principal: Organizer,
    db: DbSession,
    phase: PhaseFilter = None,
) -> ListResponse[ChainResponse]:
    """List a session's chains in seeding order."""
    chains = await ChainManager(db).list_chains(
        session_id, ChainPhase(phase) if phase else None
    )
    return ListResponse(
        data=[ChainResponse.model_validate(c) for c in chains],
        total=len(chains),
    )


# =============================================================================
# POST /sessions/{session_id}/chains/detect-stalls
# =============================================================================


@session_chains_router.post("/{session_id}/chains/detect-stalls")
async def detect_stalls(
    session_id: uuid.UUID,
    _principal: Organizer,
    db: DbSession,
    phase: PhaseFilter = None,
) -> ListResponse[ChainResponse]:
    """Mark idle chains STALLED and return the ones that changed."""
    outbox = EventOutbox()
    chains = await ChainManager(db, outbox=outbox).detect_stalls(
        session_id, ChainPhase(phase) if phase else None
    )
    await db.commit()
    outbox.dispatch()
    return ListResponse(
        data=[ChainResponse.model_validate(c) for c in chains],
        total=len(chains),
    )


# =============================================================================
# POST /chains/{chain_id}/close
# =============================================================================


@router.post("/{chain_id}/close")
async def close_chain(
    chain_id: uuid.UUID,
    _principal: Organizer,
    db: DbSession,
) -> DataResponse[ChainCloseResponse]:
    """Complete a chain. The final holder is reported, not marked."""
    outbox = EventOutbox()
    closure = await ChainManager(db, outbox=outbox).close(chain_id)
    await db.commit()
    outbox.dispatch()
    return DataResponse(
        data=ChainCloseResponse(
            chain_id=closure.chain_id,
            final_holder_id=closure.final_holder_id,
            completed_at=closure.completed_at,
        )
    )


# =============================================================================
# GET /chains/{chain_id}/history
# =============================================================================


@router.get("/{chain_id}/history")
async def get_chain_history(
    chain_id: uuid.UUID,
    _principal: Organizer,
    db: DbSession,
) -> DataResponse[ChainHistoryResponse]:
    """Return a chain and its transfers ordered by sequence."""
    chain, entries = await ChainManager(db).get_history(chain_id)
    return DataResponse(
        data=ChainHistoryResponse(
            chain=ChainResponse.model_validate(chain),
            transfers=[TransferHistoryEntry.model_validate(e) for e in entries],
        )
    )
