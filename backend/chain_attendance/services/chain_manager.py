"""Chain lifecycle - seeding, stall detection, closing and read views.

Seeding picks holders uniformly at random without replacement using the
OS CSPRNG, holding the session row so concurrent seeds of one session get
distinct batch indexes. Stall detection and closing are conditional
updates, so running them concurrently with scans or with each other is
safe.
"""

import logging
import random
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.core.config import settings
from chain_attendance.core.errors import (
    ChainNotFoundError,
    InsufficientParticipantsError,
    SessionNotFoundError,
    ValidationError,
)
from chain_attendance.models.chain import (
    Chain,
    ChainPhase,
    ChainToken,
    TransferHistory,
)
from chain_attendance.repositories.chain_repository import ChainRepository
from chain_attendance.repositories.session_repository import SessionRepository
from chain_attendance.repositories.token_repository import TokenRepository
from chain_attendance.services.event_broadcaster import (
    CHAIN_CLOSED,
    CHAIN_UPDATE,
    STALL_ALERT,
    EventOutbox,
)
from chain_attendance.services.token_store import TokenStore, ttl_for_phase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainClosure:
    """Outcome of closing a chain.

    Attributes:
        chain_id: Chain that was closed.
        final_holder_id: Holder at close time. Not marked present.
        completed_at: Completion timestamp.
    """

    chain_id: uuid.UUID
    final_holder_id: str
    completed_at: datetime


@dataclass(frozen=True)
class SeededChain:
    """A newly seeded chain and the token its first holder displays."""

    chain: Chain
    token: ChainToken


def _chain_summary(chain: Chain) -> dict:
    return {
        "chain_id": str(chain.id),
        "phase": chain.phase,
        "state": chain.state,
        "holder_id": chain.current_holder_id,
        "sequence": chain.sequence,
    }


class ChainManager:
    """Owns chain lifecycle and holder bookkeeping.

    Args:
        db: Async database session.
        outbox: Collects events to send once the caller commits.
        rng: Random source for holder selection (defaults to SystemRandom).
    """

    def __init__(
        self,
        db: AsyncSession,
        outbox: EventOutbox | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._db = db
        self._outbox = outbox or EventOutbox()
        self._rng = rng or random.SystemRandom()
        self._tokens = TokenStore(db)

    async def seed(
        self,
        session_id: uuid.UUID,
        phase: ChainPhase,
        count: int,
        *,
        snapshot_id: uuid.UUID | None = None,
    ) -> list[SeededChain]:
        """Start up to ``count`` chains with randomly chosen holders.

        Args:
            session_id: Session to seed.
            phase: ENTRY, EXIT or SNAPSHOT.
            count: Requested number of chains (1..MAX_SEED_COUNT).
            snapshot_id: Owning snapshot; required for SNAPSHOT chains.

        Returns:
            Created chains with their sequence-0 tokens. May be fewer than
            requested when fewer participants are eligible.

        Raises:
            ValidationError: Count out of range, or SNAPSHOT without snapshot.
            SessionNotFoundError: Session does not exist.
            InsufficientParticipantsError: No eligible participant.
        """
        if not 1 <= count <= settings.max_seed_count:
            raise ValidationError(
                f"count must be between 1 and {settings.max_seed_count}"
            )
        if phase == ChainPhase.SNAPSHOT and snapshot_id is None:
            raise ValidationError("SNAPSHOT chains must belong to a snapshot")

        session = await SessionRepository.get_for_update(self._db, session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))

        now = datetime.now(UTC)
        eligible = await SessionRepository.list_eligible_participants(
            self._db,
            session_id=session_id,
            phase=phase,
            online_since=now - timedelta(seconds=settings.online_threshold_seconds),
        )
        if not eligible:
            raise InsufficientParticipantsError(requested=count, available=0)

        holders = self._rng.sample(eligible, min(count, len(eligible)))
        batch_index = await ChainRepository.next_batch_index(
            self._db, session_id=session_id, phase=phase
        )
        ttl = ttl_for_phase(phase)

        seeded: list[SeededChain] = []
        for holder_id in holders:
            chain = await ChainRepository.create(
                self._db,
                session_id=session_id,
                phase=phase,
                batch_index=batch_index,
                holder_id=holder_id,
                now=now,
                snapshot_id=snapshot_id,
            )
            token = await self._tokens.issue(chain.id, holder_id, 0, ttl)
            seeded.append(SeededChain(chain=chain, token=token))

        logger.info(
            "Seeded %d %s chain(s) for session %s (batch %d, %d eligible)",
            len(seeded),
            phase.value,
            session_id,
            batch_index,
            len(eligible),
        )
        self._outbox.add(
            session_id,
            CHAIN_UPDATE,
            {
                "action": "seeded",
                "batch_index": batch_index,
                "chains": [_chain_summary(s.chain) for s in seeded],
            },
        )
        return seeded

    async def detect_stall(self, chain_id: uuid.UUID) -> bool:
        """Mark one chain STALLED if it has been idle past the threshold.

        Returns:
            True if the chain transitioned to STALLED.

        Raises:
            ChainNotFoundError: Chain does not exist.
        """
        chain = await ChainRepository.get_by_id(self._db, chain_id)
        if chain is None:
            raise ChainNotFoundError(str(chain_id))

        stalled = await ChainRepository.mark_stalled(
            self._db,
            session_id=chain.session_id,
            chain_id=chain_id,
            stale_before=self._stale_before(),
        )
        if stalled:
            self._announce_stalls(chain.session_id, stalled)
        return bool(stalled)

    async def detect_stalls(
        self,
        session_id: uuid.UUID,
        phase: ChainPhase | None = None,
    ) -> list[Chain]:
        """Mark every idle ACTIVE chain of a session STALLED.

        Returns:
            Chains that transitioned on this call.

        Raises:
            SessionNotFoundError: Session does not exist.
        """
        session = await SessionRepository.get_by_id(self._db, session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))

        stalled_ids = await ChainRepository.mark_stalled(
            self._db,
            session_id=session_id,
            stale_before=self._stale_before(),
            phase=phase,
        )
        if not stalled_ids:
            return []

        stalled_set = set(stalled_ids)
        chains = [
            chain
            for chain in await ChainRepository.list_by_session(
                self._db, session_id, phase=phase
            )
            if chain.id in stalled_set
        ]
        self._announce_stalls(session_id, stalled_ids)
        return chains

    async def close(self, chain_id: uuid.UUID) -> ChainClosure:
        """Complete a chain and discard its token. Idempotent.

        The final holder is reported but not marked present.

        Raises:
            ChainNotFoundError: Chain does not exist.
        """
        chain = await ChainRepository.get_by_id(self._db, chain_id)
        if chain is None:
            raise ChainNotFoundError(str(chain_id))

        # Token row first, then chain row: the same lock order as a hand-off
        await TokenRepository.delete_for_chain(self._db, chain_id)
        now = datetime.now(UTC)
        closed_now = await ChainRepository.complete(self._db, chain_id=chain_id, now=now)
        # A hand-off that committed while the first delete waited left a successor
        await TokenRepository.delete_for_chain(self._db, chain_id)

        chain = await ChainRepository.get_by_id(self._db, chain_id, refresh=True)
        if chain is None:
            raise ChainNotFoundError(str(chain_id))
        completed_at = chain.completed_at or now

        if closed_now:
            logger.info(
                "Closed chain %s at sequence %d (final holder %s)",
                chain_id,
                chain.sequence,
                chain.current_holder_id,
            )
            self._outbox.add(
                chain.session_id,
                CHAIN_CLOSED,
                {
                    **_chain_summary(chain),
                    "completed_at": completed_at.isoformat(),
                },
            )

        return ChainClosure(
            chain_id=chain_id,
            final_holder_id=chain.current_holder_id,
            completed_at=completed_at,
        )

    async def list_chains(
        self,
        session_id: uuid.UUID,
        phase: ChainPhase | None = None,
    ) -> list[Chain]:
        """List a session's chains.

        Raises:
            SessionNotFoundError: Session does not exist.
        """
        session = await SessionRepository.get_by_id(self._db, session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        return await ChainRepository.list_by_session(self._db, session_id, phase=phase)

    async def get_history(
        self, chain_id: uuid.UUID
    ) -> tuple[Chain, list[TransferHistory]]:
        """Return a chain with its transfers ordered by sequence.

        Raises:
            ChainNotFoundError: Chain does not exist.
        """
        chain = await ChainRepository.get_by_id(self._db, chain_id, refresh=True)
        if chain is None:
            raise ChainNotFoundError(str(chain_id))
        entries = await ChainRepository.list_history(self._db, chain_id)
        return chain, entries

    def _stale_before(self) -> datetime:
        return datetime.now(UTC) - timedelta(seconds=settings.stall_threshold_seconds)

    def _announce_stalls(
        self, session_id: uuid.UUID, chain_ids: list[uuid.UUID]
    ) -> None:
        logger.warning(
            "%d chain(s) stalled in session %s", len(chain_ids), session_id
        )
        self._outbox.add(
            session_id,
            STALL_ALERT,
            {"chain_ids": [str(chain_id) for chain_id in chain_ids]},
        )
