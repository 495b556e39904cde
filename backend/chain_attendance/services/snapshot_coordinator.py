"""Snapshot coordination - point-in-time presence capture.

A snapshot seeds short-lived SNAPSHOT chains over every recently active
participant and runs them through the normal scan path. Completing the
snapshot closes its chains and counts the distinct participants that
appear on either side of their transfers. Entry/exit marks are untouched.
"""

import logging
import random
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.core.config import settings
from chain_attendance.core.errors import (
    InsufficientParticipantsError,
    SessionNotFoundError,
    SnapshotNotFoundError,
    ValidationError,
)
from chain_attendance.models.chain import ChainPhase
from chain_attendance.models.snapshot import SNAPSHOT_COMPLETED, Snapshot
from chain_attendance.repositories.chain_repository import ChainRepository
from chain_attendance.repositories.session_repository import SessionRepository
from chain_attendance.repositories.snapshot_repository import SnapshotRepository
from chain_attendance.services.chain_manager import ChainManager, SeededChain
from chain_attendance.services.event_broadcaster import SNAPSHOT_UPDATE, EventOutbox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotCapture:
    """A newly taken snapshot and the chains seeded for it."""

    snapshot: Snapshot
    chains: list[SeededChain]


@dataclass(frozen=True)
class SnapshotComparison:
    """Difference between two snapshots of the same session.

    Attributes:
        earlier_id: Snapshot captured first.
        later_id: Snapshot captured second.
        new_participants: Seen only in the later snapshot.
        absent_participants: Seen only in the earlier snapshot.
        in_both: Seen in both.
        time_difference_seconds: Gap between the two capture times.
    """

    earlier_id: uuid.UUID
    later_id: uuid.UUID
    new_participants: list[str]
    absent_participants: list[str]
    in_both: list[str]
    time_difference_seconds: float


class SnapshotCoordinator:
    """Takes, completes and compares presence snapshots.

    Args:
        db: Async database session.
        outbox: Collects events to send once the caller commits.
        rng: Random source passed to the chain manager.
    """

    def __init__(
        self,
        db: AsyncSession,
        outbox: EventOutbox | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._db = db
        self._outbox = outbox or EventOutbox()
        self._chains = ChainManager(db, outbox=self._outbox, rng=rng)

    async def take_snapshot(self, session_id: uuid.UUID, count: int) -> SnapshotCapture:
        """Seed SNAPSHOT chains over the currently active participants.

        Args:
            session_id: Session to capture.
            count: Number of chains to seed (1..MAX_SEED_COUNT).

        Returns:
            SnapshotCapture with the recorded snapshot and its chains.

        Raises:
            ValidationError: Count out of range.
            SessionNotFoundError: Session does not exist.
            InsufficientParticipantsError: Nobody is online.
        """
        if not 1 <= count <= settings.max_seed_count:
            raise ValidationError(
                f"count must be between 1 and {settings.max_seed_count}"
            )
        # Held through seeding so concurrent snapshots get distinct indexes
        session = await SessionRepository.get_for_update(self._db, session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))

        now = datetime.now(UTC)
        active = await SessionRepository.list_eligible_participants(
            self._db,
            session_id=session_id,
            phase=ChainPhase.SNAPSHOT,
            online_since=now - timedelta(seconds=settings.online_threshold_seconds),
        )
        if not active:
            raise InsufficientParticipantsError(requested=count, available=0)

        snapshot = await SnapshotRepository.create(
            self._db,
            session_id=session_id,
            snapshot_index=await SnapshotRepository.next_index(self._db, session_id),
            captured_at=now,
            chains_created=min(count, len(active)),
            total_participants=len(active),
        )
        chains = await self._chains.seed(
            session_id, ChainPhase.SNAPSHOT, count, snapshot_id=snapshot.id
        )
        if len(chains) != snapshot.chains_created:
            snapshot.chains_created = len(chains)
            await self._db.flush()

        logger.info(
            "Snapshot %d taken for session %s (%d chains, %d active)",
            snapshot.snapshot_index,
            session_id,
            len(chains),
            len(active),
        )
        self._outbox.add(
            session_id,
            SNAPSHOT_UPDATE,
            {
                "action": "taken",
                "snapshot_id": str(snapshot.id),
                "snapshot_index": snapshot.snapshot_index,
                "chains_created": snapshot.chains_created,
            },
        )
        return SnapshotCapture(snapshot=snapshot, chains=chains)

    async def complete_snapshot(self, snapshot_id: uuid.UUID) -> Snapshot:
        """Close a snapshot's chains and record its present count. Idempotent.

        Raises:
            SnapshotNotFoundError: Snapshot does not exist.
        """
        snapshot = await SnapshotRepository.get_by_id(self._db, snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(str(snapshot_id))
        if snapshot.state == SNAPSHOT_COMPLETED:
            return snapshot

        for chain in await ChainRepository.list_by_snapshot(self._db, snapshot_id):
            await self._chains.close(chain.id)

        present = await ChainRepository.list_snapshot_participants(self._db, snapshot_id)
        completed_now = await SnapshotRepository.complete(
            self._db,
            snapshot_id=snapshot_id,
            present_count=len(present),
            now=datetime.now(UTC),
        )
        snapshot = await SnapshotRepository.get_by_id(self._db, snapshot_id, refresh=True)
        if snapshot is None:
            raise SnapshotNotFoundError(str(snapshot_id))

        if completed_now:
            logger.info(
                "Snapshot %s completed with %d present", snapshot_id, len(present)
            )
            self._outbox.add(
                snapshot.session_id,
                SNAPSHOT_UPDATE,
                {
                    "action": "completed",
                    "snapshot_id": str(snapshot_id),
                    "present_count": snapshot.present_count,
                },
            )
        return snapshot

    async def list_snapshots(self, session_id: uuid.UUID) -> list[Snapshot]:
        """List a session's snapshots in capture order.

        Raises:
            SessionNotFoundError: Session does not exist.
        """
        session = await SessionRepository.get_by_id(self._db, session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        return await SnapshotRepository.list_by_session(self._db, session_id)

    async def compare_snapshots(
        self,
        session_id: uuid.UUID,
        first_id: uuid.UUID,
        second_id: uuid.UUID,
    ) -> SnapshotComparison:
        """Compare who appeared in two snapshots of the same session.

        The snapshots may be given in either order; the earlier capture is
        treated as the baseline.

        Raises:
            SnapshotNotFoundError: Either snapshot is missing or belongs to
                another session.
        """
        snapshots = []
        for snapshot_id in (first_id, second_id):
            snapshot = await SnapshotRepository.get_by_id(self._db, snapshot_id)
            if snapshot is None or snapshot.session_id != session_id:
                raise SnapshotNotFoundError(str(snapshot_id))
            snapshots.append(snapshot)

        earlier, later = sorted(snapshots, key=lambda s: (s.captured_at, s.snapshot_index))
        before = await ChainRepository.list_snapshot_participants(self._db, earlier.id)
        after = await ChainRepository.list_snapshot_participants(self._db, later.id)

        return SnapshotComparison(
            earlier_id=earlier.id,
            later_id=later.id,
            new_participants=sorted(after - before),
            absent_participants=sorted(before - after),
            in_both=sorted(before & after),
            time_difference_seconds=(later.captured_at - earlier.captured_at).total_seconds(),
        )
