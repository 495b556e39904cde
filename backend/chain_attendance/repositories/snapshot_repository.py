"""Repository for presence snapshots."""

import uuid
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.snapshot import (
    SNAPSHOT_ACTIVE,
    SNAPSHOT_COMPLETED,
    Snapshot,
)


class SnapshotRepository:
    """Stateless repository for Snapshot table operations.

    All methods are static - no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        snapshot_index: int,
        captured_at: datetime,
        chains_created: int,
        total_participants: int,
    ) -> Snapshot:
        """Create an ACTIVE snapshot.

        Args:
            db: Async database session.
            session_id: Owning session.
            snapshot_index: 1-based ordinal within the session.
            captured_at: Capture time.
            chains_created: Number of SNAPSHOT chains seeded.
            total_participants: Participants eligible at capture time.

        Returns:
            Created Snapshot.
        """
        snapshot = Snapshot(
            id=uuid.uuid4(),
            session_id=session_id,
            snapshot_index=snapshot_index,
            captured_at=captured_at,
            chains_created=chains_created,
            total_participants=total_participants,
            state=SNAPSHOT_ACTIVE,
        )
        db.add(snapshot)
        await db.flush()
        return snapshot

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        snapshot_id: uuid.UUID,
        *,
        refresh: bool = False,
    ) -> Snapshot | None:
        """Fetch a snapshot by primary key."""
        return await db.get(Snapshot, snapshot_id, populate_existing=refresh)

    @staticmethod
    async def next_index(db: AsyncSession, session_id: uuid.UUID) -> int:
        """Return the next 1-based snapshot index for a session."""
        stmt = select(func.coalesce(func.max(Snapshot.snapshot_index), 0)).where(
            Snapshot.session_id == session_id
        )
        result = await db.execute(stmt)
        current: int = result.scalar_one()
        return current + 1

    @staticmethod
    async def list_by_session(
        db: AsyncSession, session_id: uuid.UUID
    ) -> list[Snapshot]:
        """List a session's snapshots in capture order."""
        stmt = (
            select(Snapshot)
            .where(Snapshot.session_id == session_id)
            .order_by(Snapshot.snapshot_index)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def complete(
        db: AsyncSession,
        *,
        snapshot_id: uuid.UUID,
        present_count: int,
        now: datetime,
    ) -> bool:
        """Conditionally transition an ACTIVE snapshot to COMPLETED.

        Returns:
            True if this call completed the snapshot.
        """
        stmt = (
            update(Snapshot)
            .where(Snapshot.id == snapshot_id, Snapshot.state == SNAPSHOT_ACTIVE)
            .values(
                state=SNAPSHOT_COMPLETED,
                completed_at=now,
                present_count=present_count,
            )
            .returning(Snapshot.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None
