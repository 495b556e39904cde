"""Repository for chains and their transfer history.

Every state change on a chain is a single conditional UPDATE: the WHERE
clause carries the expected state (and, for hand-offs, the expected
sequence) so two racing writers can never both succeed.
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import func, select, union, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.chain import (
    Chain,
    ChainPhase,
    ChainState,
    TransferHistory,
)


class ChainRepository:
    """Stateless repository for Chain and TransferHistory operations.

    All methods are static - no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        phase: ChainPhase,
        batch_index: int,
        holder_id: str,
        now: datetime,
        snapshot_id: uuid.UUID | None = None,
    ) -> Chain:
        """Create an ACTIVE chain at sequence 0.

        Args:
            db: Async database session.
            session_id: Owning session.
            phase: ENTRY, EXIT or SNAPSHOT.
            batch_index: Seeding round number.
            holder_id: First holder.
            now: Creation and initial activity time.
            snapshot_id: Owning snapshot for SNAPSHOT chains.

        Returns:
            Created Chain.
        """
        chain = Chain(
            id=uuid.uuid4(),
            session_id=session_id,
            phase=phase.value,
            state=ChainState.ACTIVE.value,
            batch_index=batch_index,
            current_holder_id=holder_id,
            sequence=0,
            last_activity_at=now,
            created_at=now,
            snapshot_id=snapshot_id,
        )
        db.add(chain)
        await db.flush()
        return chain

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        chain_id: uuid.UUID,
        *,
        refresh: bool = False,
    ) -> Chain | None:
        """Fetch a chain by primary key.

        Args:
            db: Async database session.
            chain_id: Chain UUID.
            refresh: Reload column values even if the chain is already
                in the identity map (needed after a bulk UPDATE).

        Returns:
            Chain if found, None otherwise.
        """
        return await db.get(Chain, chain_id, populate_existing=refresh)

    @staticmethod
    async def list_by_session(
        db: AsyncSession,
        session_id: uuid.UUID,
        *,
        phase: ChainPhase | None = None,
    ) -> list[Chain]:
        """List a session's chains in seeding order.

        Args:
            db: Async database session.
            session_id: Session UUID.
            phase: Optional phase filter.

        Returns:
            Chains ordered by batch, then creation time.
        """
        conditions = [Chain.session_id == session_id]
        if phase is not None:
            conditions.append(Chain.phase == phase.value)
        stmt = (
            select(Chain)
            .where(*conditions)
            .order_by(Chain.batch_index, Chain.created_at, Chain.id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_by_snapshot(
        db: AsyncSession, snapshot_id: uuid.UUID
    ) -> list[Chain]:
        """List the SNAPSHOT chains owned by a snapshot."""
        stmt = (
            select(Chain)
            .where(Chain.snapshot_id == snapshot_id)
            .order_by(Chain.created_at, Chain.id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def next_batch_index(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        phase: ChainPhase,
    ) -> int:
        """Return max(batch_index) + 1 for the session's chains of a phase."""
        stmt = select(func.coalesce(func.max(Chain.batch_index), 0)).where(
            Chain.session_id == session_id,
            Chain.phase == phase.value,
        )
        result = await db.execute(stmt)
        current: int = result.scalar_one()
        return current + 1

    @staticmethod
    async def advance(
        db: AsyncSession,
        *,
        chain_id: uuid.UUID,
        expected_sequence: int,
        expected_holder_id: str,
        new_holder_id: str,
        now: datetime,
    ) -> tuple[int, str, uuid.UUID | None] | None:
        """Move a chain to its next holder.

        Succeeds only when the chain is still at expected_sequence, held by
        expected_holder_id and not COMPLETED. A STALLED chain returns to
        ACTIVE.

        Args:
            db: Async database session.
            chain_id: Chain UUID.
            expected_sequence: Sequence the caller observed.
            expected_holder_id: Holder the caller observed.
            new_holder_id: Participant receiving the chain.
            now: Transfer time.

        Returns:
            (new sequence, phase, snapshot_id) on success, None otherwise.
        """
        stmt = (
            update(Chain)
            .where(
                Chain.id == chain_id,
                Chain.sequence == expected_sequence,
                Chain.current_holder_id == expected_holder_id,
                Chain.state != ChainState.COMPLETED.value,
            )
            .values(
                sequence=Chain.sequence + 1,
                current_holder_id=new_holder_id,
                last_activity_at=now,
                state=ChainState.ACTIVE.value,
            )
            .returning(Chain.sequence, Chain.phase, Chain.snapshot_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return row.sequence, row.phase, row.snapshot_id

    @staticmethod
    async def mark_stalled(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        stale_before: datetime,
        chain_id: uuid.UUID | None = None,
        phase: ChainPhase | None = None,
    ) -> list[uuid.UUID]:
        """Transition idle ACTIVE chains to STALLED.

        Args:
            db: Async database session.
            session_id: Session UUID.
            stale_before: Chains whose last activity is earlier than this stall.
            chain_id: Restrict to one chain.
            phase: Restrict to one phase.

        Returns:
            Ids of the chains that transitioned.
        """
        conditions = [
            Chain.session_id == session_id,
            Chain.state == ChainState.ACTIVE.value,
            Chain.last_activity_at < stale_before,
        ]
        if chain_id is not None:
            conditions.append(Chain.id == chain_id)
        if phase is not None:
            conditions.append(Chain.phase == phase.value)

        stmt = (
            update(Chain)
            .where(*conditions)
            .values(state=ChainState.STALLED.value)
            .returning(Chain.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def complete(
        db: AsyncSession,
        *,
        chain_id: uuid.UUID,
        now: datetime,
    ) -> bool:
        """Transition an open chain to COMPLETED.

        Args:
            db: Async database session.
            chain_id: Chain UUID.
            now: Completion time.

        Returns:
            True if this call completed the chain, False if it was missing
            or already COMPLETED.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(Chain)
                .where(
                    Chain.id == chain_id,
                    Chain.state != ChainState.COMPLETED.value,
                )
                .values(state=ChainState.COMPLETED.value, completed_at=now)
                .execution_options(synchronize_session=False)
            ),
        )
        rows_updated: int = result.rowcount
        return rows_updated > 0

    # =========================================================================
    # Transfer history
    # =========================================================================

    @staticmethod
    async def append_history(
        db: AsyncSession,
        *,
        chain_id: uuid.UUID,
        sequence: int,
        session_id: uuid.UUID,
        from_holder_id: str,
        to_holder_id: str,
        phase: str,
        transferred_at: datetime,
        snapshot_id: uuid.UUID | None = None,
    ) -> TransferHistory:
        """Append one hand-off to the audit ledger.

        The (chain_id, sequence) primary key rejects a duplicate sequence.
        """
        entry = TransferHistory(
            chain_id=chain_id,
            sequence=sequence,
            session_id=session_id,
            from_holder_id=from_holder_id,
            to_holder_id=to_holder_id,
            phase=phase,
            snapshot_id=snapshot_id,
            transferred_at=transferred_at,
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def list_history(
        db: AsyncSession, chain_id: uuid.UUID
    ) -> list[TransferHistory]:
        """List a chain's transfers ordered by sequence."""
        stmt = (
            select(TransferHistory)
            .where(TransferHistory.chain_id == chain_id)
            .order_by(TransferHistory.sequence)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_snapshot_participants(
        db: AsyncSession, snapshot_id: uuid.UUID
    ) -> set[str]:
        """Distinct participants on either side of a snapshot's transfers."""
        senders = select(TransferHistory.from_holder_id.label("participant_id")).where(
            TransferHistory.snapshot_id == snapshot_id
        )
        receivers = select(TransferHistory.to_holder_id.label("participant_id")).where(
            TransferHistory.snapshot_id == snapshot_id
        )
        result = await db.execute(union(senders, receivers))
        return set(result.scalars().all())
