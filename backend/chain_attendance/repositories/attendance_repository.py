"""Repository for attendance marks.

Marks are written by insert-if-absent: the (session, participant,
direction) primary key plus ON CONFLICT DO NOTHING makes a retried or
duplicated hand-off a no-op instead of a second credit.
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.attendance import (
    METHOD_CHAIN,
    AttendanceMark,
    Direction,
)


class AttendanceRepository:
    """Stateless repository for AttendanceMark table operations.

    All methods are static - no instance state.
    """

    @staticmethod
    async def mark_if_absent(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        participant_id: str,
        direction: Direction,
        status: str,
        chain_id: uuid.UUID | None,
        marked_at: datetime,
        latitude: float | None = None,
        longitude: float | None = None,
        distance_m: float | None = None,
        warning: str | None = None,
    ) -> bool:
        """Insert an attendance mark unless one already exists.

        Args:
            db: Async database session.
            session_id: Session UUID.
            participant_id: Participant being marked.
            direction: ENTRY or EXIT.
            status: PRESENT, LATE or VERIFIED.
            chain_id: Chain whose hand-off produced the mark.
            marked_at: Mark timestamp.
            latitude: Scanner-reported latitude for audit.
            longitude: Scanner-reported longitude for audit.
            distance_m: Distance from the session anchor for audit.
            warning: Advisory warning to store with the mark.

        Returns:
            True if a new mark was written, False if one already existed.
        """
        stmt = (
            insert(AttendanceMark)
            .values(
                session_id=session_id,
                participant_id=participant_id,
                direction=direction.value,
                status=status,
                method=METHOD_CHAIN,
                chain_id=chain_id,
                marked_at=marked_at,
                latitude=latitude,
                longitude=longitude,
                distance_m=distance_m,
                warning=warning,
            )
            .on_conflict_do_nothing(
                index_elements=["session_id", "participant_id", "direction"]
            )
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        rows_inserted: int = result.rowcount
        return rows_inserted > 0

    @staticmethod
    async def get(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        participant_id: str,
        direction: Direction,
    ) -> AttendanceMark | None:
        """Look up a mark by its composite key."""
        return await db.get(
            AttendanceMark, (session_id, participant_id, direction.value)
        )

    @staticmethod
    async def list_by_session(
        db: AsyncSession,
        session_id: uuid.UUID,
        *,
        direction: Direction | None = None,
    ) -> list[AttendanceMark]:
        """List marks for a session, oldest first.

        Args:
            db: Async database session.
            session_id: Session UUID.
            direction: Optional ENTRY/EXIT filter.

        Returns:
            List of AttendanceMark rows.
        """
        conditions = [AttendanceMark.session_id == session_id]
        if direction is not None:
            conditions.append(AttendanceMark.direction == direction.value)
        stmt = (
            select(AttendanceMark)
            .where(*conditions)
            .order_by(AttendanceMark.marked_at, AttendanceMark.participant_id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
