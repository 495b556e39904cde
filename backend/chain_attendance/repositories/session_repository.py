"""Repository for attendance sessions and participant presence.

Sessions are read by the chain protocol for geofence configuration and the
late cutoff. Participant rows carry the heartbeat fields that decide who is
"recently active" and therefore eligible to hold a chain.
"""

import uuid
from datetime import datetime

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.attendance import AttendanceMark, Direction
from chain_attendance.models.attendance_session import (
    AttendanceSession,
    SessionParticipant,
)
from chain_attendance.models.chain import ChainPhase


class SessionRepository:
    """Stateless repository for AttendanceSession and SessionParticipant.

    All methods are static - no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        organizer_id: str,
        starts_at: datetime,
        late_cutoff_minutes: int = 15,
        anchor_latitude: float | None = None,
        anchor_longitude: float | None = None,
        geofence_radius_m: float = 100.0,
        geofence_mode: str = "off",
        require_challenge: bool = False,
    ) -> AttendanceSession:
        """Create a new attendance session.

        Args:
            db: Async database session.
            name: Display name.
            organizer_id: Participant id of the creating organizer.
            starts_at: Scheduled start.
            late_cutoff_minutes: Minutes after start before entries count as late.
            anchor_latitude: Geofence anchor latitude, or None.
            anchor_longitude: Geofence anchor longitude, or None.
            geofence_radius_m: Allowed radius in meters.
            geofence_mode: One of off, warn, enforce.
            require_challenge: Whether scans must carry a confirmation code.

        Returns:
            Created AttendanceSession with database-generated fields.
        """
        session = AttendanceSession(
            name=name,
            organizer_id=organizer_id,
            starts_at=starts_at,
            late_cutoff_minutes=late_cutoff_minutes,
            anchor_latitude=anchor_latitude,
            anchor_longitude=anchor_longitude,
            geofence_radius_m=geofence_radius_m,
            geofence_mode=geofence_mode,
            require_challenge=require_challenge,
        )
        db.add(session)
        await db.flush()
        await db.refresh(session)
        return session

    @staticmethod
    async def get_by_id(
        db: AsyncSession, session_id: uuid.UUID
    ) -> AttendanceSession | None:
        """Fetch a session by primary key.

        Args:
            db: Async database session.
            session_id: Session UUID.

        Returns:
            AttendanceSession if found, None otherwise.
        """
        return await db.get(AttendanceSession, session_id)

    @staticmethod
    async def get_for_update(
        db: AsyncSession, session_id: uuid.UUID
    ) -> AttendanceSession | None:
        """Fetch a session holding FOR NO KEY UPDATE until the transaction ends.

        Serializes seeding within a session. The lock does not conflict with
        the FOR KEY SHARE taken by foreign-key checks, so scans and
        heartbeats writing rows that reference the session are not blocked.
        """
        stmt = (
            select(AttendanceSession)
            .where(AttendanceSession.id == session_id)
            .with_for_update(key_share=True)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def record_heartbeat(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        participant_id: str,
        is_online: bool,
        now: datetime,
        left_early: bool = False,
    ) -> SessionParticipant:
        """Upsert a participant's presence row.

        The first heartbeat joins the participant to the session; later
        heartbeats refresh last_seen_at and is_online. Once set,
        left_early_at is never cleared.

        Args:
            db: Async database session.
            session_id: Session UUID.
            participant_id: Participant sending the heartbeat.
            is_online: Client-reported foreground flag.
            now: Heartbeat time.
            left_early: Mark the participant as having left early.

        Returns:
            The participant row after the upsert.
        """
        values: dict = {
            "session_id": session_id,
            "participant_id": participant_id,
            "joined_at": now,
            "last_seen_at": now,
            "is_online": is_online,
        }
        update_values: dict = {"last_seen_at": now, "is_online": is_online}
        if left_early:
            values["left_early_at"] = now
            update_values["left_early_at"] = now

        stmt = (
            insert(SessionParticipant)
            .values(**values)
            .on_conflict_do_update(
                index_elements=["session_id", "participant_id"],
                set_=update_values,
            )
            .returning(SessionParticipant)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def list_eligible_participants(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        phase: ChainPhase,
        online_since: datetime,
    ) -> list[str]:
        """List participants who may be chosen to hold a new chain.

        Every phase requires the participant to be recently active
        (is_online, or a heartbeat at or after online_since). On top of that:

        - ENTRY: no entry mark yet
        - EXIT: has an entry mark, no exit mark, and has not left early
        - SNAPSHOT: no further filter

        Args:
            db: Async database session.
            session_id: Session UUID.
            phase: Phase of the chains being seeded.
            online_since: Oldest heartbeat that still counts as active.

        Returns:
            Participant ids, ordered for stable output.
        """

        def _has_mark(direction: Direction):
            return exists().where(
                AttendanceMark.session_id == SessionParticipant.session_id,
                AttendanceMark.participant_id == SessionParticipant.participant_id,
                AttendanceMark.direction == direction.value,
            )

        conditions = [
            SessionParticipant.session_id == session_id,
            or_(
                SessionParticipant.is_online.is_(True),
                SessionParticipant.last_seen_at >= online_since,
            ),
        ]
        if phase == ChainPhase.ENTRY:
            conditions.append(~_has_mark(Direction.ENTRY))
        elif phase == ChainPhase.EXIT:
            conditions.append(
                and_(
                    _has_mark(Direction.ENTRY),
                    ~_has_mark(Direction.EXIT),
                    SessionParticipant.left_early_at.is_(None),
                )
            )

        stmt = (
            select(SessionParticipant.participant_id)
            .where(*conditions)
            .order_by(SessionParticipant.participant_id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
