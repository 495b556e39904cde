"""Shared fixtures for database-backed repository and service tests.

Builds a session with a handful of online participants so chains can be
seeded without going through the HTTP layer.
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.attendance_session import (
    AttendanceSession,
    SessionParticipant,
)

PARTICIPANT_IDS = ("alice", "bob", "carol", "dave")


@pytest.fixture
async def attendance_session(db_session: AsyncSession) -> AttendanceSession:
    """An open session without geofence or challenge requirements."""
    session = AttendanceSession(
        name="Lecture 1",
        organizer_id="organizer-1",
        starts_at=datetime.now(UTC) - timedelta(minutes=5),
        late_cutoff_minutes=15,
        geofence_radius_m=100.0,
        geofence_mode="off",
        require_challenge=False,
    )
    db_session.add(session)
    await db_session.flush()
    await db_session.refresh(session)
    return session


@pytest.fixture
async def participants(
    db_session: AsyncSession, attendance_session: AttendanceSession
) -> list[str]:
    """Join PARTICIPANT_IDS to the session as online."""
    now = datetime.now(UTC)
    for participant_id in PARTICIPANT_IDS:
        db_session.add(
            SessionParticipant(
                session_id=attendance_session.id,
                participant_id=participant_id,
                joined_at=now,
                last_seen_at=now,
                is_online=True,
            )
        )
    await db_session.flush()
    return list(PARTICIPANT_IDS)
