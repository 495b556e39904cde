"""Attendance session models - sessions and their participants.

The core only reads sessions (geofence configuration, late cutoff) and
participant presence. Full scheduling and enrollment live elsewhere.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from chain_attendance.models.base import Base

_DEFAULT_UUID = text("gen_random_uuid()")

GEOFENCE_MODES = ("off", "warn", "enforce")


class AttendanceSession(Base):
    """A scheduled gathering whose attendance is collected by chains.

    Attributes:
        id: UUID primary key.
        name: Display name.
        organizer_id: Participant id of the organizer who created it.
        starts_at: Scheduled start.
        late_cutoff_minutes: Entry marks after starts_at + cutoff are LATE.
        anchor_latitude: Geofence anchor latitude (None = no geofence).
        anchor_longitude: Geofence anchor longitude.
        geofence_radius_m: Allowed distance from the anchor in meters.
        geofence_mode: 'off', 'warn' or 'enforce'.
        require_challenge: Scans must carry a confirmation code.
        created_at: Creation timestamp.
    """

    __tablename__ = "attendance_sessions"
    __table_args__ = (
        CheckConstraint(
            "geofence_mode IN ('off', 'warn', 'enforce')",
            name="ck_attendance_sessions_geofence_mode",
        ),
        CheckConstraint(
            "geofence_radius_m > 0", name="ck_attendance_sessions_radius_positive"
        ),
        CheckConstraint(
            "late_cutoff_minutes >= 0",
            name="ck_attendance_sessions_late_cutoff_nonneg",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=_DEFAULT_UUID,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    organizer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    late_cutoff_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=15, server_default="15"
    )
    anchor_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    anchor_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_radius_m: Mapped[float] = mapped_column(
        Float, nullable=False, default=100.0, server_default="100"
    )
    geofence_mode: Mapped[str] = mapped_column(
        String(10), nullable=False, default="off", server_default="off"
    )
    require_challenge: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class SessionParticipant(Base):
    """A participant who joined a session, with presence heartbeat fields.

    Attributes:
        session_id: FK to attendance_sessions.
        participant_id: Identity-provider subject.
        joined_at: First heartbeat.
        last_seen_at: Most recent heartbeat.
        is_online: Client-reported foreground flag.
        left_early_at: Set when the participant left before the exit chain.
    """

    __tablename__ = "session_participants"
    __table_args__ = (
        Index("idx_session_participants_last_seen", "session_id", "last_seen_at"),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    participant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    is_online: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    left_early_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
