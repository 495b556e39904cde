"""Attendance mark model - the side effect of a successful redemption.

Written at most once per (session, participant, direction); inserts use
ON CONFLICT DO NOTHING so retries never double-credit.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from chain_attendance.models.base import Base


class Direction(enum.StrEnum):
    """Which attendance field a mark satisfies."""

    ENTRY = "ENTRY"
    EXIT = "EXIT"


class MarkStatus(enum.StrEnum):
    """Verification outcome recorded on a mark."""

    PRESENT = "PRESENT"
    LATE = "LATE"
    VERIFIED = "VERIFIED"


METHOD_CHAIN = "CHAIN"


class AttendanceMark(Base):
    """One verified attendance fact for a participant.

    Attributes:
        session_id: FK to attendance_sessions.
        participant_id: Participant who was verified.
        direction: ENTRY or EXIT.
        status: PRESENT, LATE or VERIFIED.
        method: How the mark was obtained (e.g., CHAIN).
        chain_id: Chain whose hand-off produced the mark.
        marked_at: When the mark was written.
        latitude: Scanner-reported latitude, if any.
        longitude: Scanner-reported longitude, if any.
        distance_m: Distance from the session anchor, if computed.
        warning: Advisory warning (e.g., warn-mode geofence miss).
    """

    __tablename__ = "attendance_marks"
    __table_args__ = (
        CheckConstraint(
            "direction IN ('ENTRY', 'EXIT')", name="ck_attendance_marks_direction"
        ),
        CheckConstraint(
            "status IN ('PRESENT', 'LATE', 'VERIFIED')",
            name="ck_attendance_marks_status",
        ),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    participant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    direction: Mapped[str] = mapped_column(String(10), primary_key=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    chain_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    marked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    warning: Mapped[str | None] = mapped_column(Text, nullable=True)
