"""Snapshot model - a point-in-time presence capture.

Snapshots own a batch of SNAPSHOT-phase chains. Completion records the
number of distinct participants seen in those chains' transfer history;
the entry/exit attendance marks are never touched.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from chain_attendance.models.base import Base

_DEFAULT_UUID = text("gen_random_uuid()")

SNAPSHOT_ACTIVE = "ACTIVE"
SNAPSHOT_COMPLETED = "COMPLETED"


class Snapshot(Base):
    """A presence capture run over currently active participants.

    Attributes:
        id: UUID primary key.
        session_id: FK to attendance_sessions.
        snapshot_index: 1-based ordinal within the session.
        captured_at: When the snapshot chains were seeded.
        chains_created: Number of SNAPSHOT chains seeded.
        total_participants: Participants eligible at capture time.
        state: ACTIVE or COMPLETED.
        completed_at: When the snapshot was completed.
        present_count: Distinct participants in the transfer graph.
    """

    __tablename__ = "snapshots"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "snapshot_index", name="uq_snapshots_session_index"
        ),
        CheckConstraint(
            "state IN ('ACTIVE', 'COMPLETED')", name="ck_snapshots_state"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=_DEFAULT_UUID,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    snapshot_index: Mapped[int] = mapped_column(Integer, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    chains_created: Mapped[int] = mapped_column(Integer, nullable=False)
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=SNAPSHOT_ACTIVE,
        server_default=SNAPSHOT_ACTIVE,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    present_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
