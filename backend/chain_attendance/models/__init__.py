"""SQLAlchemy ORM models for Chain Attendance.

All models are exported from this module for convenient imports:
    from chain_attendance.models import Chain, ChainToken, ...

Models are organized by domain:
- attendance_session.py: AttendanceSession, SessionParticipant
- chain.py: Chain, ChainToken, TransferHistory
- attendance.py: AttendanceMark
- snapshot.py: Snapshot
"""

from chain_attendance.models.attendance import (
    AttendanceMark,
    Direction,
    MarkStatus,
)
from chain_attendance.models.attendance_session import (
    AttendanceSession,
    SessionParticipant,
)
from chain_attendance.models.base import Base
from chain_attendance.models.chain import (
    Chain,
    ChainPhase,
    ChainState,
    ChainToken,
    TransferHistory,
)
from chain_attendance.models.snapshot import Snapshot

__all__ = [
    # Base classes
    "Base",
    # Sessions
    "AttendanceSession",
    "SessionParticipant",
    # Chains
    "Chain",
    "ChainPhase",
    "ChainState",
    "ChainToken",
    "TransferHistory",
    # Attendance
    "AttendanceMark",
    "Direction",
    "MarkStatus",
    # Snapshots
    "Snapshot",
]
