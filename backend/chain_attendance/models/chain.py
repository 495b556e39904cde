"""Chain models - chains, their live token, and the transfer ledger.

A chain is one line of custody through a group of participants. Exactly
one token row exists per open chain; redemption deletes it and inserts the
successor in the same transaction. TransferHistory is append-only.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
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


class ChainPhase(enum.StrEnum):
    """Which attendance run a chain belongs to."""

    ENTRY = "ENTRY"
    EXIT = "EXIT"
    SNAPSHOT = "SNAPSHOT"


class ChainState(enum.StrEnum):
    """Chain lifecycle state. STALLED is advisory; COMPLETED is terminal."""

    ACTIVE = "ACTIVE"
    STALLED = "STALLED"
    COMPLETED = "COMPLETED"


OPEN_CHAIN_STATES = (ChainState.ACTIVE.value, ChainState.STALLED.value)


class Chain(Base):
    """One attendance-collection run within a session.

    Attributes:
        id: UUID primary key.
        session_id: FK to attendance_sessions.
        phase: ENTRY, EXIT or SNAPSHOT.
        state: ACTIVE, STALLED or COMPLETED.
        batch_index: Seeding round this chain was created in (1-based).
        current_holder_id: Participant entitled to display the live token.
        sequence: Successful transfers so far (starts at 0).
        last_activity_at: Seed time or most recent transfer.
        created_at: Seed time.
        completed_at: Set when closed.
        snapshot_id: Owning snapshot for SNAPSHOT chains.
    """

    __tablename__ = "chains"
    __table_args__ = (
        CheckConstraint(
            "phase IN ('ENTRY', 'EXIT', 'SNAPSHOT')", name="ck_chains_phase"
        ),
        CheckConstraint(
            "state IN ('ACTIVE', 'STALLED', 'COMPLETED')", name="ck_chains_state"
        ),
        CheckConstraint("sequence >= 0", name="ck_chains_sequence_nonneg"),
        Index("idx_chains_session_phase", "session_id", "phase"),
        Index("idx_chains_session_holder", "session_id", "current_holder_id"),
        Index("idx_chains_snapshot", "snapshot_id"),
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
    phase: Mapped[str] = mapped_column(String(10), nullable=False)
    state: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=ChainState.ACTIVE.value,
        server_default=ChainState.ACTIVE.value,
    )
    batch_index: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )
    current_holder_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    snapshot_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("snapshots.id", ondelete="CASCADE"),
        nullable=True,
    )

    @property
    def is_open(self) -> bool:
        """True while the chain can still accept a redemption."""
        return self.state in OPEN_CHAIN_STATES


class ChainToken(Base):
    """The single redeemable credential for a chain.

    No history is kept here: a redeemed token row is deleted and the
    successor inserted in the same transaction, so the unique constraint
    on chain_id holds the one-live-token-per-chain rule.

    Attributes:
        id: Random URL-safe identifier shown in the holder's QR code.
        session_id: Denormalized partition key.
        chain_id: Owning chain (unique).
        holder_id: Must equal the chain's current holder.
        sequence: Chain sequence at issuance.
        expires_at: Hard expiry.
        created_at: Issuance time.
        challenge_requester_id: Scanner bound to the pending challenge.
        challenge_hash: SHA-256 hex digest of the pending code.
        challenge_expires_at: Pending challenge expiry.
    """

    __tablename__ = "chain_tokens"
    __table_args__ = (
        CheckConstraint("sequence >= 0", name="ck_chain_tokens_sequence_nonneg"),
        Index("idx_chain_tokens_session_holder", "session_id", "holder_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    chain_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chains.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    holder_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    challenge_requester_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    challenge_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    challenge_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class TransferHistory(Base):
    """Immutable audit record of one hand-off.

    Keyed by (chain_id, sequence) so replay is ordered and a duplicate
    sequence for the same chain is impossible.
    """

    __tablename__ = "transfer_history"
    __table_args__ = (
        CheckConstraint("sequence >= 1", name="ck_transfer_history_sequence_pos"),
        Index("idx_transfer_history_session", "session_id"),
        Index("idx_transfer_history_snapshot", "snapshot_id"),
    )

    chain_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chains.id", ondelete="CASCADE"),
        primary_key=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    from_holder_id: Mapped[str] = mapped_column(String(255), nullable=False)
    to_holder_id: Mapped[str] = mapped_column(String(255), nullable=False)
    phase: Mapped[str] = mapped_column(String(10), nullable=False)
    snapshot_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    transferred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
