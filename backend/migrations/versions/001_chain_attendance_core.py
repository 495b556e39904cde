"""Create attendance sessions, chains, tokens, history, marks and snapshots.

Revision ID: 001_chain_attendance_core
Revises: 000_enable_extensions
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_chain_attendance_core"
down_revision: str | None = "000_enable_extensions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Attendance sessions - read by the chain protocol for geofence and cutoff
    op.create_table(
        "attendance_sessions",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("organizer_id", sa.String(255), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "late_cutoff_minutes", sa.Integer(), nullable=False, server_default="15"
        ),
        sa.Column("anchor_latitude", sa.Float(), nullable=True),
        sa.Column("anchor_longitude", sa.Float(), nullable=True),
        sa.Column(
            "geofence_radius_m", sa.Float(), nullable=False, server_default="100"
        ),
        sa.Column(
            "geofence_mode", sa.String(10), nullable=False, server_default="off"
        ),
        sa.Column(
            "require_challenge", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "geofence_mode IN ('off', 'warn', 'enforce')",
            name="ck_attendance_sessions_geofence_mode",
        ),
        sa.CheckConstraint(
            "geofence_radius_m > 0", name="ck_attendance_sessions_radius_positive"
        ),
        sa.CheckConstraint(
            "late_cutoff_minutes >= 0",
            name="ck_attendance_sessions_late_cutoff_nonneg",
        ),
    )

    # Session participants - presence heartbeats decide chain eligibility
    op.create_table(
        "session_participants",
        sa.Column(
            "session_id",
            sa.UUID(),
            sa.ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("participant_id", sa.String(255), primary_key=True),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "last_seen_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("left_early_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_session_participants_last_seen",
        "session_participants",
        ["session_id", "last_seen_at"],
    )

    # Snapshots - created before chains, which reference them
    op.create_table(
        "snapshots",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "session_id",
            sa.UUID(),
            sa.ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("snapshot_index", sa.Integer(), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("chains_created", sa.Integer(), nullable=False),
        sa.Column("total_participants", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(10), nullable=False, server_default="ACTIVE"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("present_count", sa.Integer(), nullable=True),
        sa.UniqueConstraint(
            "session_id", "snapshot_index", name="uq_snapshots_session_index"
        ),
        sa.CheckConstraint(
            "state IN ('ACTIVE', 'COMPLETED')", name="ck_snapshots_state"
        ),
    )

    # Chains - one attendance-collection run; never deleted
    op.create_table(
        "chains",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "session_id",
            sa.UUID(),
            sa.ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("phase", sa.String(10), nullable=False),
        sa.Column("state", sa.String(10), nullable=False, server_default="ACTIVE"),
        sa.Column("batch_index", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_holder_id", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "snapshot_id",
            sa.UUID(),
            sa.ForeignKey("snapshots.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.CheckConstraint(
            "phase IN ('ENTRY', 'EXIT', 'SNAPSHOT')", name="ck_chains_phase"
        ),
        sa.CheckConstraint(
            "state IN ('ACTIVE', 'STALLED', 'COMPLETED')", name="ck_chains_state"
        ),
        sa.CheckConstraint("sequence >= 0", name="ck_chains_sequence_nonneg"),
    )
    op.create_index("idx_chains_session_phase", "chains", ["session_id", "phase"])
    op.create_index(
        "idx_chains_session_holder", "chains", ["session_id", "current_holder_id"]
    )
    op.create_index("idx_chains_snapshot", "chains", ["snapshot_id"])

    # Chain tokens - at most one row per chain, enforced by the unique chain_id
    op.create_table(
        "chain_tokens",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "session_id",
            sa.UUID(),
            sa.ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "chain_id",
            sa.UUID(),
            sa.ForeignKey("chains.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("holder_id", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("challenge_requester_id", sa.String(255), nullable=True),
        sa.Column("challenge_hash", sa.String(64), nullable=True),
        sa.Column("challenge_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("sequence >= 0", name="ck_chain_tokens_sequence_nonneg"),
    )
    op.create_index(
        "idx_chain_tokens_session_holder", "chain_tokens", ["session_id", "holder_id"]
    )

    # Transfer history - append-only audit ledger
    op.create_table(
        "transfer_history",
        sa.Column(
            "chain_id",
            sa.UUID(),
            sa.ForeignKey("chains.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("sequence", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.UUID(), nullable=False),
        sa.Column("from_holder_id", sa.String(255), nullable=False),
        sa.Column("to_holder_id", sa.String(255), nullable=False),
        sa.Column("phase", sa.String(10), nullable=False),
        sa.Column("snapshot_id", sa.UUID(), nullable=True),
        sa.Column("transferred_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "sequence >= 1", name="ck_transfer_history_sequence_pos"
        ),
    )
    op.create_index("idx_transfer_history_session", "transfer_history", ["session_id"])
    op.create_index(
        "idx_transfer_history_snapshot", "transfer_history", ["snapshot_id"]
    )

    # Attendance marks - at most one per (session, participant, direction)
    op.create_table(
        "attendance_marks",
        sa.Column(
            "session_id",
            sa.UUID(),
            sa.ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("participant_id", sa.String(255), primary_key=True),
        sa.Column("direction", sa.String(10), primary_key=True),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("chain_id", sa.UUID(), nullable=True),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("distance_m", sa.Float(), nullable=True),
        sa.Column("warning", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "direction IN ('ENTRY', 'EXIT')", name="ck_attendance_marks_direction"
        ),
        sa.CheckConstraint(
            "status IN ('PRESENT', 'LATE', 'VERIFIED')",
            name="ck_attendance_marks_status",
        ),
    )


def downgrade() -> None:
    op.drop_table("attendance_marks")
    op.drop_index("idx_transfer_history_snapshot", table_name="transfer_history")
    op.drop_index("idx_transfer_history_session", table_name="transfer_history")
    op.drop_table("transfer_history")
    op.drop_index("idx_chain_tokens_session_holder", table_name="chain_tokens")
    op.drop_table("chain_tokens")
    op.drop_index("idx_chains_snapshot", table_name="chains")
    op.drop_index("idx_chains_session_holder", table_name="chains")
    op.drop_index("idx_chains_session_phase", table_name="chains")
    op.drop_table("chains")
    op.drop_table("snapshots")
    op.drop_index(
        "idx_session_participants_last_seen", table_name="session_participants"
    )
    op.drop_table("session_participants")
    op.drop_table("attendance_sessions")
