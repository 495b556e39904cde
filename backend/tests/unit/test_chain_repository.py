"""Database-backed tests for chain, session, mark and history statements."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.attendance import Direction, MarkStatus
from chain_attendance.models.attendance_session import AttendanceSession
from chain_attendance.models.chain import Chain, ChainPhase, ChainState
from chain_attendance.repositories.attendance_repository import AttendanceRepository
from chain_attendance.repositories.chain_repository import ChainRepository
from chain_attendance.repositories.session_repository import SessionRepository
from chain_attendance.repositories.snapshot_repository import SnapshotRepository


async def _chain(
    db: AsyncSession,
    session: AttendanceSession,
    holder_id: str = "alice",
    *,
    now: datetime | None = None,
    phase: ChainPhase = ChainPhase.ENTRY,
    snapshot_id=None,
) -> Chain:
    return await ChainRepository.create(
        db,
        session_id=session.id,
        phase=phase,
        batch_index=1,
        holder_id=holder_id,
        now=now or datetime.now(UTC),
        snapshot_id=snapshot_id,
    )


async def _mark(
    db: AsyncSession, session: AttendanceSession, participant_id: str, direction
) -> bool:
    return await AttendanceRepository.mark_if_absent(
        db,
        session_id=session.id,
        participant_id=participant_id,
        direction=direction,
        status=MarkStatus.PRESENT.value
        if direction == Direction.ENTRY
        else MarkStatus.VERIFIED.value,
        chain_id=None,
        marked_at=datetime.now(UTC),
    )


# =============================================================================
# advance
# =============================================================================


class TestAdvance:
    """Tests for ChainRepository.advance()."""

    async def test_moves_to_next_holder(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        chain = await _chain(db_session, attendance_session)

        result = await ChainRepository.advance(
            db_session,
            chain_id=chain.id,
            expected_sequence=0,
            expected_holder_id="alice",
            new_holder_id="bob",
            now=datetime.now(UTC),
        )

        assert result == (1, "ENTRY", None)
        chain = await ChainRepository.get_by_id(db_session, chain.id, refresh=True)
        assert chain.current_holder_id == "bob"
        assert chain.sequence == 1

    async def test_stale_sequence_rejected(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        chain = await _chain(db_session, attendance_session)

        result = await ChainRepository.advance(
            db_session,
            chain_id=chain.id,
            expected_sequence=3,
            expected_holder_id="alice",
            new_holder_id="bob",
            now=datetime.now(UTC),
        )

        assert result is None

    async def test_completed_chain_rejected(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        chain = await _chain(db_session, attendance_session)
        await ChainRepository.complete(
            db_session, chain_id=chain.id, now=datetime.now(UTC)
        )

        result = await ChainRepository.advance(
            db_session,
            chain_id=chain.id,
            expected_sequence=0,
            expected_holder_id="alice",
            new_holder_id="bob",
            now=datetime.now(UTC),
        )

        assert result is None

    async def test_stalled_chain_resumes(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        past = datetime.now(UTC) - timedelta(minutes=5)
        chain = await _chain(db_session, attendance_session, now=past)
        await ChainRepository.mark_stalled(
            db_session,
            session_id=attendance_session.id,
            stale_before=datetime.now(UTC) - timedelta(seconds=90),
        )

        result = await ChainRepository.advance(
            db_session,
            chain_id=chain.id,
            expected_sequence=0,
            expected_holder_id="alice",
            new_holder_id="bob",
            now=datetime.now(UTC),
        )

        assert result is not None
        chain = await ChainRepository.get_by_id(db_session, chain.id, refresh=True)
        assert chain.state == ChainState.ACTIVE.value


# =============================================================================
# Stall and completion transitions
# =============================================================================


class TestStateTransitions:
    """Tests for mark_stalled() and complete()."""

    async def test_only_idle_active_chains_stall(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        idle = await _chain(
            db_session,
            attendance_session,
            "alice",
            now=datetime.now(UTC) - timedelta(minutes=5),
        )
        await _chain(db_session, attendance_session, "bob")

        stalled = await ChainRepository.mark_stalled(
            db_session,
            session_id=attendance_session.id,
            stale_before=datetime.now(UTC) - timedelta(seconds=90),
        )
        again = await ChainRepository.mark_stalled(
            db_session,
            session_id=attendance_session.id,
            stale_before=datetime.now(UTC) - timedelta(seconds=90),
        )

        assert stalled == [idle.id]
        assert again == []

    async def test_complete_is_single_shot(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        chain = await _chain(db_session, attendance_session)
        now = datetime.now(UTC)

        assert await ChainRepository.complete(db_session, chain_id=chain.id, now=now)
        assert not await ChainRepository.complete(
            db_session, chain_id=chain.id, now=now
        )

    async def test_batch_index_increments_per_phase(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        assert (
            await ChainRepository.next_batch_index(
                db_session, session_id=attendance_session.id, phase=ChainPhase.ENTRY
            )
            == 1
        )
        await _chain(db_session, attendance_session)

        assert (
            await ChainRepository.next_batch_index(
                db_session, session_id=attendance_session.id, phase=ChainPhase.ENTRY
            )
            == 2
        )
        assert (
            await ChainRepository.next_batch_index(
                db_session, session_id=attendance_session.id, phase=ChainPhase.EXIT
            )
            == 1
        )


# =============================================================================
# History
# =============================================================================


class TestHistory:
    """Tests for the transfer history ledger."""

    async def test_duplicate_sequence_rejected(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        chain = await _chain(db_session, attendance_session)
        entry = {
            "chain_id": chain.id,
            "sequence": 1,
            "session_id": attendance_session.id,
            "from_holder_id": "alice",
            "to_holder_id": "bob",
            "phase": "ENTRY",
            "transferred_at": datetime.now(UTC),
        }
        await ChainRepository.append_history(db_session, **entry)

        with pytest.raises(IntegrityError):
            await ChainRepository.append_history(
                db_session, **{**entry, "to_holder_id": "carol"}
            )

    async def test_snapshot_participants_cover_both_sides(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        now = datetime.now(UTC)
        snapshot = await SnapshotRepository.create(
            db_session,
            session_id=attendance_session.id,
            snapshot_index=1,
            captured_at=now,
            chains_created=1,
            total_participants=4,
        )
        chain = await _chain(
            db_session,
            attendance_session,
            phase=ChainPhase.SNAPSHOT,
            snapshot_id=snapshot.id,
        )
        for sequence, (sender, receiver) in enumerate(
            [("alice", "bob"), ("bob", "carol")], start=1
        ):
            await ChainRepository.append_history(
                db_session,
                chain_id=chain.id,
                sequence=sequence,
                session_id=attendance_session.id,
                from_holder_id=sender,
                to_holder_id=receiver,
                phase="SNAPSHOT",
                transferred_at=now,
                snapshot_id=snapshot.id,
            )

        present = await ChainRepository.list_snapshot_participants(
            db_session, snapshot.id
        )

        assert present == {"alice", "bob", "carol"}


# =============================================================================
# Eligibility and marks
# =============================================================================


class TestEligibility:
    """Tests for SessionRepository.list_eligible_participants()."""

    async def test_entry_excludes_marked(
        self,
        db_session: AsyncSession,
        attendance_session: AttendanceSession,
        participants: list[str],
    ) -> None:
        _ = participants
        await _mark(db_session, attendance_session, "alice", Direction.ENTRY)

        eligible = await SessionRepository.list_eligible_participants(
            db_session,
            session_id=attendance_session.id,
            phase=ChainPhase.ENTRY,
            online_since=datetime.now(UTC) - timedelta(seconds=30),
        )

        assert eligible == ["bob", "carol", "dave"]

    async def test_exit_requires_entry_mark(
        self,
        db_session: AsyncSession,
        attendance_session: AttendanceSession,
        participants: list[str],
    ) -> None:
        _ = participants
        await _mark(db_session, attendance_session, "alice", Direction.ENTRY)
        await _mark(db_session, attendance_session, "bob", Direction.ENTRY)
        await _mark(db_session, attendance_session, "bob", Direction.EXIT)

        eligible = await SessionRepository.list_eligible_participants(
            db_session,
            session_id=attendance_session.id,
            phase=ChainPhase.EXIT,
            online_since=datetime.now(UTC) - timedelta(seconds=30),
        )

        assert eligible == ["alice"]

    async def test_exit_excludes_left_early(
        self,
        db_session: AsyncSession,
        attendance_session: AttendanceSession,
        participants: list[str],
    ) -> None:
        _ = participants
        await _mark(db_session, attendance_session, "alice", Direction.ENTRY)
        await SessionRepository.record_heartbeat(
            db_session,
            session_id=attendance_session.id,
            participant_id="alice",
            is_online=True,
            now=datetime.now(UTC),
            left_early=True,
        )

        eligible = await SessionRepository.list_eligible_participants(
            db_session,
            session_id=attendance_session.id,
            phase=ChainPhase.EXIT,
            online_since=datetime.now(UTC) - timedelta(seconds=30),
        )

        assert eligible == []

    async def test_offline_and_stale_excluded(
        self,
        db_session: AsyncSession,
        attendance_session: AttendanceSession,
        participants: list[str],
    ) -> None:
        _ = participants
        await SessionRepository.record_heartbeat(
            db_session,
            session_id=attendance_session.id,
            participant_id="dave",
            is_online=False,
            now=datetime.now(UTC) - timedelta(minutes=5),
        )

        eligible = await SessionRepository.list_eligible_participants(
            db_session,
            session_id=attendance_session.id,
            phase=ChainPhase.SNAPSHOT,
            online_since=datetime.now(UTC) - timedelta(seconds=30),
        )

        assert eligible == ["alice", "bob", "carol"]


class TestMarks:
    """Tests for AttendanceRepository.mark_if_absent()."""

    async def test_first_mark_wins(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        assert await _mark(db_session, attendance_session, "alice", Direction.ENTRY)
        assert not await _mark(db_session, attendance_session, "alice", Direction.ENTRY)

        mark = await AttendanceRepository.get(
            db_session,
            session_id=attendance_session.id,
            participant_id="alice",
            direction=Direction.ENTRY,
        )
        assert mark is not None
        assert mark.status == MarkStatus.PRESENT.value

    async def test_entry_and_exit_are_independent(
        self, db_session: AsyncSession, attendance_session: AttendanceSession
    ) -> None:
        assert await _mark(db_session, attendance_session, "alice", Direction.ENTRY)
        assert await _mark(db_session, attendance_session, "alice", Direction.EXIT)
