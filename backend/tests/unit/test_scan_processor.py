"""Tests for the scan gate sequence.

Repositories, the token store and the challenge issuer are mocked so each
gate can be exercised in isolation.
"""

import uuid
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chain_attendance.core.errors import (
    ChallengeExpiredError,
    ChallengeMismatchError,
    GeofenceViolationError,
    HolderMismatchError,
    SelfScanError,
    TokenExpiredError,
    TokenNotFoundError,
)
from chain_attendance.models.attendance import Direction, MarkStatus
from chain_attendance.models.chain import ChainPhase
from chain_attendance.services.event_broadcaster import (
    ATTENDANCE_UPDATE,
    CHAIN_UPDATE,
    EventOutbox,
)
from chain_attendance.services.geofence import Coordinates
from chain_attendance.services.scan_processor import (
    ScanProcessor,
    attendance_mark_for,
)
from chain_attendance.services.token_store import Handoff

_MODULE = "chain_attendance.services.scan_processor"
_SESSION_ID = uuid.uuid4()
_CHAIN_ID = uuid.uuid4()
_HOLDER = "holder-1"
_SCANNER = "scanner-1"
_ANCHOR = Coordinates(40.7128, -74.0060)


def _token(**overrides) -> SimpleNamespace:
    fields = {
        "id": "tok-1",
        "session_id": _SESSION_ID,
        "chain_id": _CHAIN_ID,
        "holder_id": _HOLDER,
        "sequence": 0,
        "expires_at": datetime.now(UTC) + timedelta(seconds=20),
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _session(**overrides) -> SimpleNamespace:
    fields = {
        "id": _SESSION_ID,
        "starts_at": datetime.now(UTC) - timedelta(minutes=5),
        "late_cutoff_minutes": 15,
        "anchor_latitude": None,
        "anchor_longitude": None,
        "geofence_radius_m": 100.0,
        "geofence_mode": "off",
        "require_challenge": False,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _handoff(phase: ChainPhase = ChainPhase.ENTRY) -> Handoff:
    now = datetime.now(UTC)
    successor = SimpleNamespace(
        id="tok-2", expires_at=now + timedelta(seconds=20), created_at=now
    )
    return Handoff(
        chain_id=_CHAIN_ID,
        session_id=_SESSION_ID,
        phase=phase,
        snapshot_id=None,
        previous_holder_id=_HOLDER,
        new_holder_id=_SCANNER,
        sequence=1,
        token=successor,
    )


@pytest.fixture
def repos() -> Iterator[SimpleNamespace]:
    with (
        patch(f"{_MODULE}.TokenRepository") as tokens,
        patch(f"{_MODULE}.SessionRepository") as sessions,
        patch(f"{_MODULE}.AttendanceRepository") as marks,
        patch(f"{_MODULE}.ChainRepository") as chains,
    ):
        tokens.get_by_id = AsyncMock(return_value=_token())
        sessions.get_by_id = AsyncMock(return_value=_session())
        marks.mark_if_absent = AsyncMock(return_value=True)
        chains.append_history = AsyncMock()
        yield SimpleNamespace(
            tokens=tokens, sessions=sessions, marks=marks, chains=chains
        )


@pytest.fixture
def events() -> EventOutbox:
    return EventOutbox(MagicMock())


@pytest.fixture
def processor(repos: SimpleNamespace, events: EventOutbox) -> ScanProcessor:
    _ = repos
    scan = ScanProcessor(AsyncMock(), outbox=events)
    scan._tokens = AsyncMock()
    scan._tokens.consume_and_reissue.return_value = _handoff()
    scan._challenges = AsyncMock()
    return scan


# =============================================================================
# attendance_mark_for
# =============================================================================


class TestAttendanceMarkFor:
    """Tests for attendance_mark_for()."""

    def test_entry_before_cutoff_is_present(self) -> None:
        session = _session()
        assert attendance_mark_for(ChainPhase.ENTRY, session, datetime.now(UTC)) == (
            Direction.ENTRY,
            MarkStatus.PRESENT,
        )

    def test_entry_after_cutoff_is_late(self) -> None:
        session = _session(starts_at=datetime.now(UTC) - timedelta(minutes=30))
        assert attendance_mark_for(ChainPhase.ENTRY, session, datetime.now(UTC)) == (
            Direction.ENTRY,
            MarkStatus.LATE,
        )

    def test_entry_exactly_at_cutoff_is_present(self) -> None:
        session = _session()
        at_cutoff = session.starts_at + timedelta(minutes=15)
        _, status = attendance_mark_for(ChainPhase.ENTRY, session, at_cutoff)
        assert status is MarkStatus.PRESENT

    def test_exit_is_verified(self) -> None:
        assert attendance_mark_for(
            ChainPhase.EXIT, _session(), datetime.now(UTC)
        ) == (Direction.EXIT, MarkStatus.VERIFIED)

    def test_snapshot_earns_no_mark(self) -> None:
        assert (
            attendance_mark_for(ChainPhase.SNAPSHOT, _session(), datetime.now(UTC))
            is None
        )


# =============================================================================
# Gate order
# =============================================================================


class TestScanGates:
    """Each gate aborts before anything is consumed."""

    async def test_missing_token(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.tokens.get_by_id.return_value = None

        with pytest.raises(TokenNotFoundError):
            await processor.process("tok-1", _SCANNER)

        processor._tokens.consume_and_reissue.assert_not_awaited()

    async def test_expired_token(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.tokens.get_by_id.return_value = _token(
            expires_at=datetime.now(UTC) - timedelta(seconds=1)
        )

        with pytest.raises(TokenExpiredError):
            await processor.process("tok-1", _SCANNER)

    async def test_expired_checked_before_self_scan(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.tokens.get_by_id.return_value = _token(
            expires_at=datetime.now(UTC) - timedelta(seconds=1)
        )

        with pytest.raises(TokenExpiredError):
            await processor.process("tok-1", _HOLDER)

    async def test_self_scan(self, processor: ScanProcessor) -> None:
        with pytest.raises(SelfScanError):
            await processor.process("tok-1", _HOLDER)

        processor._challenges.validate.assert_not_awaited()
        processor._tokens.consume_and_reissue.assert_not_awaited()

    async def test_required_challenge_without_code(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.sessions.get_by_id.return_value = _session(require_challenge=True)

        with pytest.raises(ChallengeMismatchError):
            await processor.process("tok-1", _SCANNER)

        # The pending challenge is left untouched
        processor._challenges.validate.assert_not_awaited()

    async def test_challenge_failure_stops_scan(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.sessions.get_by_id.return_value = _session(require_challenge=True)
        processor._challenges.validate.side_effect = ChallengeExpiredError()

        with pytest.raises(ChallengeExpiredError):
            await processor.process("tok-1", _SCANNER, code="123456")

        processor._tokens.consume_and_reissue.assert_not_awaited()

    async def test_optional_code_is_still_validated(
        self, processor: ScanProcessor
    ) -> None:
        await processor.process("tok-1", _SCANNER, code="123456")

        processor._challenges.validate.assert_awaited_once_with(
            "tok-1", _SCANNER, "123456"
        )

    async def test_enforced_geofence_blocks(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.sessions.get_by_id.return_value = _session(
            anchor_latitude=_ANCHOR.latitude,
            anchor_longitude=_ANCHOR.longitude,
            geofence_mode="enforce",
        )

        with pytest.raises(GeofenceViolationError):
            await processor.process(
                "tok-1", _SCANNER, location=Coordinates(40.7200, -74.0060)
            )

        processor._tokens.consume_and_reissue.assert_not_awaited()

    async def test_enforced_geofence_blocks_missing_location(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.sessions.get_by_id.return_value = _session(
            anchor_latitude=_ANCHOR.latitude,
            anchor_longitude=_ANCHOR.longitude,
            geofence_mode="enforce",
        )

        with pytest.raises(GeofenceViolationError):
            await processor.process("tok-1", _SCANNER)

    async def test_consume_failure_propagates(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        processor._tokens.consume_and_reissue.side_effect = HolderMismatchError()

        with pytest.raises(HolderMismatchError):
            await processor.process("tok-1", _SCANNER)

        repos.marks.mark_if_absent.assert_not_awaited()
        repos.chains.append_history.assert_not_awaited()


# =============================================================================
# Successful hand-off
# =============================================================================


class TestScanSuccess:
    """A successful scan marks the previous holder and records history."""

    async def test_returns_transfer(self, processor: ScanProcessor) -> None:
        result = await processor.process("tok-1", _SCANNER)

        assert result.chain_id == _CHAIN_ID
        assert result.new_holder_id == _SCANNER
        assert result.previous_holder_id == _HOLDER
        assert result.new_token_id == "tok-2"
        assert result.sequence == 1
        assert result.attendance_marked is True
        assert result.warning is None
        processor._tokens.consume_and_reissue.assert_awaited_once_with(
            "tok-1", _HOLDER, _SCANNER
        )

    async def test_marks_previous_holder_present(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        await processor.process("tok-1", _SCANNER)

        kwargs = repos.marks.mark_if_absent.await_args.kwargs
        assert kwargs["participant_id"] == _HOLDER
        assert kwargs["direction"] is Direction.ENTRY
        assert kwargs["status"] == MarkStatus.PRESENT.value
        assert kwargs["chain_id"] == _CHAIN_ID

    async def test_appends_history(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        await processor.process("tok-1", _SCANNER)

        kwargs = repos.chains.append_history.await_args.kwargs
        assert kwargs["from_holder_id"] == _HOLDER
        assert kwargs["to_holder_id"] == _SCANNER
        assert kwargs["sequence"] == 1
        assert kwargs["phase"] == "ENTRY"

    async def test_snapshot_handoff_writes_no_mark(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        processor._tokens.consume_and_reissue.return_value = _handoff(
            ChainPhase.SNAPSHOT
        )

        result = await processor.process("tok-1", _SCANNER)

        assert result.attendance_marked is False
        repos.marks.mark_if_absent.assert_not_awaited()
        repos.chains.append_history.assert_awaited_once()

    async def test_duplicate_mark_is_reported(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.marks.mark_if_absent.return_value = False

        result = await processor.process("tok-1", _SCANNER)

        assert result.attendance_marked is False

    async def test_warn_mode_records_warning(
        self, processor: ScanProcessor, repos: SimpleNamespace
    ) -> None:
        repos.sessions.get_by_id.return_value = _session(
            anchor_latitude=_ANCHOR.latitude,
            anchor_longitude=_ANCHOR.longitude,
            geofence_mode="warn",
        )

        result = await processor.process(
            "tok-1", _SCANNER, location=Coordinates(40.7200, -74.0060)
        )

        assert result.warning is not None
        assert "from session location" in result.warning
        kwargs = repos.marks.mark_if_absent.await_args.kwargs
        assert kwargs["warning"] == result.warning
        assert kwargs["distance_m"] > 100

    async def test_records_transfer_and_attendance_events(
        self, processor: ScanProcessor, events: EventOutbox
    ) -> None:
        await processor.process("tok-1", _SCANNER)

        event_types = [event.event_type for event in events.events]
        assert event_types == [CHAIN_UPDATE, ATTENDANCE_UPDATE]

    async def test_no_attendance_event_without_mark(
        self, processor: ScanProcessor, repos: SimpleNamespace, events: EventOutbox
    ) -> None:
        repos.marks.mark_if_absent.return_value = False

        await processor.process("tok-1", _SCANNER)

        event_types = [event.event_type for event in events.events]
        assert event_types == [CHAIN_UPDATE]

    async def test_no_events_when_handoff_fails(
        self, processor: ScanProcessor, events: EventOutbox
    ) -> None:
        processor._tokens.consume_and_reissue.side_effect = TokenNotFoundError()

        with pytest.raises(TokenNotFoundError):
            await processor.process("tok-1", _SCANNER)

        assert events.events == []
