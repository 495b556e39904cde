"""Scan processing - one redemption attempt, end to end.

Gates run in a fixed order and the first failure aborts:

1. Token lookup (not found / expired)
2. Self-scan
3. Proximity proof: challenge-response, then geofence
4. Atomic consume-and-reissue
5. Attendance mark for the previous holder and a transfer history row

Nothing is written before step 4 except the challenge clear, which is
committed on purpose so a failed code guess cannot be retried.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.core.config import settings
from chain_attendance.core.errors import (
    ChallengeMismatchError,
    GeofenceViolationError,
    SelfScanError,
    SessionNotFoundError,
    TokenExpiredError,
    TokenNotFoundError,
)
from chain_attendance.models.attendance import Direction, MarkStatus
from chain_attendance.models.attendance_session import AttendanceSession
from chain_attendance.models.chain import ChainPhase
from chain_attendance.repositories.attendance_repository import AttendanceRepository
from chain_attendance.repositories.chain_repository import ChainRepository
from chain_attendance.repositories.session_repository import SessionRepository
from chain_attendance.repositories.token_repository import TokenRepository
from chain_attendance.services.challenge_issuer import ChallengeIssuer
from chain_attendance.services.event_broadcaster import (
    ATTENDANCE_UPDATE,
    CHAIN_UPDATE,
    EventOutbox,
)
from chain_attendance.services.geofence import (
    Coordinates,
    GeofenceResult,
    validate_location,
)
from chain_attendance.services.token_store import Handoff, TokenStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanResult:
    """Outcome of a successful scan.

    Attributes:
        chain_id: Chain that advanced.
        new_holder_id: Scanner, now holding the chain.
        new_token_id: Token the new holder must display.
        new_expires_at: Expiry of the new token.
        previous_holder_id: Holder whose token was redeemed.
        sequence: Chain sequence after the transfer.
        attendance_marked: True if a new attendance mark was written.
        warning: Advisory geofence warning, if any.
    """

    chain_id: uuid.UUID
    new_holder_id: str
    new_token_id: str
    new_expires_at: datetime
    previous_holder_id: str
    sequence: int
    attendance_marked: bool
    warning: str | None = None


def attendance_mark_for(
    phase: ChainPhase,
    session: AttendanceSession,
    now: datetime,
) -> tuple[Direction, MarkStatus] | None:
    """Which mark a hand-off in this phase earns the previous holder.

    ENTRY marks are LATE once the session's late cutoff has passed. EXIT
    marks are always VERIFIED. SNAPSHOT hand-offs earn no mark.
    """
    if phase == ChainPhase.ENTRY:
        cutoff = session.starts_at + timedelta(minutes=session.late_cutoff_minutes)
        status = MarkStatus.LATE if now > cutoff else MarkStatus.PRESENT
        return Direction.ENTRY, status
    if phase == ChainPhase.EXIT:
        return Direction.EXIT, MarkStatus.VERIFIED
    return None


class ScanProcessor:
    """Runs one redemption attempt against the chain protocol.

    Args:
        db: Async database session (the request transaction).
        outbox: Collects events to send once the caller commits.
    """

    def __init__(
        self,
        db: AsyncSession,
        outbox: EventOutbox | None = None,
    ) -> None:
        self._db = db
        self._outbox = outbox or EventOutbox()
        self._challenges = ChallengeIssuer(db)
        self._tokens = TokenStore(db)

    async def process(
        self,
        token_id: str,
        scanner_id: str,
        code: str | None = None,
        location: Coordinates | None = None,
    ) -> ScanResult:
        """Redeem a token on behalf of a scanner.

        Args:
            token_id: Token read from the holder's screen.
            scanner_id: Authenticated participant scanning.
            code: Confirmation code, when challenge-response is in use.
            location: Scanner-reported location, if available.

        Returns:
            ScanResult describing the transfer.

        Raises:
            TokenNotFoundError: Token missing or already redeemed.
            TokenExpiredError: Token past its expiry.
            SelfScanError: Scanner holds the token.
            ChallengeExpiredError: No live challenge for this scanner.
            ChallengeMismatchError: Wrong or missing confirmation code.
            GeofenceViolationError: Outside an enforced geofence.
            HolderMismatchError: Token changed hands concurrently.
            ChainClosedError: Chain completed concurrently.
        """
        token = await TokenRepository.get_by_id(self._db, token_id, refresh=True)
        if token is None:
            raise TokenNotFoundError()
        if token.expires_at <= datetime.now(UTC):
            raise TokenExpiredError()

        if token.holder_id == scanner_id:
            raise SelfScanError()

        holder_id = token.holder_id
        session = await SessionRepository.get_by_id(self._db, token.session_id)
        if session is None:
            raise SessionNotFoundError(str(token.session_id))

        if session.require_challenge or code is not None:
            if code is None:
                raise ChallengeMismatchError()
            await self._challenges.validate(token_id, scanner_id, code)

        geofence = self._check_geofence(session, location)
        if geofence.should_block:
            raise GeofenceViolationError(
                geofence.warning or "Outside session location",
                geofence.distance_m,
            )

        handoff = await self._tokens.consume_and_reissue(token_id, holder_id, scanner_id)
        marked = await self._record(handoff, session, location, geofence)

        logger.info(
            "Chain %s transferred %s -> %s (sequence %d)",
            handoff.chain_id,
            handoff.previous_holder_id,
            handoff.new_holder_id,
            handoff.sequence,
        )
        self._announce(handoff, marked)

        return ScanResult(
            chain_id=handoff.chain_id,
            new_holder_id=handoff.new_holder_id,
            new_token_id=handoff.token.id,
            new_expires_at=handoff.token.expires_at,
            previous_holder_id=handoff.previous_holder_id,
            sequence=handoff.sequence,
            attendance_marked=marked,
            warning=geofence.warning,
        )

    def _check_geofence(
        self,
        session: AttendanceSession,
        location: Coordinates | None,
    ) -> GeofenceResult:
        anchor = None
        if session.anchor_latitude is not None and session.anchor_longitude is not None:
            anchor = Coordinates(session.anchor_latitude, session.anchor_longitude)
        return validate_location(
            anchor=anchor,
            radius_m=session.geofence_radius_m,
            mode=session.geofence_mode,
            reported=location,
            block_missing_location=settings.geofence_block_missing_location,
        )

    async def _record(
        self,
        handoff: Handoff,
        session: AttendanceSession,
        location: Coordinates | None,
        geofence: GeofenceResult,
    ) -> bool:
        """Write the attendance mark (if any) and the history row."""
        now = handoff.token.created_at
        marked = False
        mark = attendance_mark_for(handoff.phase, session, now)
        if mark is not None:
            direction, status = mark
            marked = await AttendanceRepository.mark_if_absent(
                self._db,
                session_id=handoff.session_id,
                participant_id=handoff.previous_holder_id,
                direction=direction,
                status=status.value,
                chain_id=handoff.chain_id,
                marked_at=now,
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
                distance_m=geofence.distance_m,
                warning=geofence.warning,
            )

        await ChainRepository.append_history(
            self._db,
            chain_id=handoff.chain_id,
            sequence=handoff.sequence,
            session_id=handoff.session_id,
            from_holder_id=handoff.previous_holder_id,
            to_holder_id=handoff.new_holder_id,
            phase=handoff.phase.value,
            transferred_at=now,
            snapshot_id=handoff.snapshot_id,
        )
        return marked

    def _announce(self, handoff: Handoff, marked: bool) -> None:
        self._outbox.add(
            handoff.session_id,
            CHAIN_UPDATE,
            {
                "action": "transferred",
                "chain_id": str(handoff.chain_id),
                "phase": handoff.phase.value,
                "holder_id": handoff.new_holder_id,
                "previous_holder_id": handoff.previous_holder_id,
                "sequence": handoff.sequence,
            },
        )
        if marked:
            self._outbox.add(
                handoff.session_id,
                ATTENDANCE_UPDATE,
                {
                    "participant_id": handoff.previous_holder_id,
                    "phase": handoff.phase.value,
                    "chain_id": str(handoff.chain_id),
                },
            )
