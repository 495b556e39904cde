"""Token API router - challenge requests and scans.

Both endpoints are rate limited per participant: the challenge code is
only 6 digits, so request volume bounds guessing.
"""

from fastapi import APIRouter, Request

from chain_attendance.api.deps import DbSession, Participant
from chain_attendance.core.config import settings
from chain_attendance.core.rate_limiting import limiter
from chain_attendance.core.responses import DataResponse
from chain_attendance.schemas.token import (
    ChallengeResponse,
    ScanRequest,
    ScanResponse,
)
from chain_attendance.services.challenge_issuer import ChallengeIssuer
from chain_attendance.services.event_broadcaster import EventOutbox
from chain_attendance.services.geofence import Coordinates
from chain_attendance.services.scan_processor import ScanProcessor

router = APIRouter()


# =============================================================================
# POST /tokens/{token_id}/challenge
# =============================================================================


@router.post("/{token_id}/challenge")
@limiter.limit(settings.rate_limit_scan)
async def request_challenge(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    token_id: str,
    principal: Participant,
    db: DbSession,
) -> DataResponse[ChallengeResponse]:
    """Issue a confirmation code bound to this token and the caller."""
    challenge = await ChallengeIssuer(db).request(token_id, principal.participant_id)
    return DataResponse(
        data=ChallengeResponse(
            code=challenge.code,
            expires_in_seconds=challenge.expires_in_seconds,
        )
    )


# =============================================================================
# POST /tokens/{token_id}/scan
# =============================================================================


@router.post("/{token_id}/scan")
@limiter.limit(settings.rate_limit_scan)
async def submit_scan(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    token_id: str,
    body: ScanRequest,
    principal: Participant,
    db: DbSession,
) -> DataResponse[ScanResponse]:
    """Redeem a token: the caller becomes the chain's next holder."""
    location = None
    if body.location is not None:
        location = Coordinates(body.location.latitude, body.location.longitude)

    outbox = EventOutbox()
    result = await ScanProcessor(db, outbox=outbox).process(
        token_id,
        principal.participant_id,
        code=body.code,
        location=location,
    )
    # Subscribers hear about the transfer only after it is committed
    await db.commit()
    outbox.dispatch()
    return DataResponse(
        data=ScanResponse(
            chain_id=result.chain_id,
            new_holder_id=result.new_holder_id,
            new_token_id=result.new_token_id,
            new_expires_at=result.new_expires_at,
            previous_holder_id=result.previous_holder_id,
            sequence=result.sequence,
            attendance_marked=result.attendance_marked,
            warning=result.warning,
        )
    )
