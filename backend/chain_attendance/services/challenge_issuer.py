"""Challenge-response proximity proof for token redemption.

The scanner asks for a challenge; the holder's device shows a 6-digit
code; the scanner types it into the scan request. Only the SHA-256 hash
of the code is stored, on the token row, bound to the requesting scanner.
One pending challenge exists per token and the latest request wins.

Validation by the bound scanner clears the pending challenge and commits
before comparing, so a wrong guess still burns the challenge even though
the scan then fails. A scan from any other requester leaves it in place.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.core.config import settings
from chain_attendance.core.errors import (
    ChallengeExpiredError,
    ChallengeMismatchError,
    SelfScanError,
    TokenExpiredError,
    TokenNotFoundError,
)
from chain_attendance.repositories.token_repository import TokenRepository

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


@dataclass(frozen=True)
class IssuedChallenge:
    """A freshly issued challenge.

    Attributes:
        code: Plaintext code. Returned once and never stored.
        expires_in_seconds: Seconds until the challenge expires.
    """

    code: str
    expires_in_seconds: int


def generate_code() -> str:
    """Generate a zero-padded 6-digit code from the OS CSPRNG."""
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def hash_code(code: str) -> str:
    """SHA-256 hex digest of a challenge code."""
    return hashlib.sha256(code.encode()).hexdigest()


class ChallengeIssuer:
    """Issues and validates one-time codes bound to (token, requester).

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def request(self, token_id: str, requester_id: str) -> IssuedChallenge:
        """Issue a challenge for a scanner about to redeem a token.

        Args:
            token_id: Token the scanner is looking at.
            requester_id: Scanner asking for the code.

        Returns:
            IssuedChallenge with the plaintext code and its lifetime.

        Raises:
            TokenNotFoundError: Token does not exist.
            TokenExpiredError: Token is past its expiry.
            SelfScanError: Requester is the token's holder.
        """
        now = datetime.now(UTC)
        token = await TokenRepository.get_by_id(self._db, token_id, refresh=True)
        if token is None:
            raise TokenNotFoundError()
        if token.expires_at <= now:
            raise TokenExpiredError()
        if token.holder_id == requester_id:
            raise SelfScanError()

        ttl = settings.challenge_ttl_seconds
        code = generate_code()
        stored = await TokenRepository.set_challenge(
            self._db,
            token_id=token_id,
            requester_id=requester_id,
            challenge_hash=hash_code(code),
            expires_at=now + timedelta(seconds=ttl),
            now=now,
        )
        if not stored:
            # Redeemed or expired between the read and the write
            raise TokenNotFoundError()

        logger.info(
            "Challenge issued for chain %s (requester %s)",
            token.chain_id,
            requester_id,
        )
        return IssuedChallenge(code=code, expires_in_seconds=ttl)

    async def validate(self, token_id: str, requester_id: str, code: str) -> None:
        """Spend the pending challenge and check the supplied code.

        Locks the token row. If the pending challenge belongs to this
        requester it is cleared and committed, then the hashes are
        compared in constant time. Another requester's challenge is left
        untouched.

        Args:
            token_id: Token being redeemed.
            requester_id: Scanner submitting the code.
            code: Code typed by the scanner.

        Raises:
            TokenNotFoundError: Token no longer exists.
            ChallengeExpiredError: No live challenge for this requester.
            ChallengeMismatchError: Code does not match.
        """
        now = datetime.now(UTC)
        token = await TokenRepository.get_for_update(self._db, token_id)
        if token is None:
            raise TokenNotFoundError()

        pending_requester = token.challenge_requester_id
        pending_hash = token.challenge_hash
        pending_expires_at = token.challenge_expires_at

        if pending_hash is None or pending_requester != requester_id:
            raise ChallengeExpiredError()

        await TokenRepository.clear_challenge(self._db, token_id)
        # Persist the clear and release the row lock before judging the code
        await self._db.commit()

        if pending_expires_at is None or pending_expires_at <= now:
            raise ChallengeExpiredError()

        if not hmac.compare_digest(hash_code(code), pending_hash):
            logger.info(
                "Challenge mismatch for chain %s (requester %s)",
                token.chain_id,
                requester_id,
            )
            raise ChallengeMismatchError()
