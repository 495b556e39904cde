"""Token store - issuance, lookup, lazy rotation and atomic hand-off.

consume_and_reissue is the only way a token changes hands. It runs three
statements in the caller's transaction:

1. DELETE the presented token WHERE id, holder and unexpired (RETURNING)
2. UPDATE the chain WHERE sequence and holder still match and not COMPLETED
3. INSERT the successor token at the new sequence

If (1) returns nothing the failure is classified with a follow-up read.
If (2) updates nothing the chain was closed; raising rolls back (1).
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.core.config import settings
from chain_attendance.core.errors import (
    APIError,
    ChainClosedError,
    ChainNotFoundError,
    HolderMismatchError,
    TokenExpiredError,
    TokenNotFoundError,
)
from chain_attendance.models.chain import ChainPhase, ChainToken
from chain_attendance.repositories.chain_repository import ChainRepository
from chain_attendance.repositories.token_repository import TokenRepository

logger = logging.getLogger(__name__)

# 32 random bytes, URL-safe base64 (43 characters)
_TOKEN_BYTES = 32


@dataclass(frozen=True)
class Handoff:
    """Result of a successful consume-and-reissue.

    Attributes:
        chain_id: Chain that advanced.
        session_id: Owning session.
        phase: Chain phase.
        snapshot_id: Owning snapshot for SNAPSHOT chains.
        previous_holder_id: Holder whose token was redeemed.
        new_holder_id: Scanner who now holds the chain.
        sequence: Chain sequence after the transfer.
        token: Successor token issued to the new holder.
    """

    chain_id: uuid.UUID
    session_id: uuid.UUID
    phase: ChainPhase
    snapshot_id: uuid.UUID | None
    previous_holder_id: str
    new_holder_id: str
    sequence: int
    token: ChainToken


def new_token_id() -> str:
    """Generate a fresh token identifier."""
    return secrets.token_urlsafe(_TOKEN_BYTES)


def ttl_for_phase(phase: ChainPhase | str) -> int:
    """Token lifetime in seconds for a chain phase."""
    if ChainPhase(phase) == ChainPhase.SNAPSHOT:
        return settings.snapshot_token_ttl_seconds
    return settings.chain_token_ttl_seconds


class TokenStore:
    """Record-keeping over chain tokens.

    Args:
        db: Async database session. All writes join the caller's transaction.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def issue(
        self,
        chain_id: uuid.UUID,
        holder_id: str,
        sequence: int,
        ttl_seconds: int,
    ) -> ChainToken:
        """Issue a token for a chain.

        Raises:
            ChainNotFoundError: Chain does not exist.
        """
        chain = await ChainRepository.get_by_id(self._db, chain_id)
        if chain is None:
            raise ChainNotFoundError(str(chain_id))

        now = datetime.now(UTC)
        return await TokenRepository.create(
            self._db,
            token_id=new_token_id(),
            session_id=chain.session_id,
            chain_id=chain_id,
            holder_id=holder_id,
            sequence=sequence,
            expires_at=now + timedelta(seconds=ttl_seconds),
            now=now,
        )

    async def fetch_live(self, chain_id: uuid.UUID, holder_id: str) -> ChainToken | None:
        """Current unexpired token for a chain when holder_id holds it."""
        token = await TokenRepository.get_for_chain(self._db, chain_id)
        if token is None or token.holder_id != holder_id:
            return None
        if token.expires_at <= datetime.now(UTC):
            return None
        return token

    async def regenerate(
        self,
        chain_id: uuid.UUID,
        holder_id: str,
        ttl_seconds: int,
    ) -> ChainToken | None:
        """Rotate an expired token for a still-open chain.

        Returns:
            The rotated token, or None if the token is not expired, not held
            by holder_id, or the chain is closed.
        """
        now = datetime.now(UTC)
        token = await TokenRepository.rotate_expired(
            self._db,
            chain_id=chain_id,
            holder_id=holder_id,
            new_token_id=new_token_id(),
            expires_at=now + timedelta(seconds=ttl_seconds),
            now=now,
        )
        if token is not None:
            logger.debug("Rotated expired token for chain %s", chain_id)
        return token

    async def current_for_holder(
        self, session_id: uuid.UUID, holder_id: str
    ) -> ChainToken | None:
        """Token a participant should display right now.

        When the participant holds several open chains, the most recently
        active one wins. An expired token is rotated in place.

        Returns:
            Live token, or None if the participant holds no open chain.
        """
        held = await TokenRepository.list_held_in_open_chains(
            self._db, session_id=session_id, holder_id=holder_id
        )
        if not held:
            return None

        token = held[0]
        if token.expires_at > datetime.now(UTC):
            return token

        chain = await ChainRepository.get_by_id(self._db, token.chain_id)
        if chain is None:
            return None
        rotated = await self.regenerate(
            token.chain_id, holder_id, ttl_for_phase(chain.phase)
        )
        if rotated is not None:
            return rotated
        # Rotated concurrently by another poll from the same holder
        return await self.fetch_live(token.chain_id, holder_id)

    async def consume_and_reissue(
        self,
        token_id: str,
        expected_holder_id: str,
        new_holder_id: str,
    ) -> Handoff:
        """Atomically retire a token and hand its chain to a new holder.

        Args:
            token_id: Token being redeemed.
            expected_holder_id: Holder the caller observed on the token.
            new_holder_id: Scanner receiving the chain.

        Returns:
            Handoff describing the transfer and the successor token.

        Raises:
            TokenNotFoundError: Token already redeemed or never existed.
            TokenExpiredError: Token expired before the redemption landed.
            HolderMismatchError: Token is held by someone else.
            ChainClosedError: Chain was completed concurrently.
        """
        now = datetime.now(UTC)
        consumed = await TokenRepository.delete_live(
            self._db, token_id=token_id, holder_id=expected_holder_id, now=now
        )
        if consumed is None:
            raise await self._classify_failure(token_id, expected_holder_id, now)

        advanced = await ChainRepository.advance(
            self._db,
            chain_id=consumed.chain_id,
            expected_sequence=consumed.sequence,
            expected_holder_id=expected_holder_id,
            new_holder_id=new_holder_id,
            now=now,
        )
        if advanced is None:
            raise ChainClosedError(str(consumed.chain_id))
        sequence, phase, snapshot_id = advanced

        successor = await TokenRepository.create(
            self._db,
            token_id=new_token_id(),
            session_id=consumed.session_id,
            chain_id=consumed.chain_id,
            holder_id=new_holder_id,
            sequence=sequence,
            expires_at=now + timedelta(seconds=ttl_for_phase(phase)),
            now=now,
        )

        return Handoff(
            chain_id=consumed.chain_id,
            session_id=consumed.session_id,
            phase=ChainPhase(phase),
            snapshot_id=snapshot_id,
            previous_holder_id=expected_holder_id,
            new_holder_id=new_holder_id,
            sequence=sequence,
            token=successor,
        )

    async def _classify_failure(
        self, token_id: str, expected_holder_id: str, now: datetime
    ) -> APIError:
        """Explain why a conditional delete matched no row."""
        token = await TokenRepository.get_by_id(self._db, token_id, refresh=True)
        if token is None:
            return TokenNotFoundError()
        if token.expires_at <= now:
            return TokenExpiredError()
        if token.holder_id != expected_holder_id:
            return HolderMismatchError()
        return TokenNotFoundError()
