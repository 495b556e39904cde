"""Repository for chain tokens.

Tokens are never updated to "used": redemption deletes the row with a
conditional DELETE ... RETURNING, which is the single point that decides
a redemption race. Expiry rotation and challenge writes are likewise
single conditional statements.
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import delete, exists, select, update
from sqlalchemy.engine import CursorResult, Row
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.models.chain import (
    OPEN_CHAIN_STATES,
    Chain,
    ChainToken,
)


class TokenRepository:
    """Stateless repository for ChainToken table operations.

    All methods are static - no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        token_id: str,
        session_id: uuid.UUID,
        chain_id: uuid.UUID,
        holder_id: str,
        sequence: int,
        expires_at: datetime,
        now: datetime,
    ) -> ChainToken:
        """Insert a token row.

        Args:
            db: Async database session.
            token_id: Random URL-safe identifier.
            session_id: Owning session.
            chain_id: Owning chain (unique per token).
            holder_id: Participant entitled to display the token.
            sequence: Chain sequence at issuance.
            expires_at: Hard expiry.
            now: Issuance time.

        Returns:
            Created ChainToken.
        """
        token = ChainToken(
            id=token_id,
            session_id=session_id,
            chain_id=chain_id,
            holder_id=holder_id,
            sequence=sequence,
            expires_at=expires_at,
            created_at=now,
        )
        db.add(token)
        await db.flush()
        return token

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        token_id: str,
        *,
        refresh: bool = False,
    ) -> ChainToken | None:
        """Fetch a token by id.

        Args:
            db: Async database session.
            token_id: Token identifier.
            refresh: Reload column values already in the identity map.

        Returns:
            ChainToken if found, None otherwise.
        """
        return await db.get(ChainToken, token_id, populate_existing=refresh)

    @staticmethod
    async def get_for_update(db: AsyncSession, token_id: str) -> ChainToken | None:
        """Fetch a token with a row lock held until the transaction ends."""
        stmt = (
            select(ChainToken)
            .where(ChainToken.id == token_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_for_chain(
        db: AsyncSession, chain_id: uuid.UUID
    ) -> ChainToken | None:
        """Fetch the token currently belonging to a chain."""
        stmt = (
            select(ChainToken)
            .where(ChainToken.chain_id == chain_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_held_in_open_chains(
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        holder_id: str,
    ) -> list[ChainToken]:
        """List a holder's tokens in open chains, most recently active first.

        Args:
            db: Async database session.
            session_id: Session UUID.
            holder_id: Participant id.

        Returns:
            Tokens ordered by their chain's last activity, newest first.
        """
        stmt = (
            select(ChainToken)
            .join(Chain, Chain.id == ChainToken.chain_id)
            .where(
                ChainToken.session_id == session_id,
                ChainToken.holder_id == holder_id,
                Chain.current_holder_id == holder_id,
                Chain.state.in_(OPEN_CHAIN_STATES),
            )
            .order_by(Chain.last_activity_at.desc(), Chain.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def rotate_expired(
        db: AsyncSession,
        *,
        chain_id: uuid.UUID,
        holder_id: str,
        new_token_id: str,
        expires_at: datetime,
        now: datetime,
    ) -> ChainToken | None:
        """Give an expired token a fresh id and expiry in one statement.

        Only rotates when the token is held by holder_id, is expired at
        ``now`` and its chain is still open. The sequence is unchanged and
        any pending challenge is discarded.

        Args:
            db: Async database session.
            chain_id: Chain UUID.
            holder_id: Holder requesting rotation.
            new_token_id: Replacement identifier.
            expires_at: Replacement expiry.
            now: Current time.

        Returns:
            The rotated token, or None if no row qualified.
        """
        chain_open = exists().where(
            Chain.id == ChainToken.chain_id,
            Chain.state.in_(OPEN_CHAIN_STATES),
        )
        stmt = (
            update(ChainToken)
            .where(
                ChainToken.chain_id == chain_id,
                ChainToken.holder_id == holder_id,
                ChainToken.expires_at <= now,
                chain_open,
            )
            .values(
                id=new_token_id,
                expires_at=expires_at,
                created_at=now,
                challenge_requester_id=None,
                challenge_hash=None,
                challenge_expires_at=None,
            )
            .returning(ChainToken.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        rotated_id = result.scalar_one_or_none()
        if rotated_id is None:
            return None
        return await TokenRepository.get_by_id(db, rotated_id, refresh=True)

    @staticmethod
    async def delete_live(
        db: AsyncSession,
        *,
        token_id: str,
        holder_id: str,
        now: datetime,
    ) -> Row[Any] | None:
        """Conditionally delete an unexpired token held by holder_id.

        This is the linearization point of a redemption: of any number of
        concurrent callers, at most one gets a row back.

        Args:
            db: Async database session.
            token_id: Token identifier.
            holder_id: Expected holder.
            now: Current time.

        Returns:
            Row with (chain_id, session_id, sequence), or None if the token
            was missing, expired or held by someone else.
        """
        stmt = (
            delete(ChainToken)
            .where(
                ChainToken.id == token_id,
                ChainToken.holder_id == holder_id,
                ChainToken.expires_at > now,
            )
            .returning(ChainToken.chain_id, ChainToken.session_id, ChainToken.sequence)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.one_or_none()

    @staticmethod
    async def delete_for_chain(db: AsyncSession, chain_id: uuid.UUID) -> int:
        """Delete whatever token a chain still has.

        Returns:
            Number of rows deleted (0 or 1).
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                delete(ChainToken)
                .where(ChainToken.chain_id == chain_id)
                .execution_options(synchronize_session=False)
            ),
        )
        rows_deleted: int = result.rowcount
        return rows_deleted

    # =========================================================================
    # Pending challenge
    # =========================================================================

    @staticmethod
    async def set_challenge(
        db: AsyncSession,
        *,
        token_id: str,
        requester_id: str,
        challenge_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Store a pending challenge on an unexpired token.

        Overwrites any earlier pending challenge.

        Returns:
            True if the token was live and updated.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(ChainToken)
                .where(ChainToken.id == token_id, ChainToken.expires_at > now)
                .values(
                    challenge_requester_id=requester_id,
                    challenge_hash=challenge_hash,
                    challenge_expires_at=expires_at,
                )
                .execution_options(synchronize_session=False)
            ),
        )
        rows_updated: int = result.rowcount
        return rows_updated > 0

    @staticmethod
    async def clear_challenge(db: AsyncSession, token_id: str) -> None:
        """Discard a token's pending challenge."""
        await db.execute(
            update(ChainToken)
            .where(ChainToken.id == token_id)
            .values(
                challenge_requester_id=None,
                challenge_hash=None,
                challenge_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
