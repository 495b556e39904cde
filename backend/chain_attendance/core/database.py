"""Async database engine and session management.

Configures the SQLAlchemy async engine with connection pooling and a
per-statement timeout, and provides dependency injection for database
sessions. Each request runs in one transaction: committed on success,
rolled back on any exception.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chain_attendance.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
    pool_timeout=settings.database_statement_timeout_ms / 1000,
    connect_args={
        "server_settings": {
            "statement_timeout": str(settings.database_statement_timeout_ms),
        },
    },
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
