"""Database dependencies."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.database.client import get_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """Get a database session for a request."""
    async with get_session() as session:
        yield session
