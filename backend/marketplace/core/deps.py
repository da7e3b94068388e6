from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.session import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    Business actions commit or roll back themselves; anything left open
    when the request finishes is rolled back on close.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
