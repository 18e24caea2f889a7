from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from signing_engine.db.session import async_session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session
