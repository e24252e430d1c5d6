"""Async database engine and session factory for kbsync.

Usage:
    from kbsync.db.session import get_session

    async with get_session() as session:
        result = await session.execute(select(KnowledgeEntry))

IMPORTANT: Each request/operation must get its own session from the factory.
AsyncSession is NOT safe to share across concurrent coroutines or requests.
A sync run therefore opens several short sessions (lock, job bookkeeping,
cancellation polling) and exactly one long transaction for the batch commit.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from kbsync.config import settings

# Module-level async engine - shared across the process lifetime
engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=10,
    max_overflow=20,
)

# Session factory - call AsyncSessionFactory() to get a new session
# expire_on_commit=False keeps ORM objects accessible after commit
AsyncSessionFactory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncSession:
    """Async context manager that yields a database session.

    Yields a fresh AsyncSession for each call.  The session is closed and
    its connection returned to the pool when the context exits, whether
    normally or via exception.  Uncommitted work is rolled back on close.

    Example:
        async with get_session() as session:
            await session.execute(...)
            await session.commit()
    """
    async with AsyncSessionFactory() as session:
        yield session


def run_blocking(coro_factory):
    """Run a coroutine to completion from synchronous code (CLI, Celery tasks).

    Each call gets a fresh event loop.  The engine is disposed inside that
    loop, since pooled asyncpg connections are bound to the loop that opened
    them.
    """
    import asyncio  # noqa: PLC0415

    async def _wrapped():
        try:
            return await coro_factory()
        finally:
            await engine.dispose()

    return asyncio.run(_wrapped())
