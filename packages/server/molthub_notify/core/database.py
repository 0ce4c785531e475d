"""
Database engine and sessions.

Request handlers get a session through `get_session`. Queue workers and the
fan-out resolver open their own through a `SessionFactory`, by default
`get_session_context`, because each concurrent task needs its own session.
"""

from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Callable

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from molthub_notify.core.config import get_settings

settings = get_settings()

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_session_context():
    """Session committed on clean exit and rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_session_context() as session:
        yield session


async def ping_db() -> bool:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def upsert(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    *,
    conflict_on: list[str],
    update: dict[str, Any],
) -> None:
    """INSERT ... ON CONFLICT (conflict_on) DO UPDATE SET update.

    A single statement, so concurrent callers racing on the same natural key
    both succeed. PostgreSQL in production, SQLite in tests.
    """
    if session.get_bind().dialect.name == "postgresql":
        insert = postgresql.insert
    else:
        insert = sqlite.insert
    stmt = insert(model.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(index_elements=conflict_on, set_=update)
    await session.execute(stmt)
