"""
Async SQLAlchemy session factory for PostgreSQL.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import config

logger = logging.getLogger(__name__)

T = TypeVar("T")

engine = create_async_engine(
    config.database_url,
    echo=False,
    pool_size=10,
    max_overflow=20,
    pool_recycle=3600,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency function: use in FastAPI `Depends(get_db_session)`."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def run_in_session(
    db_session: Optional[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """
    Run *fn* against the caller's session (flush only) or, when none is
    given, against a fresh one that is committed or rolled back here.
    """
    own_session = db_session is None
    session = db_session or async_session_factory()
    try:
        result = await fn(session)
        if own_session:
            await session.commit()
        else:
            await session.flush()
        return result
    except Exception:
        if own_session:
            await session.rollback()
        raise
    finally:
        if own_session:
            await session.close()


async def init_models() -> None:
    """Create any missing tables.  Existing tables are left untouched."""
    from database.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified")


async def dispose_engine() -> None:
    await engine.dispose()
