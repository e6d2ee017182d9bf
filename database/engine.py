import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import BigInteger, Integer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import settings

logger = logging.getLogger(__name__)

db_engine = create_async_engine(settings.database_url, echo=settings.database_echo)

# Create async session maker to be used throughout the application
AsyncSessionLocal = async_sessionmaker(
    db_engine, class_=AsyncSession, expire_on_commit=False
)

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


# Base class for declarative models
class Base(DeclarativeBase):
    pass


@asynccontextmanager
async def session_scope(session: Optional[AsyncSession] = None) -> AsyncIterator[AsyncSession]:
    """
    Yield a session to run a unit of work in.

    A caller-supplied session is yielded untouched: the caller owns the
    transaction and decides when to commit. Without one, a new session is
    opened and committed on success or rolled back on error.
    """
    if session is not None:
        yield session
        return

    async with AsyncSessionLocal() as own_session:
        try:
            yield own_session
            await own_session.commit()
        except Exception:
            await own_session.rollback()
            raise


# Dependency to get DB session
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def init_db():
    """Create tables that do not exist yet."""
    # Register every model on Base.metadata
    from database.models import (  # noqa: F401
        applications,
        candidates,
        companies,
        interviews,
        jobs,
        pipelines,
        sla,
        users,
    )

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def close_db():
    """Close database engine and connections."""
    await db_engine.dispose()
