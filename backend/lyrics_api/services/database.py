"""
Async database connection using SQLAlchemy + asyncpg.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from lyrics_api.config import settings

logger = logging.getLogger(__name__)

# Convert postgresql:// to postgresql+asyncpg://
_db_url = settings.database_url
if _db_url.startswith("postgresql://"):
    _db_url = _db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

engine = create_async_engine(
    _db_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_db(
    session_factory: async_sessionmaker | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    Usage:
        async with get_db() as session:
            result = await session.execute(...)
    """
    async with (session_factory or AsyncSessionLocal)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def insert_for(session: AsyncSession, model):
    """
    INSERT construct of the session's dialect, so ON CONFLICT clauses work
    on PostgreSQL in production and SQLite in tests.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


async def init_db() -> None:
    """
    Initialize database tables using Alembic migrations.
    Falls back to create_all() if Alembic is not available.
    Called at application startup.
    """
    try:
        from alembic.config import Config
        from alembic import command
        import os

        alembic_ini = os.path.join(os.path.dirname(__file__), "..", "..", "alembic.ini")
        if os.path.exists(alembic_ini):
            alembic_cfg = Config(alembic_ini)
            command.upgrade(alembic_cfg, "head")
            logger.info("[Database] Alembic migrations applied")
            return
    except Exception as e:
        logger.warning("[Database] Alembic migration failed (%s), falling back to create_all()", e)

    from lyrics_api.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[Database] Tables created/verified (create_all fallback)")


async def close_db() -> None:
    """
    Close database connections.
    Called at application shutdown.
    """
    await engine.dispose()
    logger.info("[Database] Connections closed")
