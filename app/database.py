"""
Async SQLAlchemy plumbing for saved guides.

Postgres (asyncpg) in deployment, SQLite (aiosqlite) in tests; both go
through the same engine/session factory below.
"""
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
import logging

from app.config import settings

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=not _is_sqlite(settings.DATABASE_URL),
    poolclass=NullPool,
)

if _is_sqlite(settings.DATABASE_URL):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session: committed when the route returns normally,
    rolled back if it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.error("Rolling back guide session: %s", exc)
            raise


async def ping(session: AsyncSession) -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    await session.execute(text("SELECT 1"))


async def init_db() -> None:
    """Create the users/guides tables if they do not exist yet."""
    # Registers the ORM classes on Base.metadata
    from app.models import database_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))

    async with AsyncSessionLocal() as session:
        await ping(session)


async def close_db() -> None:
    await engine.dispose()
    logger.info("Database engine disposed")
