"""Database session management."""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from backend.app.config import Settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite") and parsed.database in (None, "", ":memory:"):
        # One shared connection, otherwise every checkout sees an empty database
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"poolclass": NullPool}


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, settings: Settings):
        self.url = str(settings.database_url)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=settings.debug,
            future=True,
            **_engine_options(self.url),
        )
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def init(self) -> None:
        """Initialize database connection."""
        logger.info("Initializing database connection...")
        try:
            async with self.engine.begin() as conn:
                # Test connection
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection established")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def ping(self) -> float:
        """Run a trivial query and return its latency in milliseconds."""
        start = time.perf_counter()
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (time.perf_counter() - start) * 1000

    async def close(self) -> None:
        """Close database connection."""
        logger.info("Closing database connection...")
        await self.engine.dispose()
        logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
