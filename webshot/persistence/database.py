"""Async engine and session management for the capture record store."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./webshot.db"

# Sync driver prefixes and the async driver that replaces them
_ASYNC_DRIVERS = (
    ("postgresql+psycopg://", "postgresql+psycopg_async://"),
    ("postgresql://", "postgresql+psycopg_async://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)


class Base(DeclarativeBase):
    """Declarative base for capture, group and job tables."""
    pass


def normalize_database_url(url: str) -> str:
    """Rewrite a PostgreSQL or SQLite URL to use its async driver."""
    for prefix, replacement in _ASYNC_DRIVERS:
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


class DatabaseConfig:
    """Lazily created async engine plus a transactional session scope."""

    def __init__(self, url: Optional[str] = None, pool_size: int = 5, echo: bool = False):
        """Initialize database configuration.

        Args:
            url: Database URL; a local SQLite file when omitted
            pool_size: Connections kept for server databases (SQLite is unpooled)
            echo: Log emitted SQL
        """
        self.url = normalize_database_url(url or DEFAULT_DATABASE_URL)
        self.pool_size = pool_size
        self.echo = echo

        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            if self.is_sqlite:
                # One connection per session; aiosqlite connections are task-bound
                self._engine = create_async_engine(self.url, poolclass=NullPool, echo=self.echo)
            else:
                self._engine = create_async_engine(
                    self.url,
                    pool_size=self.pool_size,
                    pool_pre_ping=True,
                    echo=self.echo,
                )
            logger.debug(f"Created database engine for {self.engine_name}")
        return self._engine

    @property
    def engine_name(self) -> str:
        return self.url.split("://", 1)[0]

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on any error."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create the capture tables that do not exist yet."""
        from . import models  # noqa: F401  registers tables on Base.metadata

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Capture tables ready on {self.engine_name}")

    async def close(self) -> None:
        """Dispose of the engine; safe to call more than once."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
