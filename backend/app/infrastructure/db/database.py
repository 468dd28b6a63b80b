"""
Database Configuration for the Billing Service

Async SQLAlchemy engine and session management over asyncpg. The engine
is built lazily so the API (health, webhooks without persistence) can boot
without ``DATABASE_URL``; repositories fail with ``ConfigurationError``
on first use instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from app.config.settings import Settings, get_settings
from app.infrastructure.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

APPLICATION_NAME = "billing-service"

_ASYNC_PREFIXES = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)


def to_async_url(database_url: str) -> str:
    """Force the asyncpg driver on plain ``postgres://`` style URLs."""
    for prefix, replacement in _ASYNC_PREFIXES:
        if database_url.startswith(prefix):
            return replacement + database_url[len(prefix):]
    return database_url


class DatabaseManager:
    """
    Owns the process-wide engine and session factory.

    One instance per process (see ``get_db_manager``); ``close`` disposes
    the pool and lets the next use rebuild it.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.database_url)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._build()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._build()
        return self._session_factory

    def _build(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(
                "DATABASE_URL is required",
                missing_keys=["DATABASE_URL"],
            )

        s = self._settings
        self._engine = create_async_engine(
            to_async_url(s.database_url),
            echo=s.database_echo,
            pool_size=s.database_pool_size,
            max_overflow=s.database_max_overflow,
            pool_timeout=s.database_pool_timeout,
            pool_pre_ping=True,
            connect_args={"server_settings": {"application_name": APPLICATION_NAME}},
        )
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(f"Database engine ready (pool_size={s.database_pool_size})")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and rolls back on any exception."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables from SQLModel metadata (local development only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get or create the process-wide database manager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a transactional session."""
    async with get_db_manager().session() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """
    Transactional session outside FastAPI requests (repositories, scripts).

    Usage:
        async with get_session_context() as session:
            result = await session.execute(query)
    """
    async with get_db_manager().session() as session:
        yield session


async def init_db() -> None:
    """Open the pool and check connectivity (app startup)."""
    await get_db_manager().ping()
    logger.info("Database connection verified")


async def close_db() -> None:
    """Dispose of the pool (app shutdown)."""
    await get_db_manager().close()
