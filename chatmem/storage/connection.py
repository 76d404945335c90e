"""Database connection manager for the local relational store."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..core.config import Settings, ensure_asyncpg_url, get_settings
from ..core.exceptions import PersistenceError

_logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Owns the async engine and session factory for one process.

    Built once in the application lifespan and handed to the components
    that need it; there is no module-level instance.
    """

    engine: AsyncEngine | None
    session_factory: async_sessionmaker[AsyncSession] | None

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    async def create(cls, settings: Settings | None = None) -> "DatabaseManager":
        """Async factory; disposes the engine again if setup fails half-way."""
        settings = settings or get_settings()
        db = settings.database
        url = ensure_asyncpg_url(db.url)
        engine_kwargs: dict = {"echo": db.echo, "pool_pre_ping": True}
        if url.startswith("postgresql"):
            engine_kwargs.update(pool_size=db.pool_size, max_overflow=db.max_overflow)
        engine = create_async_engine(url, **engine_kwargs)
        try:
            return cls(engine)
        except Exception:
            await engine.dispose()
            raise

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session: commit on success, rollback on error.

        Driver and connection failures surface as ``PersistenceError``.
        """
        if self.session_factory is None:
            raise PersistenceError("DatabaseManager is closed")
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except (SQLAlchemyError, OSError) as e:
            await session.rollback()
            _logger.warning("db_session_failed", error=str(e), error_type=type(e).__name__)
            raise PersistenceError(str(e)) from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self) -> None:
        """Create tables directly from the models (tests and local development)."""
        from .models import Base

        if self.engine is None:
            raise PersistenceError("DatabaseManager is closed")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose the engine and its pool."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
