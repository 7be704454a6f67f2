"""
Async engine and session handling for the users, sessions, blacklist and audit tables.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from .exceptions import ConnectionError, DatabaseError
from .models.base import Base

logger = logging.getLogger(__name__)


def _engine_options(database_url: str, echo: bool, overrides: Dict[str, Any]) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # An in-memory database lives only as long as its single connection
        in_memory = ":memory:" in database_url or "mode=memory" in database_url
        options["connect_args"] = {"check_same_thread": False}
        options["poolclass"] = StaticPool if in_memory else NullPool
    else:
        options["pool_recycle"] = 300
    options.update(overrides)
    return options


class Database:
    """Owns the engine and hands out sessions.

    One instance lives on ``app.state.db``; the CLI builds its own.
    """

    def __init__(self, database_url: Optional[str] = None, **kwargs: Any) -> None:
        from phonegate.core.config import settings

        self.database_url = database_url or settings.DATABASE_URL
        if not self.database_url:
            raise ValueError("Database URL is required")
        echo = bool(kwargs.pop("echo_sql", settings.ECHO_SQL))
        safe_url = make_url(self.database_url).render_as_string(hide_password=True)

        try:
            self.engine: AsyncEngine = create_async_engine(
                self.database_url, **_engine_options(self.database_url, echo, kwargs)
            )
        except Exception as e:
            logger.error(f"Failed to initialize database engine for {safe_url}: {e}")
            raise ConnectionError(
                f"Failed to connect to database: {e}",
                context={"database_url": safe_url},
                original_exception=e,
            )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        logger.info(f"Database engine ready for {safe_url}")

    async def create_all(self) -> None:
        """Create every table registered on the declarative base."""
        # Registers every model with Base.metadata
        from phonegate import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session for work outside a request; commits on success."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error: {e}")
                raise DatabaseError(f"Database operation failed: {e}", original_exception=e)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections closed")


# FastAPI dependency
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session from ``app.state.db``; committed after the endpoint returns."""
    database: Optional[Database] = getattr(request.app.state, "db", None)
    if database is None:
        raise RuntimeError("Database not initialized")

    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise
