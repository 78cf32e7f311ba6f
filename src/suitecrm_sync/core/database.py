"""Async SQLAlchemy engine for the integration's own tables.

Provides:
- Base: Declarative base for mapping, sync-log and plugin-settings tables
- get_engine(): lazy engine singleton built from Settings.DATABASE_URL
- get_session(): AsyncSession generator, the repositories' session_factory
- wait_for_database(): bounded startup wait (tenacity) for the database
- init_db(): wait, then install/migrate the schema
- close_db(): dispose of the engine
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.suitecrm_sync.config import get_settings

logger = structlog.get_logger(__name__)

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs: dict = {"echo": False, "pool_pre_ping": True}
        if not settings.DATABASE_URL.startswith("sqlite"):
            kwargs.update(pool_size=10, max_overflow=5)
        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all integration tables."""


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the engine singleton."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def wait_for_database(engine: AsyncEngine, attempts: int | None = None) -> None:
    """Block until the database accepts connections.

    Raises:
        OperationalError: If the database is still unreachable after
            ``attempts`` tries.
    """
    attempts = attempts or get_settings().DB_CONNECT_ATTEMPTS
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((OperationalError, OSError)),
        reraise=True,
    ):
        with attempt:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            if attempt.retry_state.attempt_number > 1:
                logger.info(
                    "database.ready",
                    attempts=attempt.retry_state.attempt_number,
                )


async def init_db() -> dict:
    """Wait for the database, then install or migrate the schema.

    Returns:
        The SchemaManager install report ({"success", "details"}).
    """
    from src.suitecrm_sync.mappings.schema_manager import SchemaManager
    from src.suitecrm_sync.settings_store import PluginSettingModel

    engine = get_engine()
    await wait_for_database(engine)
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda c: Base.metadata.create_all(c, tables=[PluginSettingModel.__table__])
        )
    return await SchemaManager(engine).install()


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
