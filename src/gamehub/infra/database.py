"""Metadata store engine.

One async engine per process. Repositories never see it directly: they
receive the session factory and open a short session per operation.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from gamehub.config import DatabaseConfig, get_config
from gamehub.logging_schema import LogEvent

# Register tables on SQLModel.metadata
from gamehub.core import models  # noqa: F401

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def engine_options(config: DatabaseConfig) -> dict:
    """create_async_engine kwargs. SQLite has no connection pool to size."""
    options: dict = {"echo": config.echo}
    if config.url.startswith("sqlite"):
        return options
    return options | {
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


async def _prepare(engine: AsyncEngine, create_tables: bool) -> None:
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if create_tables:
            await conn.run_sync(SQLModel.metadata.create_all)


async def init_db(config: DatabaseConfig | None = None) -> None:
    """Connect, probe and optionally create tables.

    The engine is disposed again when the probe fails so a retry starts clean.
    """
    global _engine, _sessions

    config = config or get_config().database
    engine = create_async_engine(config.url, **engine_options(config))
    try:
        await _prepare(engine, config.create_tables)
    except Exception as exc:
        logger.error(
            "Database connection failed",
            extra={
                "event": LogEvent.DB_ERROR,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        await engine.dispose()
        raise

    _engine = engine
    _sessions = async_sessionmaker(engine, expire_on_commit=False)
    logger.info("Database connected", extra={"event": LogEvent.DB_CONNECTED})


async def close_db() -> None:
    global _engine, _sessions

    engine, _engine, _sessions = _engine, None, None
    if engine is not None:
        await engine.dispose()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the hub's repositories and stream auth."""
    if _sessions is None:
        raise RuntimeError("Database not initialized")
    return _sessions
