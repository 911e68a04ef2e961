"""Async database engine and session management for the relational cache.

Uses SQLAlchemy 2.0 async. A bare file path is treated as a SQLite database
(aiosqlite driver); anything containing "://" is used as a full async URL.
"""

import logging
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)


def resolve_database_url(connection_string: str, data_folder: str) -> str:
    """Turn the configured connection string into an async SQLAlchemy URL.

    Relative SQLite paths are placed under the data folder.
    """
    if "://" in connection_string:
        return connection_string

    path = Path(connection_string).expanduser()
    if not path.is_absolute():
        path = Path(data_folder).expanduser() / path
    return f"sqlite+aiosqlite:///{path.resolve()}"


def create_engine(url: str) -> AsyncEngine:
    """Create the async engine. Raises ArgumentError for malformed URLs."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        database = parsed.database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(url, echo=False)

    return create_async_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if they don't exist."""
    from releasecache.models import Base  # noqa: F811

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Cache database initialized | url=%s", engine.url.render_as_string(hide_password=True))


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections on shutdown."""
    await engine.dispose()
    logger.info("Cache database connections closed")
