import logging
from collections.abc import AsyncGenerator
from typing import Any, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

# Pool tuning that SQLite's single-file pools reject
_POOL_OPTIONS = ("pool_size", "max_overflow", "pool_pre_ping")


def normalize_database_url(database_url: str) -> str:
    """
    Route plain PostgreSQL URLs, as handed out by managed providers, through
    the asyncpg driver.

    >>> normalize_database_url("postgres://u:p@db/cms")
    'postgresql+asyncpg://u:p@db/cms'
    >>> normalize_database_url("sqlite+aiosqlite:///cms.db")
    'sqlite+aiosqlite:///cms.db'
    """
    scheme, sep, rest = database_url.partition("://")
    if sep and scheme in ("postgres", "postgresql"):
        return f"postgresql+asyncpg://{rest}"
    return database_url


def _on_sqlite_connect(dbapi_connection, _record) -> None:  # pragma: no cover
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(
    database_url: str,
    *,
    echo: bool = False,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """
    Create the process-wide async engine and session factory.

    SQLite connections enforce foreign keys, so ``ON DELETE`` rules behave
    as they do on PostgreSQL.

    Args:
        database_url: e.g. ``sqlite+aiosqlite:///cms.db`` or a PostgreSQL URL.
        echo: Log every emitted statement.
        **engine_kwargs: Passed to ``create_async_engine``; pool options are
            dropped for SQLite.
    """
    global _engine, _session_factory

    url = make_url(normalize_database_url(database_url))
    options: dict[str, Any] = {"echo": echo, **engine_kwargs}

    if url.get_backend_name() == "sqlite":
        for name in _POOL_OPTIONS:
            options.pop(name, None)
        options.setdefault("connect_args", {"check_same_thread": False})
        _engine = create_async_engine(url, **options)
        event.listen(_engine.sync_engine.pool, "connect", _on_sqlite_connect)
    else:
        options.setdefault("pool_pre_ping", True)
        _engine = create_async_engine(url, **options)

    _session_factory = async_sessionmaker(
        bind=_engine, expire_on_commit=False, autoflush=False
    )
    logger.debug("Database engine ready for %s", url.render_as_string(hide_password=True))
    return _engine


async def create_all() -> None:
    """Create every table registered on ``Model.metadata``. No migrations."""
    from .models import Model

    async with get_engine().begin() as conn:
        await conn.run_sync(Model.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("init_db() has not been called")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("init_db() has not been called")
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Anything not committed by the handler is rolled back when the session
    closes.
    """
    async with get_session_factory()() as session:
        yield session
