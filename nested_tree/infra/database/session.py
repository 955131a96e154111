"""Async engine, session factory and transaction helpers."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from nested_tree.core.settings import get_db_settings, get_tree_settings
from nested_tree.utils.retry import retry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from nested_tree.core.settings import DatabaseSettings, TreeSettings

logger = logging.getLogger(__name__)

R = TypeVar("R")

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def enable_sqlite_savepoints(engine: AsyncEngine) -> AsyncEngine:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT works.

    The sqlite3 driver opens transactions lazily on its own, which breaks
    ``begin_nested``. Switching the driver to autocommit and emitting BEGIN
    from the ``begin`` event restores normal transaction semantics.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        _ = connection_record
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


def create_engine_from_settings(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Create an async engine from DatabaseSettings.

    Args:
        settings: Database settings; loaded via get_db_settings() if None

    Returns:
        Configured AsyncEngine (SQLite engines get savepoint support)
    """
    settings = settings or get_db_settings()
    engine = create_async_engine(settings.dsn, **settings.engine_kwargs())
    if settings.is_sqlite:
        enable_sqlite_savepoints(engine)

    logger.debug("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def get_engine() -> AsyncEngine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings()
    return _engine


def get_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine`` (or the process-wide engine).

    Sessions keep attributes loaded after commit and do not autoflush, so
    the tree engine controls exactly when pending rows hit the database.
    """
    global _session_factory
    if engine is not None:
        return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_async_session(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession]:
    """Session that commits on success and rolls back on error.

    Example:
        async with get_async_session() as session:
            await engine.append_child(session, parent_id, Category(name="Books"))
    """
    factory = session_factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession]:
    """Run a block in its own transaction, or a savepoint inside the caller's.

    Any exception raised inside the block rolls back exactly the work done
    in the block and propagates.
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield session
    else:
        async with session.begin():
            yield session


async def run_with_retry(
    session_factory: async_sessionmaker[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[R]],
    *,
    settings: TreeSettings | None = None,
    operation: str = "tree.unit_of_work",
) -> R:
    """Run ``fn`` in a fresh committed transaction, retrying on concurrent modification.

    Each attempt opens a new session so nothing from a failed attempt leaks
    into the next one. After the last attempt the ConcurrentModificationError
    itself is raised, its details extended with ``operation`` and ``attempts``.

    Example:
        moved = await run_with_retry(
            get_session_factory(),
            lambda session: engine.move(session, node_id, target_id),
            operation="tree.move",
        )
    """
    settings = settings or get_tree_settings()

    @retry(
        max_attempts=settings.retry_attempts,
        initial_delay=settings.retry_initial_delay,
        max_delay=settings.retry_max_delay,
        operation=operation,
    )
    async def _attempt() -> R:
        async with session_factory() as session, session.begin():
            return await fn(session)

    return await _attempt()


async def close_database() -> None:
    """Dispose the process-wide engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connection closed")
    _engine = None
    _session_factory = None


__all__ = [
    "atomic",
    "close_database",
    "create_engine_from_settings",
    "enable_sqlite_savepoints",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "run_with_retry",
]
