"""Database session infrastructure."""

from nested_tree.infra.database.session import (
    atomic,
    close_database,
    create_engine_from_settings,
    enable_sqlite_savepoints,
    get_async_session,
    get_engine,
    get_session_factory,
    run_with_retry,
)

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
