"""Pydantic Settings v2 configuration.

Settings are split by concern (tree engine, database, logging), read from
environment variables (and an optional .env file), frozen after validation
and cached by the loaders below.

    from nested_tree.core.settings import get_tree_settings

    settings = get_tree_settings()
    settings.lock_timeout_ms
"""

from __future__ import annotations

from .database import DatabaseSettings
from .loader import (
    clear_settings_cache,
    get_db_settings,
    get_logging_settings,
    get_tree_settings,
)
from .logs import LoggingSettings
from .tree import TreeSettings

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "TreeSettings",
    "clear_settings_cache",
    "get_db_settings",
    "get_logging_settings",
    "get_tree_settings",
]
