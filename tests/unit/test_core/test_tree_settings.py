"""Unit tests for Pydantic Settings v2 configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from nested_tree.core.settings import (
    DatabaseSettings,
    LoggingSettings,
    TreeSettings,
    get_db_settings,
    get_logging_settings,
    get_tree_settings,
)


@pytest.mark.unit
class TestTreeSettings:
    """Test suite for TreeSettings."""

    def test_defaults(self):
        settings = TreeSettings()

        assert settings.single_root is False
        assert settings.default_delete_mode == "hard"
        assert settings.lock_timeout_ms == 5000
        assert settings.retry_attempts == 3

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TREE_SINGLE_ROOT", "true")
        monkeypatch.setenv("TREE_DEFAULT_DELETE_MODE", "soft")

        settings = get_tree_settings()

        assert settings.single_root is True
        assert settings.default_delete_mode == "soft"

    def test_frozen(self):
        settings = TreeSettings()

        with pytest.raises(ValidationError):
            settings.single_root = True

    def test_rejects_unknown_delete_mode(self):
        with pytest.raises(ValidationError):
            TreeSettings(default_delete_mode="archive")

    def test_initial_delay_cannot_exceed_max(self):
        with pytest.raises(ValidationError, match="retry_initial_delay"):
            TreeSettings(retry_initial_delay=5.0, retry_max_delay=1.0)

    def test_loader_is_cached(self):
        assert get_tree_settings() is get_tree_settings()


@pytest.mark.unit
class TestDatabaseSettings:
    """Test suite for DatabaseSettings."""

    def test_database_url_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://u:p@db/app")

        settings = get_db_settings()

        assert settings.dsn == "postgresql+psycopg://u:p@db/app"
        assert settings.is_sqlite is False
        assert settings.engine_kwargs()["pool_size"] == 5

    def test_sqlite_skips_pool_size(self):
        settings = DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:", isolation_level="SERIALIZABLE")

        kwargs = settings.engine_kwargs()

        assert settings.is_sqlite is True
        assert "pool_size" not in kwargs
        assert kwargs["isolation_level"] == "SERIALIZABLE"


@pytest.mark.unit
class TestLoggingSettings:
    """Test suite for LoggingSettings."""

    def test_log_json_alias(self, monkeypatch):
        monkeypatch.setenv("LOG_JSON", "true")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = get_logging_settings()

        assert settings.json_logs is True
        assert settings.level == "DEBUG"

    def test_to_logging_kwargs(self, tmp_path):
        settings = LoggingSettings(json_logs=False, file_path=tmp_path / "tree.log")

        kwargs = settings.to_logging_kwargs()

        assert kwargs["json_logs"] is False
        assert kwargs["log_level"] == "INFO"
        assert kwargs["file_path"] == str(tmp_path / "tree.log")
