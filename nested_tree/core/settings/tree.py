"""Nested-set engine behaviour settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DeleteModeName = Literal["soft", "hard"]


class TreeSettings(BaseSettings):
    """Tree mutation, locking and retry configuration.

    Environment variables use TREE_ prefix.
    Example: TREE_SINGLE_ROOT=true, TREE_LOCK_TIMEOUT_MS=2000
    """

    # ─────────────────────────────────────────────────────
    # Tree shape
    # ─────────────────────────────────────────────────────
    single_root: bool = Field(
        default=False,
        description="Allow at most one root per scope; a second create_root raises.",
    )
    default_delete_mode: DeleteModeName = Field(
        default="hard",
        description="Delete mode used when delete() is called without an explicit mode.",
    )

    # ─────────────────────────────────────────────────────
    # Locking
    # ─────────────────────────────────────────────────────
    lock_timeout_ms: int = Field(
        default=5000,
        ge=0,
        le=600_000,
        description="Lock wait timeout for scope locks in milliseconds (0 = wait forever).",
    )
    use_advisory_locks: bool = Field(
        default=True,
        description="Use pg_advisory_xact_lock on PostgreSQL instead of row locks.",
    )

    # ─────────────────────────────────────────────────────
    # Retry on ConcurrentModificationError
    # ─────────────────────────────────────────────────────
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Total attempts for run_with_retry (1 = no retry).",
    )
    retry_initial_delay: float = Field(
        default=0.05,
        ge=0.0,
        le=10.0,
        description="Delay before the first retry in seconds.",
    )
    retry_max_delay: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Upper bound for the exponential backoff delay in seconds.",
    )

    model_config = SettingsConfigDict(
        env_prefix="TREE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _check_delays(self) -> TreeSettings:
        if self.retry_initial_delay > self.retry_max_delay:
            msg = "retry_initial_delay must not exceed retry_max_delay"
            raise ValueError(msg)
        return self
