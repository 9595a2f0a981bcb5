"""
Configuration settings for the cadence practice core.

Uses Pydantic Settings for environment variable management with .env file support.
Every field can be overridden with a ``CADENCE_`` prefixed environment variable.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    storage_prefix: str = Field(
        default="course",
        description="Course-specific prefix for every persisted record key",
    )
    state_db_path: Path = Field(
        default=Path.home() / ".cadence" / "state.db",
        description="SQLite file backing the key-value store",
    )

    # ========================================
    # Content layer inputs
    # ========================================
    concept_index_path: Path | None = Field(
        default=None,
        description="JSON file mapping item keys to concept names",
    )
    module_names: dict[int, str] = Field(
        default_factory=dict,
        description="Display names per module number",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Pomodoro timer
    # ========================================
    focus_minutes: int = Field(default=25, description="Default focus block length")
    break_minutes: int = Field(default=5, description="Default short break length")
    long_break_minutes: int = Field(default=15, description="Default long break length")
    cycles_before_long_break: int = Field(
        default=4,
        description="Completed focus cycles between long breaks",
    )

    # ========================================
    # Practice queues
    # ========================================
    default_session_count: int = Field(
        default=10,
        description="Items per practice session when none is requested",
    )
    min_session_size: int = Field(
        default=5,
        description="Smallest candidate pool for review/weakest sessions",
    )

    # ========================================
    # Concept strength
    # ========================================
    recency_decay_days: float = Field(
        default=30.0,
        description="Days after which a review counts half as much",
    )
    concept_min_samples: int = Field(default=3, description="Reviews before a concept is rated")
    module_min_samples: int = Field(default=5, description="Reviews before a module is rated")

    def storage_key(self, suffix: str) -> str:
        """Build a namespaced record key: storage_key('srs') -> 'course-srs'."""
        return f"{self.storage_prefix}-{suffix}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
