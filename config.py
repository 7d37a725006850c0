"""
Configuration settings for the hemisphere session runtime.

Uses Pydantic Settings for environment variable management with .env file support.
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
        env_prefix="HEMISPHERE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Outbox Delivery
    # ========================================
    outbox_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Send attempts before an entry is dead-lettered",
    )
    outbox_base_backoff_ms: int = Field(
        default=1_000,
        ge=0,
        description="Delay before the first retry (milliseconds)",
    )
    outbox_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential growth factor between retries",
    )
    outbox_jitter_ratio: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Symmetric random jitter applied to each retry delay",
    )
    outbox_storage_key: str = Field(
        default="hemisphere:outbox:v1",
        description="Storage key holding the persisted outbox queue",
    )

    # ========================================
    # Local Storage
    # ========================================
    storage_dir: Path = Field(
        default=Path.home() / ".hemisphere" / "storage",
        description="Directory backing the key/value store",
    )

    # ========================================
    # Presentation Queue
    # ========================================
    queue_prefetch_window: int = Field(
        default=2,
        ge=0,
        description="Items after the cursor eligible for prefetching",
    )

    # ========================================
    # Backend API
    # ========================================
    api_base_url: str = Field(
        default="http://127.0.0.1:3001",
        description="Base URL of the learning API",
    )
    api_key: str | None = Field(
        default=None,
        description="Bearer token sent with response submissions",
    )
    api_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout for response submissions",
    )
    api_responses_path: str = Field(
        default="/api/responses",
        description="Endpoint receiving learner responses",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
