"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Orchestration
    embellishment_concurrency: int = Field(
        default=2,
        ge=1,
        le=64,
        description="Maximum number of items dispatched at once per task",
    )
    embellishment_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries allowed per item before it is marked failed",
    )
    embellishment_retry_delay_ms: int = Field(
        default=2000,
        ge=0,
        description="Delay before a retried item becomes admissible again (ms)",
    )

    # Logging
    embellishment_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    embellishment_log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated daily)",
    )
    embellishment_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Persistence
    embellishment_database_url: str | None = Field(
        default=None,
        description="Async SQLAlchemy URL for the task store (in-memory when unset)",
    )

    # Capabilities
    embellishment_capabilities_file: str | None = Field(
        default=None,
        description="YAML file describing the available capabilities",
    )

    @property
    def retry_delay_seconds(self) -> float:
        """Retry delay expressed in seconds."""
        return self.embellishment_retry_delay_ms / 1000.0

    @property
    def database_url_async(self) -> str | None:
        """Get async database URL (with asyncpg driver for PostgreSQL)."""
        url = self.embellishment_database_url
        if url and url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.embellishment_concurrency
        2
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
