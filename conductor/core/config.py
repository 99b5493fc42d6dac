"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    conductor_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    conductor_log_file: str | None = Field(
        default=None,
        description="Optional path of a rotating log file",
    )
    conductor_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Execution
    conductor_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries on the same worker before reassignment",
    )
    conductor_max_concurrent_dispatches: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Maximum dispatches in flight within one wave",
    )
    conductor_dispatch_timeout: float = Field(
        default=600.0,
        gt=0,
        description="Default per-dispatch deadline in seconds",
    )

    # Planning
    conductor_max_replans: int = Field(
        default=3,
        ge=0,
        description="Cycle-resolution callback rounds before giving up",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.conductor_max_retries
        2
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
