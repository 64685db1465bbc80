"""Configuration settings for the Underdogs Cup helper."""

from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .enums import RelinkPolicy

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    postgres_db: str = Field(default="uc_helper")
    postgres_user: str = Field(default="uc_helper")
    postgres_password: str = Field(default="dev_password")
    postgres_host: str = Field(default="postgres")
    postgres_port: int = Field(default=5432)
    database_url_override: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy async URL; takes precedence over postgres_* fields",
    )

    @property
    def database_url(self) -> str:
        """Construct async database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Application Configuration
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    @property
    def environment(self) -> str:  # noqa: vulture
        """Get current environment from ENVIRONMENT variable."""
        env = os.getenv("ENVIRONMENT", "").lower()
        return env if env in ["dev", "production"] else "dev"

    # TETR.IO API Configuration
    tetrio_api_base_url: str = Field(default="https://ch.tetr.io/api")
    tetrio_session_id: str = Field(
        default="uc-helper",
        description="Sent as X-Session-ID so the API can group our requests",
    )
    api_timeout_seconds: float = Field(default=10.0, gt=0)
    api_max_retries: int = Field(default=3, ge=0, le=10)
    api_backoff_base_seconds: float = Field(default=1.0, ge=0)
    api_max_retry_wait_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Longest single wait between retries; a longer Retry-After fails at once",
    )

    # Persistence
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # Identity linking
    relink_policy: RelinkPolicy = Field(
        default=RelinkPolicy.SUPERSEDE,
        description="What happens when a second Discord user links an already linked TETR.IO account",
    )
    link_conflict_retries: int = Field(default=2, ge=0, le=10)
    stale_after_minutes: int = Field(
        default=45,
        gt=0,
        description="Age after which a stats snapshot is reported as stale",
    )

    # Stale stats sweep
    refresh_sweep_enabled: bool = Field(default=False)
    refresh_sweep_interval_minutes: int = Field(default=60, gt=0)
    refresh_concurrency: int = Field(default=4, ge=1, le=32)

    # Nickname sync
    rename_webhook_url: Optional[str] = Field(
        default=None,
        description="Bot endpoint that performs Discord nickname changes; unset disables renames",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Reject log levels the stdlib logging module does not know."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix for environment variables
        extra="forbid",  # Forbid extra fields for better type safety
    )


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


# Create a global settings instance lazily
settings: Settings | None = None


def get_global_settings() -> Settings:
    """Get or create the global settings instance."""
    global settings
    if settings is None:
        settings = get_settings()
    return settings
