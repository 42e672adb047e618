"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskflow.core.errors import ConfigurationError
from taskflow.models.task import CacheDuration, FilterKey


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # Airtable (remote task store)
    AIRTABLE_TOKEN: str = Field(default="")
    AIRTABLE_BASE: str = Field(default="")
    AIRTABLE_TABLE: str = Field(default="Tasks")
    AIRTABLE_OBSERVATIONS_TABLE: str = Field(default="", description="Empty disables observations")
    AIRTABLE_FUEL_TABLE: str = Field(default="", description="Empty disables the fuel ledger")
    AIRTABLE_API_URL: str = Field(default="https://api.airtable.com/v0")
    AIRTABLE_PAGE_SIZE: int = Field(default=25, ge=1, le=100)

    # Telegram reminders
    TELEGRAM_BOT_TOKEN: str = Field(default="")
    TELEGRAM_API_URL: str = Field(default="https://api.telegram.org")
    TELEGRAM_AUTHORIZED_USERS: str = Field(
        default="",
        description="Comma separated Telegram user ids; empty allows everyone",
    )

    # Sync
    CACHE_DURATION: CacheDuration = Field(default=CacheDuration.TWELVE_HOURS)
    ACTIVE_FILTER: FilterKey = Field(default=FilterKey.TODAY)
    REMOTE_TIMEOUT_SECONDS: float = Field(default=10.0)
    SYNC_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    SYNC_BACKOFF_BASE_SECONDS: float = Field(default=2.0)
    SYNC_BACKOFF_MAX_SECONDS: float = Field(default=300.0)
    POLL_INTERVAL_SECONDS: float = Field(default=60.0)

    # Local state persistence
    STATE_BACKEND: str = Field(default="file", description="file | redis")
    STATE_FILE_PATH: str = Field(default=".taskflow/state.json")
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    STATE_REDIS_KEY: str = Field(default="taskflow:state")

    @property
    def authorized_users_list(self) -> List[int]:
        """Parse TELEGRAM_AUTHORIZED_USERS into a list of ids."""
        return [
            int(user_id.strip())
            for user_id in self.TELEGRAM_AUTHORIZED_USERS.split(",")
            if user_id.strip()
        ]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def airtable_configured(self) -> bool:
        return bool(self.AIRTABLE_TOKEN and self.AIRTABLE_BASE and self.AIRTABLE_TABLE)

    @property
    def telegram_configured(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN)

    @property
    def observations_configured(self) -> bool:
        return self.airtable_configured and bool(self.AIRTABLE_OBSERVATIONS_TABLE)

    @property
    def fuel_configured(self) -> bool:
        return self.airtable_configured and bool(self.AIRTABLE_FUEL_TABLE)

    def require_airtable(self, table_setting: str = "AIRTABLE_TABLE") -> None:
        """Raise ``ConfigurationError`` if the given table cannot be reached."""
        missing = [
            name for name in ("AIRTABLE_TOKEN", "AIRTABLE_BASE", table_setting)
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Airtable configuration is missing: {', '.join(missing)}",
                missing=missing,
            )

    @field_validator(
        "REMOTE_TIMEOUT_SECONDS",
        "SYNC_BACKOFF_BASE_SECONDS",
        "SYNC_BACKOFF_MAX_SECONDS",
        "POLL_INTERVAL_SECONDS",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Timeouts and intervals must be positive."""
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("STATE_BACKEND")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("file", "redis"):
            raise ValueError("STATE_BACKEND must be 'file' or 'redis'")
        return v

    @field_validator("TELEGRAM_AUTHORIZED_USERS")
    @classmethod
    def validate_authorized_users(cls, v: str) -> str:
        for user_id in v.split(","):
            if user_id.strip() and not user_id.strip().lstrip("-").isdigit():
                raise ValueError(f"Invalid Telegram user id: {user_id.strip()}")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()
