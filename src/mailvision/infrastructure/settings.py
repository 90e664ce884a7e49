"""Application settings using Pydantic Settings for configuration management."""

from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "MailVision"
    log_level: str = "INFO"

    # IMAP
    imap_host: str
    imap_port: int = 993
    email_login: str
    email_password: SecretStr
    sent_folder: str | None = None
    imap_timeout_seconds: float = 60.0

    # Harvesting
    start_date: datetime
    max_calls_per_minute: float | None = Field(default=None, gt=0)
    failure_policy: Literal["skip", "abort"] = "skip"

    # Waiting
    idle_timeout_seconds: float = Field(default=540.0, gt=0)
    idle_check_seconds: float = Field(default=1.0, gt=0)
    noop_interval_seconds: float = Field(default=60.0, gt=0)
    reconnect_base_delay: float = Field(default=1.0, ge=0)
    reconnect_max_delay: float = Field(default=60.0, ge=0)

    # Storage
    sqlite_db_path: Path = Path("data/mailvision.db")

    # Vision analysis
    vision_endpoint: str
    vision_api_key: SecretStr
    vision_features: str = "Categories,Description,Tags,Objects"
    vision_timeout_seconds: float = 30.0
    vision_retries: int = Field(default=2, ge=0)

    @field_validator("start_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        """A start date without an offset is read as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("sent_folder", "max_calls_per_minute", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @computed_field
    @property
    def visual_features(self) -> list[str]:
        """Comma separated VISION_FEATURES as a list."""
        return [f.strip() for f in self.vision_features.split(",") if f.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
