"""
Application settings and configuration.
All secrets are loaded from environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Shared secret for the cron trigger endpoints
    cron_secret: str = ""

    # Database - Use DATA_DIR for persistent volumes, DATABASE_URL to point elsewhere
    data_dir: str = "."
    database_url_override: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL, normalized for the asyncpg driver."""
        url = self.database_url_override
        if not url:
            return f"sqlite+aiosqlite:///{self.data_dir}/reminders.db"
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # Public URL of the reader app, used in the reminder call-to-action
    app_url: str = ""

    # SMTP Configuration
    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_secure: bool = True
    smtp_from: str = ""
    smtp_timeout_seconds: float = 30.0

    @property
    def smtp_sender(self) -> str:
        return (self.smtp_from or self.smtp_user).strip()

    # Reminder pipeline defaults
    enqueue_delay_seconds: int = 10
    dispatch_batch_size: int = 10
    per_email_delay_ms: int = 250
    max_retry: int = 3
    stale_claim_minutes: int = 15

    # In-process trigger (alternative to an external cron)
    enable_scheduler: bool = False
    morning_enqueue_hour: int = 5
    evening_enqueue_hour: int = 17
    dispatch_interval_minutes: int = 1

    # Application Settings
    debug: bool = False

    # Civil timezone that defines "today" for the reading plan
    timezone: str = "Asia/Jakarta"

    def require_smtp(self) -> None:
        """Raise ConfigurationError naming the first missing SMTP variable."""
        for name in ("smtp_host", "smtp_user", "smtp_password"):
            if not getattr(self, name).strip():
                raise ConfigurationError(f"Missing env: {name.upper()}")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
