"""Configuration management for chorepoints."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    sqlite_db_path: str = Field(default="data/chorepoints.db", description="Path to the SQLite database file")

    # Household calendar
    household_timezone: str = Field(
        default="UTC", description="IANA time zone used to interpret recurring times and calendar days"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="production", description="Deployment environment name reported to Logfire")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Notification dispatch (optional)
    notification_webhook_url: str | None = Field(
        default=None, description="Webhook receiving task created/approved/overdue events"
    )

    # Scheduling policy
    min_schedule_lead_minutes: int = Field(
        default=30, description="Minimum minutes between now and a template's next occurrence"
    )
    catchup_min_interval_seconds: int = Field(
        default=60, description="Minimum seconds between two catch-up checks from the same caller"
    )
    negotiation_default_expiry_hours: int = Field(
        default=48, description="Hours a transfer offer stays open when no expiry is given"
    )

    # Scheduler
    enable_scheduler: bool = Field(default=True, description="Run the in-process cron trigger")
    materialize_interval_minutes: int = Field(
        default=15, description="Minutes between scheduled instance materialization runs"
    )
    penalty_interval_minutes: int = Field(default=15, description="Minutes between scheduled penalty runs")


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 10

    # Recurring templates
    DEFAULT_RECURRING_TIME: str = "23:59"
    MAX_DAY_OF_MONTH: int = 31
    LOOKBACK_MISSED_OCCURRENCES: int = 1  # Missed slots materialized besides the current one

    # Negotiations
    COUNTER_OFFER_EXPIRY_HOURS: int = 24

    # Catch-up client
    CATCHUP_POLL_INTERVAL_SECONDS: int = 300  # 5 minutes

    # Notifications
    NOTIFICATION_MAX_RETRIES: int = 2

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 500

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100
    TRACKER_FAILURE_THRESHOLD: int = 3

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
