"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite:///./appointments.db"

    # Recurrence expansion
    RECURRENCE_HORIZON_DAYS: int = 30  # Look-ahead window for instance generation
    RECURRENCE_MAX_OCCURRENCES: int = 100  # Safety cap per master per run
    RECURRENCE_EXPANSION_HOUR: int = 0  # Daily expansion runs at 00:30 UTC
    RECURRENCE_EXPANSION_MINUTE: int = 30

    # Reminder planning
    DEFAULT_REMINDER_OFFSET_MINUTES: int = 60
    DEFAULT_REMINDER_METHOD: str = "email"

    # Reminder dispatch retry policy (async path only)
    REMINDER_MAX_ATTEMPTS: int = 3
    REMINDER_RETRY_BACKOFF_SECONDS: int = 60
    NOTIFICATION_SEND_TIMEOUT_SECONDS: float = 30.0

    # Due reminder sweep
    DUE_REMINDER_BATCH_LIMIT: int = 100
    DUE_REMINDER_SWEEP_MINUTES: int = 5

    # Worker
    WORKER_POLL_INTERVAL: int = 10
    WORKER_BATCH_SIZE: int = 10

    # Email delivery (Resend). Empty key means dry-run logging.
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@example.com"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints


settings = Settings()
