"""
Settings for the session engine, loaded from the environment (and .env).

Every integration (calendar, recording bot, messaging, transcription) is
optional: leave its base URL unset and the matching client reports itself
unconfigured, which the best-effort callers treat as a degraded step.

Tunable business thresholds (offline caps, qualification counts, report
deadlines) live in the site_setting table; the values here are only the
fallbacks used when a key is missing there. See services/site_settings.py.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (tests use sqlite); otherwise built from parts.
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="coaching_sessions")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    CACHE_ENABLED: bool = Field(default=True)
    CACHE_TTL_DEFAULT: int = Field(default=300)  # 5 minutes
    CACHE_TTL_SETTINGS: int = Field(default=60)

    # JWT Authentication - REQUIRED for token signing
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Parent summary job (published to the queue after a session completes).
    # The delay lets the just-written learning events settle before the
    # summary generator reads them.
    PARENT_SUMMARY_TASK_NAME: str = Field(default="tasks.generate_parent_summary")
    PARENT_SUMMARY_DELAY_S: int = Field(default=5)
    PARENT_SUMMARY_MAX_RETRIES: int = Field(default=3)

    # Booking provider webhook (signature check is skipped when unset)
    BOOKING_WEBHOOK_SECRET: Optional[str] = Field(default=None)

    # Calendar service
    CALENDAR_API_BASE_URL: Optional[str] = Field(default=None)
    CALENDAR_API_KEY: Optional[str] = Field(default=None)

    # Recording bot service
    RECORDING_BOT_API_BASE_URL: Optional[str] = Field(default=None)
    RECORDING_BOT_API_KEY: Optional[str] = Field(default=None)

    # Messaging provider (parent / coach chat messages)
    MESSAGING_ENABLED: bool = Field(default=False)
    MESSAGING_API_BASE_URL: Optional[str] = Field(default=None)
    MESSAGING_API_KEY: Optional[str] = Field(default=None)
    MESSAGING_TIMEZONE: str = Field(default="Asia/Kolkata")

    # Transcription / reading analysis service
    TRANSCRIPTION_API_BASE_URL: Optional[str] = Field(default=None)
    TRANSCRIPTION_API_KEY: Optional[str] = Field(default=None)

    # Session audio uploads
    AUDIO_STORAGE_DIR: str = Field(default="/data/session-audio")
    AUDIO_MAX_UPLOAD_BYTES: int = Field(default=25 * 1024 * 1024)  # 25 MB

    # Fallbacks for the site_setting keys that tune offline conversion
    OFFLINE_NEW_COACH_ADHERENCE_THRESHOLD: int = Field(default=70, ge=0, le=100)
    OFFLINE_NEW_COACH_ONLINE_THRESHOLD: int = Field(default=3, ge=0)
    OFFLINE_MAX_PERCENT: int = Field(default=25, ge=0, le=100)
    OFFLINE_REPORT_DEADLINE_HOURS: int = Field(default=4, ge=0)
    DEFAULT_ENROLLMENT_TOTAL_SESSIONS: int = Field(default=24, ge=1)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions


# Global settings instance
settings = Settings()
