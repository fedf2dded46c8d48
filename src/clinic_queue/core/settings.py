"""Application settings and configuration.

This module defines all configuration options for the clinic queue service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Clinic Queue", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(default="change-me", alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 12,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./clinic_queue.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Queue behaviour
    absent_grace_period_minutes: int = Field(default=10, ge=0, alias="ABSENT_GRACE_PERIOD_MINUTES")
    day_reopen_window_minutes: int = Field(default=120, ge=0, alias="DAY_REOPEN_WINDOW_MINUTES")
    queue_lock_timeout_seconds: float = Field(default=5.0, gt=0, alias="QUEUE_LOCK_TIMEOUT_SECONDS")

    # Event bus
    event_history_size: int = Field(default=100, ge=1, alias="EVENT_HISTORY_SIZE")
    event_bus_workers: int = Field(default=1, ge=1, alias="EVENT_BUS_WORKERS")
    event_bus_async: bool = Field(default=True, alias="EVENT_BUS_ASYNC")

    # Notifications
    default_monthly_sms_limit: int = Field(default=1000, ge=0, alias="DEFAULT_MONTHLY_SMS_LIMIT")
    default_notification_language: str = Field(
        default="en",
        alias="DEFAULT_NOTIFICATION_LANGUAGE",
    )
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str | None = Field(default=None, alias="TWILIO_PHONE_NUMBER")
    twilio_base_url: str = Field(
        default="https://api.twilio.com/2010-04-01",
        alias="TWILIO_BASE_URL",
    )
    sms_timeout_seconds: float = Field(default=10.0, gt=0, alias="SMS_TIMEOUT_SECONDS")

    # CORS configuration for dashboard access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def sms_configured(self) -> bool:
        """Return True when every Twilio credential is present."""
        return bool(
            self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number
        )


settings = Settings()
