# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the dropout
risk pipeline. Settings are loaded from environment variables with sensible
defaults.

The Settings class is the main entry point and aggregates all subsettings.
A cached instance is provided via get_settings().

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from functools import lru_cache
from typing import Literal, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration for risk profiles, snapshots and notifications.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        dsn: Full connection URL. Overrides the components when set.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        echo: Log SQL statements.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "sentinel"
    password: SecretStr = SecretStr("sentinel_db_password")
    host: str = "sentinel-db"
    port: int = 5432
    database: str = "dropout_sentinel"
    dsn: str | None = None
    pool_size: int = 10
    max_overflow: int = 20
    echo: bool = False

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.dsn:
            return self.dsn
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for the job broker and in-app push channel.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "sentinel-redis"
    port: int = 6379
    password: SecretStr = SecretStr("sentinel_redis_password")
    database: int = 0
    max_connections: int = 50

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class EmailSettings(BaseSettings):
    """SMTP configuration for the email channel.

    The email channel is considered unconfigured when host or user is empty.

    Attributes:
        host: SMTP server host.
        port: SMTP server port.
        user: SMTP username.
        password: SMTP password.
        from_address: Sender email address.
        from_name: Sender display name.
        use_tls: Use STARTTLS.
        timeout: SMTP timeout in seconds.
        link_base_url: Web app URL that relative action links are joined to.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    host: str = ""
    port: int = 587
    user: str = ""
    password: SecretStr = SecretStr("")
    from_address: str = Field(
        default="noreply@dropout-sentinel.local",
        validation_alias="SMTP_FROM_EMAIL",
    )
    from_name: str = "Dropout Sentinel"
    use_tls: bool = True
    timeout: float = 30.0
    link_base_url: str = ""

    @property
    def is_configured(self) -> bool:
        """Check if enough SMTP settings are present to send mail."""
        return bool(self.host and self.user)


class SMSSettings(BaseSettings):
    """Twilio configuration for the SMS channel.

    Attributes:
        account_sid: Twilio account SID.
        auth_token: Twilio auth token.
        from_number: Sending phone number in E.164 format.
        max_length: Maximum SMS body length before truncation.
    """

    model_config = SettingsConfigDict(
        env_prefix="TWILIO_",
        extra="ignore",
    )

    account_sid: str = ""
    auth_token: SecretStr = SecretStr("")
    from_number: str = Field(
        default="",
        validation_alias="TWILIO_PHONE_NUMBER",
    )
    max_length: int = 160

    @property
    def is_configured(self) -> bool:
        """Check if Twilio credentials are present."""
        return bool(
            self.account_sid
            and self.auth_token.get_secret_value()
            and self.from_number
        )


class InAppSettings(BaseSettings):
    """In-app push channel configuration.

    Attributes:
        channel_prefix: Redis pub/sub channel prefix, suffixed with the user id.
        enabled: Whether in-app push is enabled.
        backlog_size: Recent notifications kept per recipient for late clients.
        backlog_ttl_seconds: Expiry of a recipient's backlog.
    """

    model_config = SettingsConfigDict(
        env_prefix="IN_APP_",
        extra="ignore",
    )

    channel_prefix: str = "notifications"
    enabled: bool = True
    backlog_size: int = Field(default=50, ge=0)
    backlog_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=0)


class DeliverySettings(BaseSettings):
    """Retry policy for the channel delivery queues.

    Backoff values are in milliseconds. Email and SMS grow exponentially from
    their minimum backoff; in-app uses a fixed delay.

    Attributes:
        email_max_attempts: Total attempts for an email delivery.
        email_min_backoff: First retry delay for email.
        email_max_backoff: Upper bound for email retry delay.
        sms_max_attempts: Total attempts for an SMS delivery.
        sms_min_backoff: First retry delay for SMS.
        sms_max_backoff: Upper bound for SMS retry delay.
        in_app_max_attempts: Total attempts for an in-app delivery.
        in_app_delay: Fixed retry delay for in-app.
        short_message_length: Maximum length of the short message.
    """

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        extra="ignore",
    )

    email_max_attempts: int = 3
    email_min_backoff: int = 2000
    email_max_backoff: int = 60_000
    sms_max_attempts: int = 3
    sms_min_backoff: int = 2000
    sms_max_backoff: int = 60_000
    in_app_max_attempts: int = 2
    in_app_delay: int = 500
    short_message_length: int = 160


class SchedulerSettings(BaseSettings):
    """Periodic sweep configuration.

    Attributes:
        enabled: Whether the scheduler starts with the application.
        timezone: Timezone used to evaluate cron expressions.
        daily_sweep_cron: Cron expression for the daily recalculation sweep.
        rapid_increase_interval_hours: Hours between rapid-increase sweeps.
        max_concurrency: Maximum students recalculated at the same time.
        rapid_increase_window_days: Snapshot lookback for rapid increases.
        rapid_increase_threshold: Minimum score delta flagged as rapid.
        rapid_increase_max_gap_days: Maximum days between flagged snapshots.
        misfire_grace_seconds: How late a missed sweep may still start.
        student_lock_timeout_seconds: Expiry of a per-student recalculation lock.
        student_lock_wait_seconds: How long a run waits for a busy student lock.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore",
    )

    enabled: bool = True
    timezone: str = "UTC"
    daily_sweep_cron: str = "0 2 * * *"
    rapid_increase_interval_hours: int = Field(default=6, ge=1)
    max_concurrency: int = Field(default=10, ge=1)
    rapid_increase_window_days: int = Field(default=30, ge=1)
    rapid_increase_threshold: int = Field(default=15, ge=1)
    rapid_increase_max_gap_days: int = Field(default=7, ge=1)
    misfire_grace_seconds: int = Field(default=3600, ge=1)
    student_lock_timeout_seconds: int = Field(default=300, ge=1)
    student_lock_wait_seconds: int = Field(default=120, ge=1)

    @field_validator("daily_sweep_cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Require a five-field crontab expression."""
        if len(value.split()) != 5:
            raise ValueError(f"daily_sweep_cron must have five fields, got {value!r}")
        return value

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Require an IANA timezone name."""
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value


class StudentDataSettings(BaseSettings):
    """Student records service configuration.

    Attributes:
        base_url: Base URL of the student records API.
        api_key: API key for authentication.
        timeout: Request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="STUDENT_DATA_",
        extra="ignore",
    )

    base_url: str = "http://sentinel-records:8000/api/v1"
    api_key: SecretStr = SecretStr("")
    timeout: float = 30.0

    @property
    def auth_headers(self) -> dict[str, str]:
        """Build authentication headers for API requests."""
        return {"X-API-Key": self.api_key.get_secret_value()}


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Database settings.
        redis: Redis settings.
        email: SMTP settings.
        sms: Twilio settings.
        in_app: In-app push settings.
        delivery: Delivery retry settings.
        scheduler: Periodic sweep settings.
        student_data: Student records service settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    sms: SMSSettings = Field(default_factory=SMSSettings)
    in_app: InAppSettings = Field(default_factory=InAppSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    student_data: StudentDataSettings = Field(default_factory=StudentDataSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            if self.database.password.get_secret_value() == "sentinel_db_password" and not self.database.dsn:
                raise ValueError(
                    "Database password must be changed from default in production. "
                    "Set DATABASE_PASSWORD environment variable."
                )
            if not self.student_data.api_key.get_secret_value():
                raise ValueError(
                    "Student data API key is required in production. "
                    "Set STUDENT_DATA_API_KEY environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
