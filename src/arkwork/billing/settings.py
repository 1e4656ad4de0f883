from __future__ import annotations

"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
For nested settings, use double underscore: BILLING__WARNING_TIME=08:00
"""

from datetime import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _parse_clock_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    try:
        hours, minutes = str(value).strip().split(":")
        return time(hour=int(hours), minute=int(minutes))
    except ValueError as exc:
        raise ValueError(f"Expected HH:MM, got {value!r}") from exc


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("arkwork-billing", description="Application name")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str = Field(
            "sqlite+aiosqlite:///./arkwork_billing.sqlite",
            description="Async SQLAlchemy database URL",
        )
        echo: bool = Field(False, description="Echo SQL statements")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Email & SMTP Settings
    # ============================================================

    class EmailSettings(BaseModel):
        """Email and SMTP configuration."""

        smtp_host: str = Field("localhost", description="SMTP server host")
        smtp_port: int = Field(587, description="SMTP server port")
        smtp_username: str = Field("", description="SMTP username")
        smtp_password: str = Field("", description="SMTP password")
        use_tls: bool = Field(True, description="Use STARTTLS for SMTP")
        use_ssl: bool = Field(False, description="Use implicit SSL for SMTP")

        from_address: str = Field("no-reply@arkwork.app", description="Default from email")
        from_name: str = Field("ArkWork Billing", description="Default from name")

        enabled: bool = Field(True, description="Send real emails; log only when disabled")
        timeout: int = Field(30, description="SMTP timeout in seconds")

    email: EmailSettings = EmailSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or console)")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Billing Lifecycle & Scheduler
    # ============================================================

    class BillingSettings(BaseModel):
        """Billing lifecycle and expiry warning configuration."""

        warning_thresholds: list[int] = Field(
            default_factory=lambda: [7, 3, 1],
            description="Days before expiry at which a warning is sent",
        )
        warning_match: Literal["catch_up", "exact"] = Field(
            "catch_up",
            description="exact: only on the threshold day; catch_up: first run on/after it",
        )
        recompute_time: time = Field(time(0, 30), description="Daily recompute job time (HH:MM)")
        warning_time: time = Field(time(9, 0), description="Daily warning job time (HH:MM)")
        schedule_timezone: str = Field("UTC", description="Timezone for the daily job times")

        notifier_timeout_seconds: float = Field(30.0, description="Per-send notifier timeout")
        store_timeout_seconds: float = Field(15.0, description="Tenant store call timeout")
        max_concurrent_sends: int = Field(4, description="Parallel sends per warning tick")

        auto_provision_tenants: bool = Field(
            True, description="Create a tenant record on first plan selection"
        )
        allow_unknown_plan_fallback: bool = Field(
            False, description="Activate unknown plans as monthly instead of failing"
        )
        max_write_attempts: int = Field(3, description="Compare-and-set attempts per mutation")
        notify_on_expiry: bool = Field(False, description="Email tenants when access lapses")

        brand_name: str = Field("ArkWork", description="Brand used in notification emails")
        dashboard_url: str = Field(
            "https://arkwork.app/employer/billing", description="Billing dashboard link"
        )

        @field_validator("warning_thresholds")
        @classmethod
        def validate_thresholds(cls, v: list[int]) -> list[int]:
            """Thresholds must be a non-empty list of positive day counts."""
            if not v:
                raise ValueError("At least one warning threshold is required")
            if any(day <= 0 for day in v):
                raise ValueError("Warning thresholds must be positive day counts")
            return sorted(set(v), reverse=True)

        @field_validator("recompute_time", "warning_time", mode="before")
        @classmethod
        def validate_clock_time(cls, v: str | time) -> time:
            return _parse_clock_time(v)

        @field_validator("max_concurrent_sends", "max_write_attempts")
        @classmethod
        def validate_positive(cls, v: int) -> int:
            if v < 1:
                raise ValueError("Must be at least 1")
            return v

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    # ============================================================
    # Celery & Task Queue
    # ============================================================

    class CelerySettings(BaseModel):
        """Celery configuration."""

        broker_url: str = Field("redis://localhost:6379/0", description="Broker URL")
        result_backend: str = Field("redis://localhost:6379/1", description="Result backend")
        timezone: str = Field("UTC", description="Timezone for beat schedules")

    celery: CelerySettings = CelerySettings()  # type: ignore[call-arg]

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
