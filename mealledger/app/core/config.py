from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses and table recreation
    debug: bool = False

    # PostgreSQL settings
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "mealledger"
    db_password: str = "mealledger"
    db_name: str = "mealledger"

    # Connection pool settings
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30  # Seconds to wait for a connection
    db_pool_recycle: int = 300
    db_pool_pre_ping: bool = True
    db_command_timeout: float = 30.0  # asyncpg per-command timeout

    # SQLite pool settings (development and tests)
    db_sqlite_pool_size: int = 5
    db_sqlite_max_overflow: int = 5

    # Explicit DATABASE_URL (takes priority over db_* settings)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        """Build database connection URL.

        Priority:
        1. database_url_override (from DATABASE_URL env var or .env file)
        2. Built from db_* settings
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # Student token: "<prefix>-<student_number>"
    student_token_prefix: str = "mbgku"

    # Calendar settings used by "today" and every distribution window
    timezone: str = "Asia/Jakarta"
    week_starts_on: int = 1  # ISO weekday, 1 = Monday

    # Student activity classification (days since last meal)
    activity_active_days: int = 3
    activity_moderate_days: int = 7

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: list[str] = ["*"]

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone is a known IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("week_starts_on")
    @classmethod
    def validate_week_start(cls, v: int) -> int:
        if not 1 <= v <= 7:
            raise ValueError("week_starts_on must be an ISO weekday (1-7)")
        return v

    @field_validator(
        "db_pool_size",
        "db_max_overflow",
        "db_sqlite_pool_size",
        "db_sqlite_max_overflow",
        "default_page_size",
        "max_page_size",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate pool and page sizes are positive."""
        if v < 1:
            raise ValueError("pool and page size values must be at least 1")
        return v

    @field_validator("activity_active_days", "activity_moderate_days")
    @classmethod
    def validate_activity_days(cls, v: int) -> int:
        if v < 0:
            raise ValueError("activity thresholds cannot be negative")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: Any) -> str:
        value = str(v).strip().lower()
        if value not in {"text", "structured", "json"}:
            raise ValueError("log_format must be one of: text, structured, json")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
