"""Application Configuration"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application
    APP_NAME: str = "Agent Scheduler API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"  # development, staging, production

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./agent_scheduler.db"
    DATABASE_ECHO: bool = False
    DATABASE_CREATE_TABLES: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Scheduler engine
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_MISSED_CHECK_INTERVAL_SECONDS: float = 60.0
    SCHEDULER_CLEANUP_INTERVAL_SECONDS: float = 24 * 60 * 60.0
    SCHEDULER_EXECUTION_TIMEOUT_SECONDS: float = 300.0  # 0 disables the deadline
    SCHEDULER_SHUTDOWN_GRACE_SECONDS: float = 10.0
    EXECUTION_RETENTION_DAYS: int = 30
    DEFAULT_TIMEZONE: str = "UTC"

    # Circuit breaker
    AUTO_DISABLE_MIN_FAILURES: int = 5
    AUTO_DISABLE_SUCCESS_RATE_THRESHOLD: float = 20.0

    # Failure alerts (/api/v1/monitoring/alerts)
    ALERT_CRITICAL_MIN_FAILURES: int = 3
    ALERT_CRITICAL_SUCCESS_RATE: float = 50.0
    ALERT_WARNING_MIN_FAILURES: int = 2
    ALERT_WARNING_SUCCESS_RATE: float = 70.0
    ALERT_STUCK_EXECUTION_MINUTES: int = 30

    # Agent sources
    PLUGINS_DIR: str = "./storage/plugins/agent-skills"
    FLOWS_DIR: str = "./storage/plugins/agent-flows"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text
    LOG_HEALTH_CHECKS: bool = False

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log level is one of the standard Python logging levels"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of {valid_levels}, got {v}')
        return v.upper()

    @field_validator(
        'SCHEDULER_MISSED_CHECK_INTERVAL_SECONDS',
        'SCHEDULER_CLEANUP_INTERVAL_SECONDS'
    )
    @classmethod
    def validate_positive_interval(cls, v: float, info) -> float:
        """Sweep intervals must be strictly positive"""
        if v <= 0:
            raise ValueError(f'{info.field_name} must be greater than 0, got {v}')
        return v

    @field_validator('SCHEDULER_EXECUTION_TIMEOUT_SECONDS', 'SCHEDULER_SHUTDOWN_GRACE_SECONDS')
    @classmethod
    def validate_non_negative(cls, v: float, info) -> float:
        if v < 0:
            raise ValueError(f'{info.field_name} must not be negative, got {v}')
        return v

    @field_validator(
        'EXECUTION_RETENTION_DAYS',
        'AUTO_DISABLE_MIN_FAILURES',
        'ALERT_CRITICAL_MIN_FAILURES',
        'ALERT_WARNING_MIN_FAILURES',
        'ALERT_STUCK_EXECUTION_MINUTES'
    )
    @classmethod
    def validate_positive_int(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f'{info.field_name} must be at least 1, got {v}')
        return v

    @field_validator(
        'AUTO_DISABLE_SUCCESS_RATE_THRESHOLD',
        'ALERT_CRITICAL_SUCCESS_RATE',
        'ALERT_WARNING_SUCCESS_RATE'
    )
    @classmethod
    def validate_percentage(cls, v: float, info) -> float:
        """Success-rate thresholds are percentages"""
        if v < 0 or v > 100:
            raise ValueError(f'{info.field_name} must be between 0 and 100, got {v}')
        return v

    @field_validator('DEFAULT_TIMEZONE')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the default timezone exists in the IANA database"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f'DEFAULT_TIMEZONE must be an IANA timezone name, got {v}')
        return v


settings = Settings()
