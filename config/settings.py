"""Configuration settings for the scheduler service."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Scheduler service configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", env_ignore_empty=True, extra="ignore"
    )

    # Database configuration
    database_url: str = Field(
        default="sqlite:///./data/scheduler.db",
        alias="SCHEDULER_DATABASE_URL",
        description="Database holding scheduled tasks, run history and overrides",
    )

    # Scheduler configuration
    scheduler_timezone: str = Field(default="UTC", alias="SCHEDULER_TIMEZONE")
    scheduler_job_defaults_coalesce: bool = Field(
        default=True, alias="SCHEDULER_JOB_DEFAULTS_COALESCE"
    )
    scheduler_job_defaults_max_instances: int = Field(
        default=1, ge=1, alias="SCHEDULER_JOB_DEFAULTS_MAX_INSTANCES"
    )
    scheduler_job_defaults_misfire_grace_time: int = Field(
        default=60, ge=1, alias="SCHEDULER_JOB_DEFAULTS_MISFIRE_GRACE_TIME"
    )
    scheduler_executors_thread_pool_max_workers: int = Field(
        default=20, ge=1, alias="SCHEDULER_EXECUTORS_THREAD_POOL_MAX_WORKERS"
    )

    # Task execution
    task_default_timeout_seconds: int = Field(
        default=30, ge=1, le=300, alias="TASK_DEFAULT_TIMEOUT_SECONDS"
    )
    task_response_max_bytes: int = Field(
        default=4096,
        ge=0,
        alias="TASK_RESPONSE_MAX_BYTES",
        description="Upper bound on response bytes read per task execution",
    )
    task_max_redirects: int = Field(default=10, ge=0, alias="TASK_MAX_REDIRECTS")
    task_user_agent: str = Field(
        default="Mozilla/5.0 (compatible)", alias="TASK_USER_AGENT"
    )
    task_trigger_min_interval_seconds: float = Field(
        default=10.0,
        ge=0,
        alias="TASK_TRIGGER_MIN_INTERVAL_SECONDS",
        description="Minimum delay between two manual triggers of the same task",
    )
    task_run_retention_days: int = Field(
        default=30, ge=1, alias="TASK_RUN_RETENTION_DAYS"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Accept log levels in any case."""
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


def get_settings() -> SchedulerSettings:
    """Get application settings."""
    return SchedulerSettings()
