"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Instances are immutable; build one at startup and pass it down.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = "Scripture Export Service"
    app_env: Literal["development", "production", "testing"] = "development"
    debug: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "scripture"
    postgres_password: str = "scripture_dev"
    postgres_db: str = "scripture"
    database_url: str | None = Field(default=None, validate_default=True)

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: str | None, info) -> str:
        if v is not None:
            return v
        return (
            f"postgresql+asyncpg://{info.data['postgres_user']}:"
            f"{info.data['postgres_password']}@{info.data['postgres_host']}:"
            f"{info.data['postgres_port']}/{info.data['postgres_db']}"
        )

    # Transient database failures (connection resets, failovers)
    db_retry_max_attempts: int = Field(default=3, ge=1)
    db_retry_base_delay: float = 1.0
    db_retry_max_delay: float = 5.0
    db_retry_factor: float = 2.0

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_url: RedisDsn | None = Field(default=None, validate_default=True)

    @field_validator("redis_url", mode="before")
    @classmethod
    def assemble_redis_connection(cls, v: str | None, info) -> str:
        if v is not None:
            return v
        return f"redis://{info.data['redis_host']}:{info.data['redis_port']}/{info.data['redis_db']}"

    # Job queue
    queue_backend: Literal["memory", "sql", "redis", "celery"] = "sql"
    queue_name: str = "usfm-export"
    queue_batch_size: int = Field(default=5, ge=1)
    queue_poll_interval: float = Field(default=2.0, gt=0)
    queue_retry_limit: int = Field(default=3, ge=0)
    queue_retry_delay: float = 60.0
    queue_retry_backoff: bool = True
    queue_retry_delay_max: float = 900.0
    queue_expire_in_seconds: int = 3600
    queue_retention_seconds: int = 86400
    # When False, content/validation failures skip the retry budget
    queue_retry_permanent_errors: bool = True

    # Celery (queue_backend="celery"); broker and results default to redis_url
    celery_broker_url: str | None = Field(default=None, validate_default=True)
    celery_result_backend: str | None = Field(default=None, validate_default=True)
    celery_reap_interval: float = Field(default=60.0, gt=0)
    # Run the periodic reap and sweep inside the worker process
    celery_worker_beat: bool = True

    @field_validator("celery_broker_url", "celery_result_backend", mode="before")
    @classmethod
    def default_to_redis_url(cls, v: str | None, info) -> str:
        if v is not None:
            return v
        return str(info.data["redis_url"])

    # Exports
    data_root: Path = Field(default=Path("data"))
    export_directory: Path | None = Field(default=None, validate_default=True)
    export_ttl_seconds: int = Field(default=3600, gt=0)
    export_compression_level: int = Field(default=9, ge=0, le=9)
    disk_space_error_threshold_gb: float = 1.0  # Deep health reports critical below this
    disk_space_warning_threshold_gb: float = 5.0

    @field_validator("export_directory", mode="before")
    @classmethod
    def set_default_export_directory(cls, v: Path | str | None, info) -> Path:
        if v is not None:
            return Path(v) if isinstance(v, str) else v
        return info.data.get("data_root", Path("data")) / "exports"

    # Worker lifecycle (seconds)
    worker_sweep_interval: float = 3600.0
    worker_heartbeat_interval: float = 300.0
    worker_shutdown_grace_period: float = 30.0
    worker_shutdown_poll_interval: float = 1.0

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    # Frontend
    frontend_url: str = "http://localhost:3000"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_testing(self) -> bool:
        return self.app_env == "testing"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
