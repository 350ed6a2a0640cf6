"""Centralized configuration for redisearch-kit using Pydantic Settings."""

from functools import lru_cache
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Every value can be overridden with an environment variable of the same
    name (``REDIS_URL``, ``LOAD_BATCH_SIZE``...) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",  # Ignore extra env vars not defined in model
    )

    # Connection
    redis_url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    redis_socket_timeout: float | None = Field(
        default=None, gt=0, description="Socket timeout in seconds for Redis commands"
    )

    # Loading
    validate_on_load: bool = Field(
        default=True, description="Validate documents against the schema before writing them"
    )
    load_batch_size: int = Field(default=200, ge=1, description="Documents written per pipeline batch")

    # Querying
    query_batch_size: int = Field(default=10, ge=1, description="Queries sent per pipeline in batch searches")
    page_size: int = Field(default=30, ge=1, description="Default page size for paginated queries")

    # Logging and tracing
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    tracing_enabled: bool = Field(default=True, description="Install an OpenTelemetry SDK tracer provider for index spans")
    service_name: str = Field(default="redisearch-kit", description="Service name reported on traces")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            msg = f"LOG_LEVEL must be one of debug, info, warning, error, critical (got {value!r})"
            raise ValueError(msg)
        return value.lower()

    @field_validator("redis_url")
    @classmethod
    def _check_redis_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("redis://", "rediss://", "unix://")):
            msg = f"REDIS_URL must start with redis://, rediss:// or unix:// (got {value!r})"
            raise ValueError(msg)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
