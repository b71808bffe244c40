"""Token bucket configuration via environment variables."""

from enum import StrEnum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from tokenbucket.mutex import CasRetryPolicy


class StorageBackend(StrEnum):
    MEMORY = "memory"
    FILE = "file"
    SHARED_MEMORY = "shared_memory"
    SQLITE = "sqlite"
    REDIS_CAS = "redis_cas"
    REDIS_LOCK = "redis_lock"


class LogFormat(StrEnum):
    CONSOLE = "console"
    JSON = "json"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TokenBucketSettings(BaseSettings):
    model_config = {"env_prefix": "TOKEN_BUCKET_"}

    backend: StorageBackend = StorageBackend.MEMORY

    # Directory holding one <name>.bucket file per bucket
    file_dir: str = Field(default="var/token_buckets", min_length=1)

    sqlite_path: str = Field(default="var/token_buckets.db", min_length=1)
    sqlite_busy_timeout_seconds: float = Field(default=5.0, gt=0)

    redis_url: str = Field(default="redis://localhost:6379/0", min_length=1)

    # None retries conflicting CAS writes until they go through
    cas_max_attempts: int | None = Field(default=None, ge=1)
    cas_backoff_seconds: float = Field(default=0.0, ge=0)

    # Distributed lock expiry and how long to wait for it (None waits forever)
    lock_timeout_seconds: float = Field(default=10.0, gt=0)
    lock_blocking_timeout_seconds: float | None = Field(default=5.0, gt=0)

    # How long to wait for the shared memory semaphore (None waits forever)
    semaphore_timeout_seconds: float | None = Field(default=None, gt=0)

    def cas_retry_policy(self) -> CasRetryPolicy:
        return CasRetryPolicy(max_attempts=self.cas_max_attempts, backoff_seconds=self.cas_backoff_seconds)


class LoggingSettings(BaseSettings):
    """LOG_FORMAT, LOG_LEVEL and LOG_DIR."""

    model_config = {"env_prefix": "LOG_"}

    # "json" for log aggregation, "console" for human-readable output
    format: LogFormat = LogFormat.CONSOLE
    level: LogLevel = LogLevel.INFO
    dir: str | None = None

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v
