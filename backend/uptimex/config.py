"""Application configuration from environment variables."""
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Construction validates every field; a bad value raises
    pydantic.ValidationError before anything is scheduled.
    """

    # Health check cycle
    check_interval_seconds: int = Field(default=60, ge=1)
    probe_timeout_ms: int = Field(default=10000, ge=1)
    consecutive_failures_threshold: int = Field(default=3, ge=1)
    slow_response_threshold_ms: int = Field(default=5000, ge=1)

    # Minimum minutes between two alerts of the same (monitor, kind)
    alert_throttle_minutes: int = Field(default=15, ge=0)

    # Probes in flight at once within a cycle
    check_concurrency: int = Field(default=5, ge=1)

    # Cycles allowed to run at once; 1 skips ticks that would overlap
    max_concurrent_cycles: int = Field(default=1, ge=1)

    # How long process shutdown waits for in-flight work
    shutdown_grace_seconds: int = Field(default=10, ge=0)

    # SMTP delivery for alert emails
    smtp_host: str = ""
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_use_tls: bool = True

    # Storage: SQLite file under data_path unless database_url points elsewhere
    data_path: str = "/data"
    database_url: str | None = None

    web_port: int = Field(default=8000, ge=1, le=65535)

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    class Config:
        env_prefix = ""
        case_sensitive = False


settings = Settings()


# Driver-less URL schemes rewritten to the asyncpg dialect
_ASYNC_SCHEMES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}


def get_database_url() -> str:
    """DATABASE_URL when set (with plain postgres schemes mapped to asyncpg),
    otherwise a SQLite file under DATA_PATH."""
    if not settings.database_url:
        return f"sqlite+aiosqlite:///{os.path.join(settings.data_path, 'uptimex.db')}"

    url = settings.database_url
    for scheme, async_scheme in _ASYNC_SCHEMES.items():
        if url.startswith(scheme):
            return async_scheme + url[len(scheme):]
    return url


def is_postgresql() -> bool:
    return get_database_url().startswith("postgresql")
