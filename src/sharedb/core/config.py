"""Configuration management for sharedb."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from ..store.retry import RetryConfig
from .exceptions import ConfigurationError
from .instrumentation import TracingConfig

DEFAULT_DATABASE_FILE = "app.db"


def _env_float(name: str) -> float | None:
    """Read a float environment variable, rejecting garbage loudly."""
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


def _tracing_from_env() -> TracingConfig:
    """Tracing is enabled whenever an OTLP endpoint is configured."""
    tracing = TracingConfig()
    if endpoint := os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT"):
        tracing.enabled = True
        tracing.endpoint = endpoint
    if service := os.environ.get("OTEL_SERVICE_NAME"):
        tracing.service_name = f"{service}-sqlite"
    return tracing


@dataclass
class Config:
    """Main application configuration."""

    database_file: Path | None = None
    # Seconds sqlite3 waits on a lock before reporting it; 0 leaves
    # all waiting to the retry executor.
    busy_timeout: float = 0.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        config = cls()

        if path := os.environ.get("DATABASE_FILE"):
            config.database_file = Path(path)

        if (timeout := _env_float("SHAREDB_BUSY_TIMEOUT")) is not None:
            config.busy_timeout = timeout

        if (value := _env_float("SHAREDB_RETRY_MAX_DURATION")) is not None:
            config.retry.max_retry_duration = value
        if (value := _env_float("SHAREDB_RETRY_BASE_DELAY")) is not None:
            config.retry.base_delay = value
        if (value := _env_float("SHAREDB_RETRY_MAX_DELAY")) is not None:
            config.retry.max_delay = value
        if (value := _env_float("SHAREDB_RETRY_JITTER")) is not None:
            config.retry.jitter_percent = value

        config.tracing = _tracing_from_env()

        return config

    def database_path_or_default(self) -> Path:
        """Database path, falling back to ``app.db`` when unset.

        Only for call paths where a missing setting is harmless (status
        reporting, ad-hoc connections).
        """
        return self.database_file or Path(DEFAULT_DATABASE_FILE)

    def require_database_path(self) -> Path:
        """Database path for the primary connection path.

        Raises:
            ConfigurationError: If DATABASE_FILE was never configured.
        """
        if self.database_file is None:
            raise ConfigurationError(
                "DATABASE_FILE environment variable must be set to run migrations"
            )
        return self.database_file
