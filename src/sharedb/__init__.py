"""sharedb - per-component SQL migrations for one shared SQLite database.

Independently developed components each register a migration source with
its own version numbering; ``run_all_migrations`` applies all of them,
tracking each source's versions in a ``<prefix>schema_migrations`` table.
Every database unit of work is retried on SQLite lock contention.
"""

from __future__ import annotations

from .core.config import Config
from .core.exceptions import (
    ConfigurationError,
    DatabaseError,
    MigrationApplyError,
    MigrationError,
    SharedbError,
)
from .core.instrumentation import configure_tracing
from .migrations import (
    ApplyResult,
    Migration,
    MigrationRegistry,
    MigrationRunner,
    MigrationSource,
    SQLiteApplier,
    get_default_registry,
    get_registered_sources,
    get_stats,
    get_status,
    register_migrations,
)
from .store.retry import RetryConfig, retry_operation

__version__ = "1.0.0"


def run_all_migrations(
    config: Config | None = None,
    registry: MigrationRegistry | None = None,
) -> ApplyResult:
    """Apply every registered source to the configured database.

    Args:
        config: Configuration (defaults to Config.from_env()).
        registry: Sources to apply (defaults to the default registry).

    Returns:
        Versions applied per source.

    Raises:
        ConfigurationError: DATABASE_FILE is not set.
        MigrationApplyError: A source failed; see MigrationRunner.apply_all.
    """
    config = config or Config.from_env()
    path = config.require_database_path()
    configure_tracing(config.tracing)

    runner = MigrationRunner(
        registry if registry is not None else get_default_registry(),
        SQLiteApplier(path, busy_timeout=config.busy_timeout),
        retry_config=config.retry,
    )
    return runner.apply_all()


__all__ = [
    "ApplyResult",
    "Config",
    "ConfigurationError",
    "DatabaseError",
    "Migration",
    "MigrationApplyError",
    "MigrationError",
    "MigrationRegistry",
    "MigrationRunner",
    "MigrationSource",
    "RetryConfig",
    "SharedbError",
    "get_registered_sources",
    "get_stats",
    "get_status",
    "register_migrations",
    "retry_operation",
    "run_all_migrations",
    "__version__",
]
