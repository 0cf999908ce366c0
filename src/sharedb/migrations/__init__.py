"""Migration registry and cross-source runner.

Components register their migration sources; the runner applies each
source's pending migrations with per-source version tracking.

Example:
    from sharedb.migrations import (
        MigrationRegistry,
        MigrationRunner,
        MigrationSource,
        SQLiteApplier,
    )

    registry = MigrationRegistry()
    registry.register(MigrationSource("users", directory="users/sql", prefix="user_"))
    MigrationRunner(registry, SQLiteApplier("app.db")).apply_all()
"""

from .appliers import MigrationApplier, SQLAlchemyApplier, SQLiteApplier
from .filenames import parse_migration_filename
from .loader import (
    discover_migration_files,
    group_migrations,
    load_all_migrations,
    load_migrations,
    validate_migration_sequence,
)
from .models import (
    Direction,
    Migration,
    MigrationFile,
    MigrationFilename,
    MigrationSource,
)
from .registry import (
    MigrationRegistry,
    clear_registry,
    get_default_registry,
    get_registered_sources,
    register_migrations,
)
from .runner import ApplyResult, MigrationRunner
from .status import MigrationStatus, SourceStatus, get_stats, get_status

__all__ = [
    "ApplyResult",
    "Direction",
    "Migration",
    "MigrationApplier",
    "MigrationFile",
    "MigrationFilename",
    "MigrationRegistry",
    "MigrationRunner",
    "MigrationSource",
    "MigrationStatus",
    "SQLAlchemyApplier",
    "SQLiteApplier",
    "SourceStatus",
    "clear_registry",
    "discover_migration_files",
    "get_default_registry",
    "get_registered_sources",
    "get_stats",
    "get_status",
    "group_migrations",
    "load_all_migrations",
    "load_migrations",
    "parse_migration_filename",
    "register_migrations",
    "validate_migration_sequence",
]
