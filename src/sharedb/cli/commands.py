"""Command handlers for the sharedb CLI."""

from __future__ import annotations

from ..core.config import Config
from ..core.instrumentation import configure_tracing, shutdown_tracing
from ..migrations import (
    MigrationRegistry,
    MigrationRunner,
    MigrationSource,
    SQLiteApplier,
    get_status,
)
from ..migrations.loader import PREFIX_RE


def parse_source_spec(spec: str) -> MigrationSource:
    """Parse ``NAME=DIR[:PREFIX]`` into a migration source.

    Args:
        spec: Value of one --source option.

    Returns:
        Directory-backed migration source.

    Raises:
        ValueError: If the value has no name or directory.
    """
    name, sep, location = spec.partition("=")
    if not sep or not name or not location:
        raise ValueError(f"Invalid source '{spec}', expected NAME=DIR[:PREFIX]")

    directory, prefix = location, ""
    # A prefix is a plain identifier; C:\sql keeps its drive letter
    head, sep, tail = location.rpartition(":")
    if sep and head and PREFIX_RE.match(tail):
        directory, prefix = head, tail
    return MigrationSource(name=name, directory=directory, prefix=prefix)


def build_registry(args) -> MigrationRegistry:
    """Registry holding the sources given with --source, in order."""
    registry = MigrationRegistry()
    for spec in args.sources:
        registry.register(parse_source_spec(spec))
    return registry


def _build_runner(args, config: Config) -> MigrationRunner:
    path = config.require_database_path()
    return MigrationRunner(
        build_registry(args),
        SQLiteApplier(path, busy_timeout=config.busy_timeout),
        retry_config=config.retry,
    )


def handle_up(args, config: Config) -> None:
    """Handle up command.

    Args:
        args: Parsed command arguments.
        config: Application configuration.
    """
    configure_tracing(config.tracing)
    try:
        result = _build_runner(args, config).apply_all()
    finally:
        shutdown_tracing()

    for name, versions in result.applied.items():
        if versions:
            print(f"{name}: applied {', '.join(str(v) for v in versions)}")
        else:
            print(f"{name}: up to date")
    print(f"Applied {result.total_applied} migrations")


def handle_status(args, config: Config) -> None:
    """Handle status command.

    Reads applied versions only when the database file already exists, so
    asking for status never creates a database.
    """
    path = config.database_path_or_default()
    applier = SQLiteApplier(path, busy_timeout=config.busy_timeout) if path.exists() else None

    status = get_status(build_registry(args), applier, config.retry)
    _print_status(status, path if applier else None)


def _print_status(status, path) -> None:
    print("Migration Status")
    print("=" * 50)
    print(f"Database: {path if path else '(not created)'}")
    print(f"Registered sources: {status.registered_sources}")
    print()

    if not status.sources:
        print("No migration sources registered.")
        return

    for source in status.sources:
        print(f"  {source.name} [{source.tracking_table}]")
        print(f"    migrations: {source.migration_count}")
        if source.current_version is not None:
            print(f"    version: {source.current_version} ({source.pending_count} pending)")
        if source.error:
            print(f"    error: {source.error}")


def handle_version(args, config: Config) -> None:
    """Handle version command."""
    print(_build_runner(args, config).version(args.name))


def handle_rollback(args, config: Config) -> None:
    """Handle rollback command."""
    reverted = _build_runner(args, config).rollback(args.name, args.target)
    if reverted:
        print(f"{args.name}: reverted {', '.join(str(v) for v in reverted)}")
    else:
        print(f"{args.name}: nothing to revert")


def handle_force(args, config: Config) -> None:
    """Handle force command."""
    _build_runner(args, config).force_version(args.name, args.version)
    print(f"{args.name}: forced to version {args.version}")
