"""Cross-source migration runner.

Applies the migrations of every registered source to one shared database.
Each source records its applied versions in its own table,
``<prefix>schema_migrations``, so two sources may both have a version 1
without colliding.

Sources are processed in registration order and each source's migrations
in ascending version order. Every migration is a separate atomic unit run
through the retry executor: its statements and the version record commit
together or not at all.

The runner provides no locking between processes. Running ``apply_all``
for the same database from two callers at once is not supported; callers
that might do so must serialize the runs themselves.

Example:
    registry = MigrationRegistry()
    registry.register(MigrationSource("users", directory="users/sql", prefix="user_"))

    runner = MigrationRunner(registry, SQLiteApplier("app.db"))
    result = runner.apply_all()
    print(f"Applied {result.total_applied} migrations")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from ..core.exceptions import (
    IrreversibleMigrationError,
    MigrationApplyError,
    MigrationError,
    MigrationNotFoundError,
)
from ..core.instrumentation import traced_request
from ..store.retry import RetryConfig, retry_operation
from .appliers import MigrationApplier
from .loader import load_migrations
from .models import Migration, MigrationSource
from .registry import MigrationRegistry


@dataclass
class ApplyResult:
    """Versions applied per source by one run, in registration order."""

    applied: dict[str, list[int]] = field(default_factory=dict)

    @property
    def total_applied(self) -> int:
        return sum(len(versions) for versions in self.applied.values())

    @property
    def changed(self) -> bool:
        return self.total_applied > 0


class MigrationRunner:
    """Applies registered migration sources to a shared database."""

    def __init__(
        self,
        registry: MigrationRegistry,
        applier: MigrationApplier,
        retry_config: RetryConfig | None = None,
    ):
        """Initialize runner.

        Args:
            registry: Sources to apply.
            applier: Backend executing SQL against the shared database.
            retry_config: Retry budget for each unit of work.
        """
        self.registry = registry
        self.applier = applier
        self.retry_config = retry_config or RetryConfig.default()

    def _retry(self, operation):
        return retry_operation(operation, self.retry_config)

    def _get_source(self, name: str) -> MigrationSource:
        source = self.registry.get(name)
        if source is None:
            raise MigrationNotFoundError(f"No migration source registered as '{name}'")
        return source

    # -------------------------------------------------------------------------
    # Read-only queries
    # -------------------------------------------------------------------------

    def version(self, name: str) -> int:
        """Watermark of a source: its highest applied version (0 if none)."""
        source = self._get_source(name)
        return self._retry(lambda: self.applier.current_version(source.tracking_table))

    def pending(self, name: str) -> list[Migration]:
        """Migrations of a source above its watermark, ascending."""
        source = self._get_source(name)
        migrations = load_migrations(source)
        watermark = self._retry(
            lambda: self.applier.current_version(source.tracking_table)
        )
        return [m for m in migrations if m.version > watermark]

    def validate_schema(self, expected_tables: Iterable[str]) -> list[str]:
        """Report expected tables that do not exist.

        Missing tables may simply belong to sources that are not registered
        in this process, so they are logged rather than raised.

        Args:
            expected_tables: Table names that should exist.

        Returns:
            The missing table names, in the order given.
        """
        existing = self._retry(self.applier.existing_tables)
        missing = [table for table in expected_tables if table not in existing]
        for table in missing:
            logger.warning(
                f"Expected table '{table}' does not exist "
                "(may be from unregistered source)"
            )
        return missing

    # -------------------------------------------------------------------------
    # Forward migration
    # -------------------------------------------------------------------------

    def apply_all(self) -> ApplyResult:
        """Apply pending migrations of every registered source.

        Idempotent: sources already at their latest version are left alone,
        and running again after a failure resumes where it stopped.

        Returns:
            Versions applied per source.

        Raises:
            MigrationApplyError: A source failed to load or a migration
                failed. Later sources are not processed; everything applied
                before the failure stays applied.
        """
        result = ApplyResult()
        sources = self.registry.snapshot()

        if not sources:
            logger.warning("No migration sources registered")
            return result

        logger.info(f"Running migrations from {len(sources)} registered sources")
        with traced_request("apply_all", attributes={"sources": len(sources)}):
            for source in sources:
                result.applied[source.name] = self._apply_source(source)

        if result.changed:
            logger.info(f"All migrations completed: {result.total_applied} applied")
        else:
            logger.debug("All sources up to date, no migrations to apply")
        return result

    def apply_source(self, name: str) -> list[int]:
        """Apply pending migrations of a single registered source.

        Returns:
            Versions applied.

        Raises:
            MigrationNotFoundError: No source with that name is registered.
            MigrationApplyError: Loading or a migration failed.
        """
        return self._apply_source(self._get_source(name))

    def _apply_source(self, source: MigrationSource) -> list[int]:
        table = source.tracking_table
        logger.info(f"Processing migrations from: {source.name} (table {table})")

        try:
            migrations = load_migrations(source)
        except MigrationError as e:
            raise MigrationApplyError(source.name, None, e) from e

        try:
            watermark = self._retry(lambda: self.applier.current_version(table))
        except Exception as e:
            raise MigrationApplyError(source.name, None, e) from e

        pending = [m for m in migrations if m.version > watermark]
        if not pending:
            logger.debug(f"{source.name} at version {watermark}, no migrations to apply")
            return []

        applied = []
        for migration in pending:
            logger.info(
                f"Applying {source.name} migration {migration.version}: {migration.name}"
            )
            try:
                self._retry(lambda: self.applier.apply(migration, table))
            except Exception as e:
                logger.error(
                    f"Migration {migration.version} of {source.name} failed: {e}"
                )
                raise MigrationApplyError(source.name, migration.version, e) from e
            applied.append(migration.version)

        logger.info(
            f"Completed migrations for {source.name}: now at version {applied[-1]}"
        )
        return applied

    # -------------------------------------------------------------------------
    # Explicit maintenance operations
    # -------------------------------------------------------------------------

    def rollback(self, name: str, target_version: int) -> list[int]:
        """Revert a source down to ``target_version``.

        Applied versions above the target are reverted newest first, each as
        its own atomic unit. Every one of them must have down SQL; this is
        checked before anything is executed.

        Args:
            name: Registered source name.
            target_version: Version to end at (0 reverts everything).

        Returns:
            Versions reverted, in the order they were reverted.

        Raises:
            MigrationNotFoundError: Unknown source, or an applied version
                with no migration file.
            IrreversibleMigrationError: A migration lacks down SQL.
            MigrationApplyError: A down migration failed.
            ValueError: The target is negative or above the watermark.
        """
        source = self._get_source(name)
        table = source.tracking_table
        migrations = {m.version: m for m in load_migrations(source)}
        applied = self._retry(lambda: self.applier.applied_versions(table))
        watermark = max(applied, default=0)

        if target_version < 0 or target_version > watermark:
            raise ValueError(
                f"Rollback target {target_version} for {name} must be between "
                f"0 and the current version {watermark}"
            )

        to_revert = sorted((v for v in applied if v > target_version), reverse=True)
        for version in to_revert:
            if version not in migrations:
                raise MigrationNotFoundError(
                    f"Version {version} of {name} is applied but has no migration file"
                )
            if not migrations[version].reversible:
                raise IrreversibleMigrationError(name, version)

        reverted = []
        with traced_request("rollback", attributes={"source": name, "target": target_version}):
            for version in to_revert:
                migration = migrations[version]
                logger.info(f"Reverting {name} migration {version}: {migration.name}")
                try:
                    self._retry(lambda: self.applier.revert(migration, table))
                except Exception as e:
                    raise MigrationApplyError(name, version, e) from e
                reverted.append(version)

        logger.info(f"Rolled back {name} to version {target_version}")
        return reverted

    def force_version(self, name: str, version: int) -> None:
        """Mark versions 1..version as applied without running any SQL.

        Recovery tool for a tracking table that no longer matches the schema,
        e.g. after a migration was fixed up by hand.

        Raises:
            ValueError: If version is negative.
        """
        if version < 0:
            raise ValueError(f"Version must be >= 0, got {version}")
        source = self._get_source(name)
        versions = range(1, version + 1)
        self._retry(lambda: self.applier.set_versions(source.tracking_table, versions))
        logger.warning(f"Forced {name} to version {version}")
