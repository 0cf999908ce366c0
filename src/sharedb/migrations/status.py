"""Read-only reporting on registered migration sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..core.exceptions import MigrationError
from ..store.retry import RetryConfig, retry_operation
from .appliers import MigrationApplier
from .loader import load_migrations
from .registry import MigrationRegistry


@dataclass
class SourceStatus:
    """Status of a single migration source."""

    name: str
    has_directory: bool
    has_bundle: bool
    prefix: str
    tracking_table: str
    migration_count: int = 0
    error: str | None = None
    current_version: int | None = None
    pending_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "has_directory": self.has_directory,
            "has_embed": self.has_bundle,
            "prefix": self.prefix,
            "tracking_table": self.tracking_table,
            "migration_count": self.migration_count,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.current_version is not None:
            data["current_version"] = self.current_version
            data["pending_count"] = self.pending_count
        return data


@dataclass
class MigrationStatus:
    """Status of every registered source, in registration order."""

    sources: list[SourceStatus] = field(default_factory=list)

    @property
    def registered_sources(self) -> int:
        return len(self.sources)

    @property
    def healthy(self) -> bool:
        return all(source.error is None for source in self.sources)

    def to_dict(self) -> dict[str, Any]:
        return {
            "registered_sources": self.registered_sources,
            "sources": {source.name: source.to_dict() for source in self.sources},
        }


def get_stats(registry: MigrationRegistry) -> dict[str, int]:
    """Count the migrations of each registered source.

    Args:
        registry: Registry to inspect.

    Returns:
        Mapping of source name to number of migrations.

    Raises:
        MigrationError: The first source that fails to load.
    """
    return {
        source.name: len(load_migrations(source)) for source in registry.snapshot()
    }


def get_status(
    registry: MigrationRegistry,
    applier: MigrationApplier | None = None,
    retry_config: RetryConfig | None = None,
) -> MigrationStatus:
    """Describe every registered source without changing anything.

    Load errors are reported per source instead of raised. With an applier,
    each loadable source also reports its current version and pending count;
    tracking tables are only read, never created.

    Args:
        registry: Registry to inspect.
        applier: Optional backend for reading applied versions.
        retry_config: Retry budget for the version reads.

    Returns:
        Status of all sources.
    """
    status = MigrationStatus()

    for source in registry.snapshot():
        entry = SourceStatus(
            name=source.name,
            has_directory=source.has_directory,
            has_bundle=source.has_bundle,
            prefix=source.prefix,
            tracking_table=source.tracking_table,
        )
        status.sources.append(entry)

        try:
            migrations = load_migrations(source)
        except MigrationError as e:
            entry.error = str(e)
            logger.debug(f"Source {source.name} failed to load: {e}")
            continue
        entry.migration_count = len(migrations)

        if applier is not None:
            entry.current_version = retry_operation(
                lambda: applier.current_version(source.tracking_table), retry_config
            )
            entry.pending_count = sum(
                1 for m in migrations if m.version > entry.current_version
            )

    return status
