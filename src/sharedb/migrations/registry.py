"""Registry of migration sources.

Components register their migration sources, usually at import or startup
time, and the runner later applies every registered source in
registration order.

Example:
    registry = MigrationRegistry()
    registry.register(MigrationSource("user-management", directory="users/sql", prefix="user_"))
    registry.register(MigrationSource("app-core", directory="app/sql", prefix="app_"))

    for source in registry.snapshot():
        print(source.name, source.tracking_table)
"""

from __future__ import annotations

import threading
from typing import Iterator

from loguru import logger

from .models import MigrationSource


class MigrationRegistry:
    """Ordered, thread-safe collection of migration sources.

    Writers replace an immutable tuple under a lock; readers take the
    current tuple without locking. Any number of ``snapshot()`` calls can
    run alongside a ``register()`` and never see a half-built list.

    Registration does not validate the source and does not deduplicate by
    name. Registering the same source twice applies it twice.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._lock = threading.Lock()
        self._sources: tuple[MigrationSource, ...] = ()

    def register(self, source: MigrationSource) -> None:
        """Append a migration source.

        Args:
            source: Source to apply after every previously registered one.
        """
        with self._lock:
            self._sources = self._sources + (source,)
        logger.info(f"Registering migration source: {source.name}")

    def snapshot(self) -> list[MigrationSource]:
        """Copy of the registered sources in registration order."""
        return list(self._sources)

    def clear(self) -> None:
        """Remove every source. Test support only.

        Must not be called while a run is applying migrations.
        """
        with self._lock:
            self._sources = ()

    def get(self, name: str) -> MigrationSource | None:
        """First registered source with the given name, if any."""
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def names(self) -> list[str]:
        """Names of the registered sources in registration order."""
        return [source.name for source in self._sources]

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[MigrationSource]:
        return iter(self._sources)


# =============================================================================
# Default Registry
# =============================================================================

_default_registry = MigrationRegistry()


def get_default_registry() -> MigrationRegistry:
    """Get the process-wide default registry."""
    return _default_registry


def register_migrations(source: MigrationSource) -> None:
    """Register a migration source with the default registry."""
    _default_registry.register(source)


def get_registered_sources() -> list[MigrationSource]:
    """Snapshot of the default registry's sources."""
    return _default_registry.snapshot()


def clear_registry() -> None:
    """Reset the default registry (for tests)."""
    _default_registry.clear()
