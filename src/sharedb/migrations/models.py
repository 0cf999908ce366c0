"""Data types for migration sources and the migrations they contain."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from importlib.resources.abc import Traversable
from pathlib import Path
from types import ModuleType
from typing import Union

TRACKING_TABLE_SUFFIX = "schema_migrations"

# A package name, an imported package, or any importlib.resources Traversable
Bundle = Union[str, ModuleType, Traversable]


class Direction(Enum):
    """Whether a migration file moves the schema forward or back."""

    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class MigrationSource:
    """One component's private set of migrations.

    Exactly one of ``directory`` or ``bundle`` must be set. That is checked
    when the source is loaded, not here, since directories may not exist
    yet when sources are wired together at import time.

    Attributes:
        name: Unique, human-readable source name (e.g. "user-management").
        directory: Filesystem directory holding the ``.sql`` files.
        bundle: Embedded resources holding the ``.sql`` files.
        prefix: Namespace for the source's version-tracking table
            (e.g. "user_" gives ``user_schema_migrations``).
    """

    name: str
    directory: Path | str | None = None
    bundle: Bundle | None = None
    prefix: str = ""

    @property
    def tracking_table(self) -> str:
        """Name of the table recording this source's applied versions."""
        return f"{self.prefix}{TRACKING_TABLE_SUFFIX}"

    @property
    def has_directory(self) -> bool:
        return self.directory is not None and str(self.directory) != ""

    @property
    def has_bundle(self) -> bool:
        return self.bundle is not None


@dataclass(frozen=True)
class MigrationFilename:
    """Parsed form of ``<version>_<name>.<up|down>.sql``."""

    version: int
    name: str
    direction: Direction


@dataclass(frozen=True)
class MigrationFile:
    """A discovered migration file with its contents."""

    filename: str
    version: int
    name: str
    direction: Direction
    content: str


@dataclass(frozen=True)
class Migration:
    """A single versioned migration of one source.

    Built fresh from the source's files on every run and never persisted.
    """

    version: int
    name: str
    source: str
    up_sql: str
    down_sql: str | None = None

    @property
    def reversible(self) -> bool:
        return self.down_sql is not None

    def __repr__(self) -> str:
        return f"Migration({self.source!r}, {self.version}, {self.name!r})"
