"""Migration discovery and validation.

Loading a source is three steps:

1. ``discover_migration_files`` lists and parses every ``.sql`` file in the
   source's directory or embedded bundle.
2. ``group_migrations`` pairs up/down files by version.
3. ``validate_migration_sequence`` requires versions 1..N without gaps.

Every problem is a load error naming the offending source or file. Nothing
is skipped silently.
"""

from __future__ import annotations

import importlib.resources
import re
from collections import defaultdict
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any, Iterable

from loguru import logger

from ..core.exceptions import (
    BundleNotSupportedError,
    DuplicateMigrationError,
    MigrationError,
    MigrationFilenameError,
    MigrationSequenceError,
    MigrationSourceError,
)
from .filenames import parse_migration_filename
from .models import Direction, Migration, MigrationFile, MigrationSource

if TYPE_CHECKING:
    from .registry import MigrationRegistry

PREFIX_RE = re.compile(r"^[A-Za-z0-9_]*$")


# =============================================================================
# Discovery
# =============================================================================


def discover_migration_files(source: MigrationSource) -> list[MigrationFile]:
    """Find and parse every migration file of a source.

    Args:
        source: Source to scan.

    Returns:
        Parsed files sorted by filename.

    Raises:
        MigrationSourceError: Location missing, ambiguous or unreadable.
        BundleNotSupportedError: The bundle type cannot be enumerated.
        MigrationFilenameError: A ``.sql`` file has a malformed name.
    """
    if not PREFIX_RE.match(source.prefix):
        raise MigrationSourceError(
            source.name,
            f"prefix {source.prefix!r} may only contain letters, digits and underscores",
        )
    if source.has_directory and source.has_bundle:
        raise MigrationSourceError(
            source.name, "both a directory and an embedded bundle are specified"
        )
    if source.has_directory:
        return _discover_in_directory(source)
    if source.has_bundle:
        return _discover_in_bundle(source)

    raise MigrationSourceError(
        source.name, "neither a directory nor an embedded bundle is specified"
    )


def _discover_in_directory(source: MigrationSource) -> list[MigrationFile]:
    directory = Path(source.directory)
    logger.debug(f"Loading migrations from directory: {directory}")

    if not directory.is_dir():
        raise MigrationSourceError(
            source.name, f"migration directory does not exist: {directory}"
        )

    files = []
    for path in sorted(directory.glob("*.sql")):
        if not path.is_file():
            continue
        parsed = parse_migration_filename(path.name, source.prefix)
        files.append(
            MigrationFile(
                filename=path.name,
                version=parsed.version,
                name=parsed.name,
                direction=parsed.direction,
                content=_read_migration_file(source, path),
            )
        )
    return files


def _read_migration_file(source: MigrationSource, entry: Any) -> str:
    """Read a migration file as UTF-8 text, as a load error of its source."""
    try:
        return entry.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MigrationSourceError(
            source.name, f"migration file {entry.name} is not valid UTF-8: {e}"
        ) from e
    except OSError as e:
        raise MigrationSourceError(
            source.name, f"failed to read migration file {entry.name}: {e}"
        ) from e


def _resolve_bundle(source: MigrationSource) -> Any:
    """Turn a bundle reference into something with ``iterdir``."""
    bundle = source.bundle

    if isinstance(bundle, (str, ModuleType)):
        try:
            return importlib.resources.files(bundle)
        except (ModuleNotFoundError, TypeError) as e:
            raise MigrationSourceError(
                source.name, f"cannot open embedded bundle {bundle!r}: {e}"
            ) from e

    if hasattr(bundle, "iterdir") and hasattr(bundle, "read_text"):
        return bundle

    raise BundleNotSupportedError(source.name, type(bundle).__name__)


def _discover_in_bundle(source: MigrationSource) -> list[MigrationFile]:
    root = _resolve_bundle(source)
    logger.debug(f"Loading migrations from embedded bundle: {source.name}")

    try:
        entries = sorted(root.iterdir(), key=lambda entry: entry.name)
    except (OSError, NotImplementedError) as e:
        raise MigrationSourceError(
            source.name, f"cannot list embedded bundle: {e}"
        ) from e

    files = []
    for entry in entries:
        if not entry.name.endswith(".sql") or not entry.is_file():
            continue
        parsed = parse_migration_filename(entry.name, source.prefix)
        files.append(
            MigrationFile(
                filename=entry.name,
                version=parsed.version,
                name=parsed.name,
                direction=parsed.direction,
                content=_read_migration_file(source, entry),
            )
        )
    return files


# =============================================================================
# Grouping and validation
# =============================================================================


def group_migrations(files: Iterable[MigrationFile], source_name: str) -> list[Migration]:
    """Pair up/down files into migrations.

    A version exists once its up file is present; the down file is optional.

    Args:
        files: Parsed files of one source.
        source_name: Owning source, recorded on each migration.

    Returns:
        Migrations sorted by version.

    Raises:
        DuplicateMigrationError: Two files share a version and direction.
        MigrationFilenameError: A down file has no matching up file.
    """
    by_key: dict[tuple[int, Direction], list[MigrationFile]] = defaultdict(list)
    for file in files:
        by_key[(file.version, file.direction)].append(file)

    for (version, direction), group in sorted(by_key.items(), key=lambda kv: kv[0][0]):
        if len(group) > 1:
            raise DuplicateMigrationError(
                source_name, version, direction.value, [f.filename for f in group]
            )

    migrations = []
    versions = sorted({version for version, _ in by_key})
    for version in versions:
        up = by_key.get((version, Direction.UP))
        down = by_key.get((version, Direction.DOWN))
        if not up:
            raise MigrationFilenameError(
                down[0].filename, f"down migration {version} has no matching up migration"
            )
        up_file = up[0]
        down_file = down[0] if down else None
        if down_file is not None and down_file.name != up_file.name:
            logger.warning(
                f"Migration {version} of {source_name} has mismatched names: "
                f"{up_file.filename} / {down_file.filename}"
            )
        migrations.append(
            Migration(
                version=version,
                name=up_file.name,
                source=source_name,
                up_sql=up_file.content,
                down_sql=down_file.content if down_file else None,
            )
        )

    return migrations


def validate_migration_sequence(migrations: list[Migration]) -> None:
    """Require versions to run 1, 2, 3, ... without gaps.

    Args:
        migrations: Migrations of one source sorted by version.

    Raises:
        MigrationSequenceError: At the first missing version.
    """
    expected = 1
    for migration in migrations:
        if migration.version != expected:
            raise MigrationSequenceError(migration.source, expected, migration.version)
        expected += 1


def load_migrations(source: MigrationSource) -> list[Migration]:
    """Discover, pair and validate the migrations of one source.

    Args:
        source: Source to load.

    Returns:
        Migrations sorted by version.

    Raises:
        MigrationError: Any load error (see the step functions).
    """
    files = discover_migration_files(source)
    migrations = group_migrations(files, source.name)
    validate_migration_sequence(migrations)
    logger.debug(
        f"Loaded {len(migrations)} migrations ({len(files)} files) from {source.name}"
    )
    return migrations


def load_all_migrations(registry: "MigrationRegistry") -> list[Migration]:
    """Load every registered source's migrations.

    Versions overlap between sources, so the result is only ordered by
    version for display; apply order is always per source.

    Args:
        registry: Registry to read.

    Returns:
        All migrations sorted by version, ties kept in registration order.

    Raises:
        MigrationError: The first source that fails to load, with its name.
    """
    sources = registry.snapshot()
    if not sources:
        logger.warning("No migration sources registered")
        return []

    all_migrations: list[Migration] = []
    for source in sources:
        try:
            all_migrations.extend(load_migrations(source))
        except MigrationSourceError:
            raise
        except MigrationError as e:
            raise MigrationSourceError(
                source.name, f"failed to load migrations: {e}"
            ) from e

    all_migrations.sort(key=lambda m: m.version)
    logger.info(
        f"Discovered {len(all_migrations)} migrations from {len(sources)} sources"
    )
    return all_migrations
