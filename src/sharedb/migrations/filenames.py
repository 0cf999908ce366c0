"""Migration filename parsing.

Migration files are named ``<version>_<name>.<up|down>.sql``, e.g.
``001_create_users.up.sql``. Parsing works on plain strings so it can be
tested without touching the filesystem.
"""

from __future__ import annotations

import re
from pathlib import PurePath

from ..core.exceptions import MigrationFilenameError
from .models import Direction, MigrationFilename

MIGRATION_FILENAME_RE = re.compile(r"^(\d+)_([A-Za-z0-9_]+)\.(up|down)\.sql$")


def parse_migration_filename(filename: str, prefix: str = "") -> MigrationFilename:
    """Parse a migration filename into version, name and direction.

    If ``prefix`` is given and the base name starts with it, it is stripped
    first, so ``user_001_create_users.up.sql`` parses for prefix ``user_``.

    Args:
        filename: File name or path; only the final component is parsed.
        prefix: Source prefix that filenames may carry.

    Returns:
        Parsed filename.

    Raises:
        MigrationFilenameError: If the name does not have the expected shape.
    """
    base = PurePath(filename).name

    if not base.endswith(".sql"):
        raise MigrationFilenameError(filename, "must have a .sql extension")

    stem = base[: -len(".sql")]
    if not (stem.endswith(".up") or stem.endswith(".down")):
        raise MigrationFilenameError(filename, "must end with .up.sql or .down.sql")

    candidate = base
    if prefix and base.startswith(prefix) and not MIGRATION_FILENAME_RE.match(base):
        candidate = base[len(prefix):]

    match = MIGRATION_FILENAME_RE.match(candidate)
    if match is None:
        if not re.match(r"^\d+_", candidate):
            reason = "must start with a numeric version followed by '_'"
        else:
            reason = "name must be letters, digits and underscores (VERSION_name)"
        raise MigrationFilenameError(filename, reason)

    version = int(match.group(1))
    if version < 1:
        raise MigrationFilenameError(filename, "version must be a positive integer")

    return MigrationFilename(
        version=version,
        name=match.group(2),
        direction=Direction(match.group(3)),
    )
