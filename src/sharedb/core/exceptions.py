"""Custom exceptions for sharedb."""

from __future__ import annotations


class SharedbError(Exception):
    """Base exception for all sharedb errors."""

    pass


class ConfigurationError(SharedbError):
    """Required configuration is missing or invalid."""

    pass


class DatabaseError(SharedbError):
    """Database operation failed."""

    pass


# =============================================================================
# Migration errors
# =============================================================================


class MigrationError(SharedbError):
    """Base exception for migration operations."""

    pass


class MigrationSourceError(MigrationError):
    """A migration source is malformed or one of its files cannot be read."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Migration source '{source}': {reason}")


class BundleNotSupportedError(MigrationSourceError, NotImplementedError):
    """The source's embedded bundle type cannot be enumerated."""

    def __init__(self, source: str, bundle_type: str):
        self.bundle_type = bundle_type
        super().__init__(
            source, f"discovery is not implemented for bundles of type {bundle_type}"
        )


class MigrationFilenameError(MigrationError):
    """A migration filename does not match <version>_<name>.<up|down>.sql."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Invalid migration file '{filename}': {reason}")


class DuplicateMigrationError(MigrationError):
    """Two files declare the same version and direction."""

    def __init__(self, source: str, version: int, direction: str, filenames: list[str]):
        self.source = source
        self.version = version
        self.direction = direction
        self.filenames = filenames
        super().__init__(
            f"Migration source '{source}' has duplicate {direction} migrations "
            f"for version {version}: {', '.join(filenames)}"
        )


class MigrationSequenceError(MigrationError):
    """Migration versions are not a contiguous sequence starting at 1."""

    def __init__(self, source: str, expected: int, found: int):
        self.source = source
        self.expected = expected
        self.found = found
        super().__init__(
            f"Migration source '{source}' has a sequence gap: "
            f"expected version {expected}, found {found}"
        )


class MigrationNotFoundError(MigrationError):
    """No registered source or migration matches the request."""

    pass


class IrreversibleMigrationError(MigrationError):
    """A rollback needs a migration that has no down statements."""

    def __init__(self, source: str, version: int):
        self.source = source
        self.version = version
        super().__init__(
            f"Migration {version} of source '{source}' has no down migration"
        )


class MigrationApplyError(MigrationError):
    """Applying migrations for a source failed.

    Migrations applied before the failure (for this source and every source
    processed earlier) stay applied. Fix the offending migration and run
    again to resume.
    """

    def __init__(self, source: str, version: int | None, cause: BaseException):
        self.source = source
        self.version = version
        self.cause = cause
        if version is None:
            message = f"Failed to load migrations for source '{source}': {cause}"
        else:
            message = (
                f"Failed to apply migration {version} for source '{source}': {cause}"
            )
        super().__init__(message)
