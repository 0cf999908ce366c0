"""Pytest configuration and fixtures."""

import sqlite3
from pathlib import Path
from typing import Callable, Iterable

import pytest

from sharedb.migrations import Migration, MigrationRegistry


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for tests."""
    return tmp_path / "test.db"


@pytest.fixture
def registry() -> MigrationRegistry:
    """Provide an empty, isolated registry."""
    return MigrationRegistry()


@pytest.fixture
def make_migrations_dir(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing migration files into a fresh directory.

    Usage:
        directory = make_migrations_dir("users", {
            "001_create_users.up.sql": "CREATE TABLE users (id TEXT);",
            "001_create_users.down.sql": "DROP TABLE users;",
        })
    """

    def _make(name: str, files: dict[str, str]) -> Path:
        directory = tmp_path / name
        directory.mkdir(parents=True, exist_ok=True)
        for filename, content in files.items():
            (directory / filename).write_text(content, encoding="utf-8")
        return directory

    return _make


@pytest.fixture
def table_names() -> Callable[[Path], set[str]]:
    """Read the table names of a SQLite file."""

    def _tables(path: Path) -> set[str]:
        conn = sqlite3.connect(str(path))
        try:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            return {row[0] for row in rows.fetchall()}
        finally:
            conn.close()

    return _tables


@pytest.fixture
def recorded_versions() -> Callable[[Path, str], list[int]]:
    """Read the versions recorded in a tracking table."""

    def _versions(path: Path, table: str) -> list[int]:
        conn = sqlite3.connect(str(path))
        try:
            rows = conn.execute(f'SELECT version FROM "{table}" ORDER BY version')
            return [row[0] for row in rows.fetchall()]
        finally:
            conn.close()

    return _versions


class FakeApplier:
    """In-memory applier recording every call.

    ``failures`` maps (table, version) to an exception raised by ``apply``;
    a list of exceptions is consumed one per call, to script transient
    failures followed by success.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[int]] = {}
        self.executed: list[tuple[str, int, str]] = []
        self.failures: dict[tuple[str, int], BaseException | list[BaseException]] = {}
        self.extra_tables: set[str] = set()

    def current_version(self, table: str) -> int:
        return max(self.tables.get(table, []), default=0)

    def applied_versions(self, table: str) -> list[int]:
        return sorted(self.tables.get(table, []))

    def apply(self, migration: Migration, table: str) -> None:
        failure = self.failures.get((table, migration.version))
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure
        self.executed.append(("up", migration.version, table))
        self.tables.setdefault(table, []).append(migration.version)

    def revert(self, migration: Migration, table: str) -> None:
        self.executed.append(("down", migration.version, table))
        self.tables[table].remove(migration.version)

    def set_versions(self, table: str, versions: Iterable[int]) -> None:
        self.tables[table] = list(versions)

    def existing_tables(self) -> set[str]:
        return set(self.tables) | self.extra_tables


@pytest.fixture
def fake_applier() -> FakeApplier:
    """Provide an in-memory applier."""
    return FakeApplier()
