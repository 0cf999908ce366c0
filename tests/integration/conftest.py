"""Pytest configuration and fixtures for integration tests."""

from pathlib import Path

import pytest

from sharedb.migrations import MigrationSource, clear_registry
from sharedb.store.retry import RetryConfig

USERS_MIGRATIONS = {
    "001_create_users.up.sql": """
        CREATE TABLE users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE
        );
    """,
    "001_create_users.down.sql": "DROP TABLE users;",
    "002_add_user_profiles.up.sql": """
        CREATE TABLE user_profiles (
            user_id TEXT PRIMARY KEY REFERENCES users(id),
            display_name TEXT
        );
    """,
    "002_add_user_profiles.down.sql": "DROP TABLE user_profiles;",
}

BOARDS_MIGRATIONS = {
    "001_create_boards.up.sql": """
        CREATE TABLE boards (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL
        );
        CREATE INDEX idx_boards_title ON boards(title);
    """,
    "001_create_boards.down.sql": "DROP TABLE boards;",
}


@pytest.fixture
def integration_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for integration tests."""
    return tmp_path / "integration_test.db"


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry budget short enough for tests, long enough to ride out a brief lock."""
    return RetryConfig(max_retry_duration=5.0, base_delay=0.005, max_delay=0.05)


@pytest.fixture
def users_source(make_migrations_dir) -> MigrationSource:
    """User-management component, tracked in user_schema_migrations."""
    return MigrationSource(
        "user-management",
        directory=make_migrations_dir("users", USERS_MIGRATIONS),
        prefix="user_",
    )


@pytest.fixture
def boards_source(make_migrations_dir) -> MigrationSource:
    """Application component, tracked in app_schema_migrations."""
    return MigrationSource(
        "boards",
        directory=make_migrations_dir("boards", BOARDS_MIGRATIONS),
        prefix="app_",
    )


@pytest.fixture
def default_registry():
    """Empty the process-wide registry around a test."""
    clear_registry()
    yield
    clear_registry()
