"""Tests for database connection and management."""

import sqlite3
from pathlib import Path

import pytest

from sharedb.core.exceptions import DatabaseError
from sharedb.store.database import Database, open_database, with_transaction_retry
from sharedb.store.retry import RetryConfig, is_lock_error


class TestDatabaseConnection:
    """Tests for database connection lifecycle."""

    def test_connect_creates_database_file(self, test_db_path: Path):
        """Database file should be created on connect."""
        db = Database(test_db_path)
        db.connect()

        assert test_db_path.exists()
        db.close()

    def test_connect_creates_parent_directories(self, tmp_path: Path):
        """Connect should create parent directories if needed."""
        db_path = tmp_path / "subdir" / "nested" / "test.db"
        db = Database(db_path)
        db.connect()

        assert db_path.exists()
        db.close()

    def test_close_without_connect(self, test_db_path: Path):
        """Close should not raise if not connected."""
        db = Database(test_db_path)
        db.close()

    def test_double_connect(self, test_db_path: Path):
        """Connecting twice keeps the first connection."""
        db = Database(test_db_path)
        db.connect()
        db.connect()
        assert db.connected
        db.close()

    def test_close_clears_connection(self, test_db_path: Path):
        """Close should clear the connection."""
        db = Database(test_db_path)
        db.connect()
        db.close()

        with pytest.raises(DatabaseError, match="not connected"):
            db.execute("SELECT 1")

    def test_context_manager_closes(self, test_db_path: Path):
        """Using Database as a context manager connects and closes."""
        with Database(test_db_path) as db:
            assert db.connected
        assert not db.connected


class TestTransactions:
    """Tests for explicit transactions."""

    def test_commit_on_success(self, test_db_path: Path):
        """Statements inside a successful transaction are committed."""
        with Database(test_db_path) as db:
            with db.transaction():
                db.execute("CREATE TABLE t (id INTEGER)")
                db.execute("INSERT INTO t VALUES (1)")

        with Database(test_db_path) as db:
            assert db.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 1

    def test_rollback_includes_ddl(self, test_db_path: Path):
        """A failed transaction leaves no tables behind."""
        with Database(test_db_path) as db:
            with pytest.raises(DatabaseError):
                with db.transaction():
                    db.execute("CREATE TABLE t (id INTEGER)")
                    db.execute("INSERT INTO missing VALUES (1)")

            assert not db.table_exists("t")

    def test_non_database_error_is_wrapped(self, test_db_path: Path):
        """Arbitrary exceptions in the body roll back and are wrapped."""
        with Database(test_db_path) as db:
            with pytest.raises(DatabaseError, match="Transaction failed") as excinfo:
                with db.transaction():
                    db.execute("CREATE TABLE t (id INTEGER)")
                    raise RuntimeError("boom")

            assert isinstance(excinfo.value.__cause__, RuntimeError)
            assert not db.table_exists("t")

    def test_begin_on_locked_database_is_lock_error(self, test_db_path: Path):
        """Contended BEGIN IMMEDIATE surfaces as a retryable error."""
        holder = sqlite3.connect(str(test_db_path), isolation_level=None)
        holder.execute("BEGIN IMMEDIATE")
        try:
            with Database(test_db_path, timeout=0.0) as db:
                with pytest.raises(DatabaseError) as excinfo:
                    with db.transaction():
                        pass
            assert is_lock_error(excinfo.value)
        finally:
            holder.execute("ROLLBACK")
            holder.close()


class TestIntrospection:
    """Tests for table helpers."""

    def test_table_exists(self, test_db_path: Path):
        """table_exists reports tables without creating them."""
        with Database(test_db_path) as db:
            assert not db.table_exists("t")
            db.execute("CREATE TABLE t (id INTEGER)")
            assert db.table_exists("t")
            assert db.table_names() == {"t"}


class TestOpenDatabase:
    """Tests for open_database and with_transaction_retry."""

    def test_open_database_uses_env(self, tmp_path: Path, monkeypatch):
        """DATABASE_FILE picks the file when no path is given."""
        path = tmp_path / "env.db"
        monkeypatch.setenv("DATABASE_FILE", str(path))

        db = open_database()
        try:
            assert db.path == path
            assert db.connected
        finally:
            db.close()

    def test_with_transaction_retry_commits(self, test_db_path: Path):
        """The unit of work is committed and its result returned."""

        def work(conn: sqlite3.Connection) -> int:
            conn.execute("CREATE TABLE IF NOT EXISTS t (id INTEGER)")
            conn.execute("INSERT INTO t VALUES (7)")
            return 7

        assert with_transaction_retry(work, test_db_path, RetryConfig()) == 7

        with Database(test_db_path) as db:
            assert db.execute("SELECT id FROM t").fetchone()[0] == 7

    def test_with_transaction_retry_does_not_retry_hard_errors(self, test_db_path: Path):
        """Non-lock errors run the unit once and propagate."""
        calls = []

        def work(conn: sqlite3.Connection) -> None:
            calls.append(1)
            conn.execute("INSERT INTO missing VALUES (1)")

        with pytest.raises(DatabaseError, match="no such table"):
            with_transaction_retry(work, test_db_path)

        assert len(calls) == 1
