"""SQLite database connection manager for sharedb.

Connections are short-lived: open one per logical unit of work, use it,
close it. Nothing holds a connection across a whole migration run, so a
failed connection for one source cannot poison the next.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from ..core.exceptions import DatabaseError
from ..core.instrumentation import traced_statement
from .retry import RetryConfig, retry_operation

T = TypeVar("T")

_QUERY_KEYWORDS = ("SELECT", "PRAGMA", "WITH", "EXPLAIN")


def _is_query(sql: str) -> bool:
    return sql.lstrip().upper().startswith(_QUERY_KEYWORDS)


class Database:
    """SQLite database connection manager."""

    def __init__(self, path: Path | str, timeout: float = 0.0):
        """Initialize database with path.

        Args:
            path: Path to the SQLite database file.
            timeout: Seconds the driver itself waits on a locked database
                before raising. Retrying is normally left to
                ``retry_operation``.
        """
        self.path = Path(path)
        self.timeout = timeout
        self._connection: sqlite3.Connection | None = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def connect(self) -> None:
        """Open the database connection in autocommit mode.

        Transactions are always explicit (see ``transaction``), so DDL and
        the version bookkeeping of a migration commit together.
        """
        if self._connection is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(
                str(self.path),
                timeout=self.timeout,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
        except Exception as e:
            self._connection = None
            raise DatabaseError(f"Failed to connect to database: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            try:
                self._connection.close()
            except Exception as e:
                raise DatabaseError(f"Failed to close database: {e}") from e
            finally:
                self._connection = None

    def _require_connection(self) -> sqlite3.Connection:
        if not self._connection:
            raise DatabaseError("Database not connected")
        return self._connection

    @contextmanager
    def transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        """Context manager for an explicit database transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so contention
        shows up at the start of the unit of work instead of halfway
        through it.

        Args:
            mode: SQLite transaction mode (DEFERRED, IMMEDIATE, EXCLUSIVE).

        Yields:
            The underlying connection.

        Raises:
            DatabaseError: If connection is not available or transaction fails.
        """
        conn = self._require_connection()
        begin = f"BEGIN {mode}"

        try:
            with traced_statement("sqlite.begin", begin, instance=str(self.path)):
                conn.execute(begin)
        except Exception as e:
            raise DatabaseError(f"Failed to begin transaction: {e}") from e

        try:
            yield conn
            conn.execute("COMMIT")
        except Exception as e:
            if conn.in_transaction:
                conn.rollback()
            if isinstance(e, DatabaseError):
                raise
            raise DatabaseError(f"Transaction failed: {e}") from e

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a SQL statement.

        Args:
            sql: SQL statement to execute.
            params: Parameters for the SQL statement.

        Returns:
            A cursor with the query results.

        Raises:
            DatabaseError: If connection is not available or query fails.
        """
        conn = self._require_connection()
        kind = "sqlite.query" if _is_query(sql) else "sqlite.exec"

        try:
            with traced_statement(kind, sql, instance=str(self.path), params=params):
                return conn.execute(sql, params)
        except Exception as e:
            raise DatabaseError(f"Query execution failed: {e}") from e

    def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements.

        Note that sqlite3 commits any open transaction before running a
        script; use ``execute`` per statement inside ``transaction`` when
        atomicity matters.

        Raises:
            DatabaseError: If connection is not available or script fails.
        """
        conn = self._require_connection()

        try:
            with traced_statement("sqlite.exec", sql, instance=str(self.path)):
                conn.executescript(sql)
        except Exception as e:
            raise DatabaseError(f"Script execution failed: {e}") from e

    def table_exists(self, name: str) -> bool:
        """Check whether a table exists without creating anything."""
        cursor = self.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            (name,),
        )
        return cursor.fetchone()[0] > 0

    def table_names(self) -> set[str]:
        """Names of all tables in the database."""
        cursor = self.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        return {row[0] for row in cursor.fetchall()}


def open_database(path: Path | str | None = None, timeout: float | None = None) -> Database:
    """Open a connected Database.

    Args:
        path: Database file. Defaults to DATABASE_FILE, then ``app.db``.
        timeout: Driver busy timeout; defaults to the configured value.

    Returns:
        A connected Database. The caller closes it.
    """
    from ..core.config import Config

    config = Config.from_env()
    db = Database(
        path if path is not None else config.database_path_or_default(),
        timeout=config.busy_timeout if timeout is None else timeout,
    )
    db.connect()
    return db


def with_transaction_retry(
    fn: Callable[[sqlite3.Connection], T],
    path: Path | str | None = None,
    config: RetryConfig | None = None,
) -> T:
    """Run ``fn`` in a transaction on a fresh connection, retrying on locks.

    Each attempt opens its own connection, begins a transaction, runs
    ``fn``, commits and closes. A lock error anywhere in that sequence
    rolls the attempt back and starts over, so ``fn`` must be safe to run
    more than once.

    Args:
        fn: Work to do with the open connection.
        path: Database file (see ``open_database``).
        config: Retry configuration.

    Returns:
        The value returned by ``fn`` on the successful attempt.
    """

    def attempt() -> T:
        db = open_database(path)
        try:
            with db.transaction() as conn:
                return fn(conn)
        finally:
            db.close()

    return retry_operation(attempt, config)
