"""Execution backends for migrations.

An applier executes migration SQL against the database and keeps the
version-tracking table of one source up to date. Which table to use is
decided by the runner; appliers only execute.

Each applier method is one unit of work: it opens its own connection,
does its job in a single transaction, and closes the connection. That makes
every call safe to hand to ``retry_operation`` as a whole.

Two backends are provided:

- ``SQLiteApplier``: stdlib ``sqlite3`` through ``sharedb.store.Database``.
- ``SQLAlchemyApplier``: any SQLAlchemy engine URL, SQLite included.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator, Protocol, runtime_checkable

from loguru import logger
from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    Table,
    create_engine,
    delete,
    event,
    func,
    insert,
    inspect,
    select,
)
from sqlalchemy.pool import NullPool

from ..core.instrumentation import traced_statement
from ..store.database import Database
from ..store.statements import quote_identifier, split_statements

if TYPE_CHECKING:
    from sqlalchemy.engine import URL, Connection, Engine

    from .models import Migration


@runtime_checkable
class MigrationApplier(Protocol):
    """Executes migrations and records versions in a tracking table."""

    def current_version(self, table: str) -> int:
        """Highest recorded version, 0 if the table does not exist.

        Must not create the table, nor the database file.
        """
        ...

    def applied_versions(self, table: str) -> list[int]:
        """All recorded versions ascending, empty if the table does not exist."""
        ...

    def apply(self, migration: "Migration", table: str) -> None:
        """Run the up SQL and record the version, atomically.

        Creates the tracking table if needed.
        """
        ...

    def revert(self, migration: "Migration", table: str) -> None:
        """Run the down SQL and remove the version record, atomically."""
        ...

    def set_versions(self, table: str, versions: Iterable[int]) -> None:
        """Replace the recorded versions without running any migration SQL."""
        ...

    def existing_tables(self) -> set[str]:
        """Names of the tables currently in the database."""
        ...


# =============================================================================
# sqlite3 backend
# =============================================================================

TRACKING_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class SQLiteApplier:
    """Applies migrations to a SQLite file with the stdlib driver.

    Example:
        applier = SQLiteApplier("app.db")
        applier.apply(migration, "user_schema_migrations")
        applier.current_version("user_schema_migrations")  # -> migration.version
    """

    def __init__(self, path: Path | str, busy_timeout: float = 0.0):
        """Initialize applier.

        Args:
            path: SQLite database file.
            busy_timeout: Driver-level lock wait in seconds per statement.
        """
        self.path = Path(path)
        self.busy_timeout = busy_timeout

    def __repr__(self) -> str:
        return f"SQLiteApplier({str(self.path)!r})"

    @contextmanager
    def _session(self) -> Iterator[Database]:
        db = Database(self.path, timeout=self.busy_timeout)
        db.connect()
        try:
            yield db
        finally:
            db.close()

    def current_version(self, table: str) -> int:
        quoted = quote_identifier(table)
        if not self.path.exists():
            return 0
        with self._session() as db:
            if not db.table_exists(table):
                return 0
            row = db.execute(f"SELECT MAX(version) FROM {quoted}").fetchone()
            return row[0] or 0

    def applied_versions(self, table: str) -> list[int]:
        quoted = quote_identifier(table)
        if not self.path.exists():
            return []
        with self._session() as db:
            if not db.table_exists(table):
                return []
            cursor = db.execute(f"SELECT version FROM {quoted} ORDER BY version")
            return [row[0] for row in cursor.fetchall()]

    def apply(self, migration: "Migration", table: str) -> None:
        quoted = quote_identifier(table)
        statements = split_statements(migration.up_sql)

        with self._session() as db, db.transaction():
            db.execute(TRACKING_TABLE_DDL.format(table=quoted))
            for statement in statements:
                db.execute(statement)
            db.execute(f"INSERT INTO {quoted} (version) VALUES (?)", (migration.version,))

        logger.debug(
            f"Applied {migration.source} migration {migration.version} "
            f"({len(statements)} statements) into {table}"
        )

    def revert(self, migration: "Migration", table: str) -> None:
        quoted = quote_identifier(table)
        statements = split_statements(migration.down_sql or "")

        with self._session() as db, db.transaction():
            for statement in statements:
                db.execute(statement)
            db.execute(f"DELETE FROM {quoted} WHERE version = ?", (migration.version,))

        logger.debug(
            f"Reverted {migration.source} migration {migration.version} from {table}"
        )

    def set_versions(self, table: str, versions: Iterable[int]) -> None:
        quoted = quote_identifier(table)
        rows = [(version,) for version in versions]

        with self._session() as db, db.transaction() as conn:
            db.execute(TRACKING_TABLE_DDL.format(table=quoted))
            db.execute(f"DELETE FROM {quoted}")
            conn.executemany(f"INSERT INTO {quoted} (version) VALUES (?)", rows)

    def existing_tables(self) -> set[str]:
        if not self.path.exists():
            return set()
        with self._session() as db:
            return db.table_names()


# =============================================================================
# SQLAlchemy backend
# =============================================================================


def _enable_sqlite_transactional_ddl(engine: "Engine") -> None:
    """Make pysqlite run DDL inside the transaction SQLAlchemy begins.

    The stdlib driver does not emit BEGIN before DDL on its own, which would
    let a failed migration leave half its tables behind.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class SQLAlchemyApplier:
    """Applies migrations through a SQLAlchemy engine.

    Connections are not pooled, so every call connects and disconnects.

    Example:
        applier = SQLAlchemyApplier("sqlite:///app.db")
        applier.apply(migration, "app_schema_migrations")
    """

    def __init__(self, url: "str | URL"):
        """Initialize applier.

        Args:
            url: SQLAlchemy database URL, e.g. "sqlite:///path/to/app.db".
        """
        self.engine = create_engine(url, poolclass=NullPool)
        if self.engine.dialect.name == "sqlite":
            _enable_sqlite_transactional_ddl(self.engine)

    def __repr__(self) -> str:
        return f"SQLAlchemyApplier({self.engine.url.render_as_string(hide_password=True)!r})"

    def dispose(self) -> None:
        """Release the engine."""
        self.engine.dispose()

    def _sqlite_file_missing(self) -> bool:
        """True for a SQLite file URL whose file does not exist yet.

        Connecting would create it, so reads short-circuit instead.
        """
        if self.engine.dialect.name != "sqlite":
            return False
        database = self.engine.url.database
        if not database or database == ":memory:" or database.startswith("file:"):
            return False
        return not Path(database).exists()

    def _tracking_table(self, name: str) -> Table:
        quote_identifier(name)
        return Table(
            name,
            MetaData(),
            Column("version", Integer, primary_key=True, autoincrement=False),
            Column(
                "applied_at",
                DateTime,
                nullable=False,
                server_default=func.current_timestamp(),
            ),
        )

    def _execute_script(self, conn: "Connection", script: str) -> int:
        statements = split_statements(script)
        for statement in statements:
            with traced_statement(
                f"{self.engine.dialect.name}.exec",
                statement,
                instance=self.engine.url.database,
            ):
                conn.exec_driver_sql(statement)
        return len(statements)

    def current_version(self, table: str) -> int:
        tracking = self._tracking_table(table)
        if self._sqlite_file_missing():
            return 0
        with self.engine.connect() as conn:
            if not inspect(conn).has_table(table):
                return 0
            return conn.execute(select(func.max(tracking.c.version))).scalar() or 0

    def applied_versions(self, table: str) -> list[int]:
        tracking = self._tracking_table(table)
        if self._sqlite_file_missing():
            return []
        with self.engine.connect() as conn:
            if not inspect(conn).has_table(table):
                return []
            result = conn.execute(select(tracking.c.version).order_by(tracking.c.version))
            return list(result.scalars())

    def apply(self, migration: "Migration", table: str) -> None:
        tracking = self._tracking_table(table)
        with self.engine.begin() as conn:
            tracking.create(conn, checkfirst=True)
            count = self._execute_script(conn, migration.up_sql)
            conn.execute(insert(tracking).values(version=migration.version))

        logger.debug(
            f"Applied {migration.source} migration {migration.version} "
            f"({count} statements) into {table}"
        )

    def revert(self, migration: "Migration", table: str) -> None:
        tracking = self._tracking_table(table)
        with self.engine.begin() as conn:
            self._execute_script(conn, migration.down_sql or "")
            conn.execute(delete(tracking).where(tracking.c.version == migration.version))

        logger.debug(
            f"Reverted {migration.source} migration {migration.version} from {table}"
        )

    def set_versions(self, table: str, versions: Iterable[int]) -> None:
        tracking = self._tracking_table(table)
        rows = [{"version": version} for version in versions]
        with self.engine.begin() as conn:
            tracking.create(conn, checkfirst=True)
            conn.execute(delete(tracking))
            if rows:
                conn.execute(insert(tracking), rows)

    def existing_tables(self) -> set[str]:
        if self._sqlite_file_missing():
            return set()
        with self.engine.connect() as conn:
            return set(inspect(conn).get_table_names())
