"""Multiple independent migration sources sharing one SQLite database."""

import sqlite3

import pytest

from sharedb import Config, ConfigurationError, run_all_migrations
from sharedb.core.exceptions import MigrationApplyError
from sharedb.migrations import (
    MigrationRunner,
    MigrationSource,
    SQLAlchemyApplier,
    SQLiteApplier,
    register_migrations,
)


@pytest.fixture
def runner(registry, users_source, boards_source, integration_db_path, fast_retry):
    registry.register(users_source)
    registry.register(boards_source)
    return MigrationRunner(registry, SQLiteApplier(integration_db_path), fast_retry)


class TestSourceIsolation:
    """Each source keeps its own version history in the shared database."""

    def test_both_sources_applied(
        self, runner, integration_db_path, table_names, recorded_versions
    ):
        """Both version-1 migrations run; each is recorded in its own table."""
        result = runner.apply_all()

        assert result.applied == {"user-management": [1, 2], "boards": [1]}
        assert {
            "users",
            "user_profiles",
            "boards",
            "user_schema_migrations",
            "app_schema_migrations",
        } <= table_names(integration_db_path)
        assert recorded_versions(integration_db_path, "user_schema_migrations") == [1, 2]
        assert recorded_versions(integration_db_path, "app_schema_migrations") == [1]

    def test_applied_at_recorded(self, runner, integration_db_path):
        runner.apply_all()

        conn = sqlite3.connect(str(integration_db_path))
        try:
            row = conn.execute(
                "SELECT applied_at FROM app_schema_migrations WHERE version = 1"
            ).fetchone()
        finally:
            conn.close()
        assert row[0]

    def test_idempotent(self, runner, integration_db_path, recorded_versions):
        """A second run changes nothing."""
        runner.apply_all()
        result = runner.apply_all()

        assert not result.changed
        assert recorded_versions(integration_db_path, "user_schema_migrations") == [1, 2]

    def test_new_migration_picked_up(
        self, runner, users_source, integration_db_path, recorded_versions
    ):
        """Adding a file to one source applies only that file next run."""
        runner.apply_all()
        (users_source.directory / "003_add_last_login.up.sql").write_text(
            "ALTER TABLE users ADD COLUMN last_login TIMESTAMP;", encoding="utf-8"
        )

        result = runner.apply_all()

        assert result.applied == {"user-management": [3], "boards": []}
        assert recorded_versions(integration_db_path, "app_schema_migrations") == [1]

    def test_queries_before_first_run(self, runner, integration_db_path):
        """version and pending work on a database that does not exist yet."""
        assert runner.version("user-management") == 0
        assert [m.version for m in runner.pending("boards")] == [1]
        assert not integration_db_path.exists()

    def test_validate_schema(self, runner):
        runner.apply_all()
        assert runner.validate_schema(["users", "boards", "audit_log"]) == ["audit_log"]


class TestFailureAndResume:
    """A failed migration leaves no trace and the run can be resumed."""

    def test_failed_migration_rolls_back_and_resumes(
        self, registry, users_source, boards_source, make_migrations_dir,
        integration_db_path, table_names, recorded_versions, fast_retry,
    ):
        broken = make_migrations_dir(
            "broken",
            {
                "001_create_reports.up.sql": "CREATE TABLE reports (id TEXT);",
                "002_bad.up.sql": "CREATE TABLE report_rows (id TEXT); INSERT INTO nope VALUES (1);",
            },
        )
        registry.register(users_source)
        registry.register(MigrationSource("reports", directory=broken, prefix="reports_"))
        registry.register(boards_source)
        runner = MigrationRunner(registry, SQLiteApplier(integration_db_path), fast_retry)

        with pytest.raises(MigrationApplyError) as exc_info:
            runner.apply_all()

        assert exc_info.value.source == "reports"
        assert exc_info.value.version == 2
        tables = table_names(integration_db_path)
        assert "reports" in tables
        assert "report_rows" not in tables
        assert "boards" not in tables
        assert recorded_versions(integration_db_path, "reports_schema_migrations") == [1]

        (broken / "002_bad.up.sql").write_text(
            "CREATE TABLE report_rows (id TEXT);", encoding="utf-8"
        )
        result = runner.apply_all()

        assert result.applied == {"user-management": [], "reports": [2], "boards": [1]}

    def test_gap_fails_before_any_sql(
        self, registry, users_source, make_migrations_dir, integration_db_path,
        table_names, fast_retry,
    ):
        """A source with a version gap is rejected without touching the database."""
        gappy = make_migrations_dir(
            "gappy",
            {"001_one.up.sql": "CREATE TABLE one (id TEXT);", "003_three.up.sql": "SELECT 1;"},
        )
        registry.register(MigrationSource("gappy", directory=gappy, prefix="gappy_"))
        registry.register(users_source)
        runner = MigrationRunner(registry, SQLiteApplier(integration_db_path), fast_retry)

        with pytest.raises(MigrationApplyError) as exc_info:
            runner.apply_all()

        assert exc_info.value.version is None
        assert "one" not in table_names(integration_db_path)


class TestRollbackAndForce:
    """Explicit maintenance operations on a real database."""

    def test_rollback_one_source(self, runner, integration_db_path, table_names):
        runner.apply_all()

        assert runner.rollback("user-management", 1) == [2]

        tables = table_names(integration_db_path)
        assert "user_profiles" not in tables
        assert {"users", "boards"} <= tables
        assert runner.version("user-management") == 1
        assert runner.version("boards") == 1

    def test_force_then_apply(self, runner, integration_db_path, table_names):
        """Forcing a version skips the SQL of the forced migrations."""
        runner.force_version("user-management", 1)
        result = runner.apply_all()

        assert result.applied["user-management"] == [2]
        tables = table_names(integration_db_path)
        assert "users" not in tables
        assert "user_profiles" in tables


class TestSQLAlchemyBackend:
    """The SQLAlchemy applier gives the same result as the sqlite3 one."""

    def test_apply_all(
        self, registry, users_source, boards_source, integration_db_path,
        recorded_versions, fast_retry,
    ):
        registry.register(users_source)
        registry.register(boards_source)
        applier = SQLAlchemyApplier(f"sqlite:///{integration_db_path}")
        try:
            result = MigrationRunner(registry, applier, fast_retry).apply_all()
        finally:
            applier.dispose()

        assert result.total_applied == 3
        assert recorded_versions(integration_db_path, "user_schema_migrations") == [1, 2]
        assert recorded_versions(integration_db_path, "app_schema_migrations") == [1]


class TestRunAllMigrations:
    """The top-level entry point over the default registry."""

    def test_uses_database_file(
        self, default_registry, monkeypatch, users_source, boards_source,
        integration_db_path, recorded_versions,
    ):
        monkeypatch.setenv("DATABASE_FILE", str(integration_db_path))
        register_migrations(users_source)
        register_migrations(boards_source)

        result = run_all_migrations()

        assert result.total_applied == 3
        assert recorded_versions(integration_db_path, "app_schema_migrations") == [1]

    def test_requires_database_file(self, default_registry, users_source):
        register_migrations(users_source)

        with pytest.raises(ConfigurationError):
            run_all_migrations(Config())

    def test_explicit_registry(self, registry, boards_source, integration_db_path):
        registry.register(boards_source)

        result = run_all_migrations(Config(database_file=integration_db_path), registry)

        assert result.applied == {"boards": [1]}

    def test_package_bundle(self, tmp_path, monkeypatch, registry, integration_db_path):
        """Migrations shipped inside an importable package are applied."""
        package = tmp_path / "pkgroot" / "sharedb_bundle_fixture"
        migrations = package / "migrations"
        migrations.mkdir(parents=True)
        (package / "__init__.py").write_text("", encoding="utf-8")
        (migrations / "__init__.py").write_text("", encoding="utf-8")
        (migrations / "001_create_widgets.up.sql").write_text(
            "CREATE TABLE widgets (id TEXT);", encoding="utf-8"
        )
        monkeypatch.syspath_prepend(str(tmp_path / "pkgroot"))

        registry.register(
            MigrationSource(
                "widgets", bundle="sharedb_bundle_fixture.migrations", prefix="widgets_"
            )
        )
        result = run_all_migrations(Config(database_file=integration_db_path), registry)

        assert result.applied == {"widgets": [1]}
