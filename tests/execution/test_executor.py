"""Tests for transactional execution against an in-memory SQLite target."""

import sqlite3

import pytest
from sqlalchemy import event

from sqldeploy.core.database import create_deployment_engine
from sqldeploy.core.errors import ExecutionFailed, ValidationBlocked
from sqldeploy.domain.models.operation import DeploymentPlan, Operation, SourceKind
from sqldeploy.domain.models.validation import Severity, ValidationIssue, ValidationReport
from sqldeploy.domain.sql.dialects import Dialect
from sqldeploy.execution.deployment_run import DeploymentRun, RunState
from sqldeploy.execution.executor import DeploymentExecutor, planned_tables
from sqldeploy.execution.restore_points import SqliteFileRestorePointProvider


def _op(phase, ordinal, name, text):
    return Operation(
        phase=phase,
        source_kind=SourceKind.REPOSITORY_SCRIPT,
        object_name=name,
        statement_text=text,
        ordinal_within_phase=ordinal,
    )


def _ten_operations(failing_text="INSERT INTO nope VALUES (1);"):
    ops = [_op(1, i, f"t{i}", f"CREATE TABLE t{i} (id INTEGER PRIMARY KEY);") for i in range(1, 7)]
    ops.append(_op(4, 1, "seed", failing_text))
    ops.extend(_op(6, i, f"ix_t{i}", f"CREATE INDEX ix_t{i} ON t{i} (id);") for i in range(1, 4))
    return ops


def _approved_run(operations, *severities):
    plan = DeploymentPlan(operations=tuple(operations), source_descriptor_version="1", dialect="sqlite")
    run = DeploymentRun(plan=plan)
    run.validated(ValidationReport(
        issues=tuple(
            ValidationIssue(severity=s, category="test", description="d", recommendation="r")
            for s in severities
        ),
        operation_count=len(plan),
        estimated_duration_seconds=0,
        estimated_storage_bytes=0,
    ))
    return run


class TestDeploymentExecutor:
    """Tests for DeploymentExecutor.execute."""

    def test_commits_all_operations(self, sqlite_engine, list_tables):
        run = _approved_run(_ten_operations("INSERT INTO t1 VALUES (1);"))

        DeploymentExecutor(sqlite_engine, "sqlite").execute(run)

        assert run.state == RunState.COMMITTED
        assert len(run.results) == 10
        assert all(r.succeeded for r in run.results)
        assert list_tables(sqlite_engine) == ["t1", "t2", "t3", "t4", "t5", "t6"]
        assert run.restore_point is not None

    def test_failure_rolls_back_everything(self, sqlite_engine, list_tables):
        run = _approved_run(_ten_operations())

        with pytest.raises(ExecutionFailed) as exc_info:
            DeploymentExecutor(sqlite_engine, "sqlite").execute(run)

        failure = exc_info.value
        assert failure.operation_index == 7
        assert failure.context.phase == 4
        assert failure.context.object_name == "seed"
        assert failure.context.statement_text == "INSERT INTO nope VALUES (1);"
        assert "no such table" in str(failure)
        assert failure.restored is False

        assert run.state == RunState.ROLLED_BACK
        assert run.failure is failure
        assert len(run.results) == 7
        assert not run.results[-1].succeeded
        assert list_tables(sqlite_engine) == []

    def test_blocked_run_never_executes(self, sqlite_engine, list_tables):
        run = _approved_run(_ten_operations(), Severity.ERROR)

        with pytest.raises(ValidationBlocked):
            DeploymentExecutor(sqlite_engine, "sqlite").execute(run)

        assert run.state == RunState.BLOCKED
        assert run.results == []

    def test_unreachable_target_fails_preflight(self, tmp_path):
        engine = create_deployment_engine(f"sqlite:///{tmp_path / 'missing' / 'target.db'}")
        run = _approved_run(_ten_operations())
        try:
            with pytest.raises(ExecutionFailed, match="Pre-flight failed"):
                DeploymentExecutor(engine, "sqlite").execute(run)
        finally:
            engine.dispose()

        assert run.state == RunState.ROLLED_BACK
        assert run.results == []

    def test_production_failure_applies_restore_point(self, tmp_path, list_tables):
        engine = create_deployment_engine(f"sqlite:///{tmp_path / 'target.db'}")
        try:
            with engine.begin() as conn:
                conn.exec_driver_sql("CREATE TABLE existing (id INTEGER)")
            run = _approved_run(_ten_operations())
            executor = DeploymentExecutor(
                engine,
                "sqlite",
                restore_provider=SqliteFileRestorePointProvider(tmp_path / "restore"),
                is_production=True,
            )

            with pytest.raises(ExecutionFailed) as exc_info:
                executor.execute(run, preceding_version="0001-base")

            assert exc_info.value.restored is True
            assert run.restore_point.preceding_version == "0001-base"
            assert list_tables(engine) == ["existing"]
        finally:
            engine.dispose()


@pytest.fixture
def foreign_key_engine():
    """In-memory SQLite target that enforces foreign keys."""
    engine = create_deployment_engine("sqlite://")

    @event.listens_for(engine, "connect")
    def _foreign_keys_on(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys = ON")

    yield engine
    engine.dispose()


class TestCommitFailure:
    """Deferred constraints fail at commit; the run still ends ROLLED_BACK."""

    OPERATIONS = [
        _op(1, 1, "p", "CREATE TABLE p (id INTEGER PRIMARY KEY);"),
        _op(1, 2, "c", (
            "CREATE TABLE c (id INTEGER PRIMARY KEY, "
            "p_id INTEGER REFERENCES p (id) DEFERRABLE INITIALLY DEFERRED);"
        )),
        _op(4, 1, "seed", "INSERT INTO c VALUES (1, 99);"),
    ]

    def test_deferred_constraint_rolls_back(self, foreign_key_engine, list_tables):
        run = _approved_run(self.OPERATIONS)

        with pytest.raises(ExecutionFailed, match="Commit failed after 3 operations") as exc_info:
            DeploymentExecutor(foreign_key_engine, "sqlite").execute(run)

        failure = exc_info.value
        assert "FOREIGN KEY constraint failed" in str(failure)
        assert failure.operation_index is None
        assert failure.context.object_name == "seed"
        assert run.state == RunState.ROLLED_BACK
        assert run.failure is failure
        assert all(r.succeeded for r in run.results)
        assert run.post_deployment is None
        assert list_tables(foreign_key_engine) == []

    def test_production_commit_failure_applies_restore_point(self, tmp_path, list_tables):
        engine = create_deployment_engine(f"sqlite:///{tmp_path / 'target.db'}")

        @event.listens_for(engine, "connect")
        def _foreign_keys_on(dbapi_connection, connection_record):
            dbapi_connection.execute("PRAGMA foreign_keys = ON")

        try:
            with engine.begin() as conn:
                conn.exec_driver_sql("CREATE TABLE existing (id INTEGER)")
            run = _approved_run(self.OPERATIONS)
            executor = DeploymentExecutor(
                engine,
                "sqlite",
                restore_provider=SqliteFileRestorePointProvider(tmp_path / "restore"),
                is_production=True,
            )

            with pytest.raises(ExecutionFailed) as exc_info:
                executor.execute(run)

            assert exc_info.value.restored is True
            assert run.state == RunState.ROLLED_BACK
            assert list_tables(engine) == ["existing"]
        finally:
            engine.dispose()


class TestPostDeploymentCheck:
    """Server version before, table count and planned tables after commit."""

    def test_committed_run_records_check(self, sqlite_engine):
        run = _approved_run(_ten_operations("INSERT INTO t1 VALUES (1);"))

        DeploymentExecutor(sqlite_engine, "sqlite").execute(run)

        assert run.server_version == sqlite3.sqlite_version
        check = run.post_deployment
        assert check.passed
        assert check.table_count_before == 0
        assert check.table_count_after == 6
        assert check.missing_tables == ()
        assert check.to_dict()["passed"] is True

    def test_missing_planned_table_fails_check(self, sqlite_engine):
        with sqlite_engine.begin() as conn:
            conn.exec_driver_sql("CREATE TABLE present (id INTEGER)")
        plan = DeploymentPlan(
            operations=(
                _op(1, 1, "present", "CREATE TABLE present (id INTEGER);"),
                _op(1, 2, "ghost", "CREATE TABLE ghost (id INTEGER);"),
                _op(4, 1, "scratch", "CREATE TEMP TABLE scratch (id INTEGER);"),
            ),
            source_descriptor_version="1",
            dialect="sqlite",
        )

        check = DeploymentExecutor(sqlite_engine, "sqlite").verify(plan, tables_before=1)

        assert not check.passed
        assert check.missing_tables == ("ghost",)
        assert check.table_count_after == 1
        assert check.error is None


class TestPlannedTables:
    """Tables a plan is expected to leave behind."""

    def test_schema_kept_except_on_sqlite(self):
        plan = DeploymentPlan(
            operations=(
                _op(1, 1, "Orders", "CREATE TABLE [sales].[Orders] (Id INT);"),
                _op(1, 2, "Audit", "CREATE TABLE Audit (Id INT); CREATE TABLE #work (Id INT);"),
            ),
            source_descriptor_version="1",
            dialect="mssql",
        )

        assert planned_tables(plan, Dialect.MSSQL) == [("sales", "orders"), (None, "audit")]
        assert planned_tables(plan, Dialect.SQLITE) == [(None, "orders"), (None, "audit")]
