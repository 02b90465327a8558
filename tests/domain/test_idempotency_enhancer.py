"""Tests for the idempotency enhancer."""

from sqldeploy.domain.models.operation import DeploymentPlan, Operation, SourceKind
from sqldeploy.domain.services.idempotency_enhancer import IdempotencyEnhancer, enhance_plan


def _script(text, phase=15, name="obj", path=None):
    return Operation(
        phase=phase,
        source_kind=SourceKind.REPOSITORY_SCRIPT,
        object_name=name,
        statement_text=text,
        ordinal_within_phase=1,
        source_path=path or f"{phase:02d}-x/{name}.sql",
    )


class TestMssql:
    """SQL Server guards."""

    def test_procedure_gets_guard(self):
        outcome = IdempotencyEnhancer("mssql").enhance(_script("CREATE PROCEDURE dbo.usp_Load AS SELECT 1"))

        assert outcome.changed is True
        assert outcome.operation.statement_text == (
            "IF EXISTS (SELECT 1 FROM sys.objects WHERE object_id = OBJECT_ID(N'dbo.usp_Load') "
            "AND type IN (N'P', N'PC')) DROP PROCEDURE dbo.usp_Load;\n"
            "GO\n"
            "CREATE PROCEDURE dbo.usp_Load AS SELECT 1"
        )
        assert outcome.operation.original_text == "CREATE PROCEDURE dbo.usp_Load AS SELECT 1"
        assert outcome.operation.was_enhanced

    def test_enhancing_twice_is_a_no_op(self):
        enhancer = IdempotencyEnhancer("mssql")
        once = enhancer.enhance(_script("CREATE PROCEDURE dbo.usp_Load AS SELECT 1")).operation
        twice = enhancer.enhance(once)

        assert twice.changed is False
        assert twice.operation.statement_text == once.statement_text
        assert twice.operation.original_text == "CREATE PROCEDURE dbo.usp_Load AS SELECT 1"

    def test_or_alter_left_alone(self):
        text = "CREATE OR ALTER VIEW dbo.v_Orders AS SELECT 1 AS x"
        outcome = IdempotencyEnhancer("mssql").enhance(_script(text, phase=14))

        assert outcome.changed is False
        assert outcome.skipped is None
        assert outcome.operation.statement_text == text

    def test_table_scripts_untouched(self):
        text = "CREATE TABLE dbo.Foo (Id INT)"
        outcome = IdempotencyEnhancer("mssql").enhance(_script(text, phase=1))

        assert outcome.changed is False
        assert outcome.skipped is None

    def test_procedure_in_second_batch_is_skipped(self):
        text = "PRINT 'setup'\nGO\nCREATE PROCEDURE dbo.usp_Two AS SELECT 1"
        outcome = IdempotencyEnhancer("mssql").enhance(_script(text))

        assert outcome.changed is False
        assert "not the leading statement" in outcome.skipped.reason
        assert outcome.operation.statement_text == text


class TestSqliteAndPostgres:
    """Guards for the other dialects."""

    def test_sqlite_view(self):
        outcome = IdempotencyEnhancer("sqlite").enhance(_script("CREATE VIEW v AS SELECT 1;", phase=14))

        assert outcome.operation.statement_text == "DROP VIEW IF EXISTS v;\nCREATE VIEW v AS SELECT 1;"

    def test_sqlite_procedure_is_skipped_with_note(self):
        outcome = IdempotencyEnhancer("sqlite").enhance(_script("CREATE PROCEDURE p AS SELECT 1"))

        assert outcome.changed is False
        assert "sqlite has no procedure objects" in outcome.skipped.reason

    def test_multi_statement_script_is_skipped(self):
        text = "CREATE VIEW v AS SELECT 1; SELECT 2;"
        outcome = IdempotencyEnhancer("sqlite").enhance(_script(text, phase=14))

        assert outcome.operation.statement_text == text
        assert "holds 2 statements" in outcome.skipped.reason

    def test_postgresql_function(self):
        outcome = IdempotencyEnhancer("postgresql").enhance(_script("CREATE FUNCTION f() RETURNS int AS $$ SELECT 1 $$ LANGUAGE sql"))

        assert outcome.operation.statement_text.startswith("DROP FUNCTION IF EXISTS f;\n")

    def test_postgresql_trigger_without_table_is_skipped(self):
        outcome = IdempotencyEnhancer("postgresql").enhance(_script("CREATE TRIGGER trg AS SELECT 1", phase=16))

        assert outcome.changed is False
        assert "no ON <table>" in outcome.skipped.reason

    def test_unscannable_script_is_skipped(self):
        outcome = IdempotencyEnhancer("postgresql").enhance(_script("CREATE VIEW v AS SELECT 'open"))

        assert "could not be scanned" in outcome.skipped.reason


class TestEnhancePlan:
    """Tests for whole-plan enhancement."""

    def test_records_rewrites_and_notes(self):
        plan = DeploymentPlan(
            operations=(
                _script("CREATE TABLE t (id INT);", phase=1, name="t"),
                _script("CREATE VIEW v AS SELECT id FROM t;", phase=14, name="v"),
                _script("CREATE PROCEDURE p AS SELECT 1", phase=15, name="p"),
            ),
            source_descriptor_version=None,
            dialect="sqlite",
        )

        summary = enhance_plan(plan, "sqlite")

        assert summary.enhanced == 1
        assert len(summary.skipped) == 1
        assert summary.plan.enhancements[0].object_name == "v"
        assert summary.plan.enhancements[0].original_text == "CREATE VIEW v AS SELECT id FROM t;"
        assert summary.plan.notes[0].object_name == "p"
        assert summary.plan.change_summary()["enhanced"] == 1
        # The input plan is not mutated
        assert plan.enhancements == ()
