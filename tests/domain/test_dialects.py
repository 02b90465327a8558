"""Tests for dialect-specific SQL fragments."""

import pytest

from sqldeploy.domain.sql.dialects import (
    Dialect,
    apply_guard,
    executable_batches,
    existence_guard,
    qualified_name,
    quote_identifier,
    server_info_query,
    supports_guard,
    table_count_query,
    transaction_wrappers,
)


class TestDialectParse:
    """Tests for Dialect.parse."""

    def test_accepts_string(self):
        assert Dialect.parse("PostgreSQL") == Dialect.POSTGRESQL

    def test_accepts_enum(self):
        assert Dialect.parse(Dialect.SQLITE) is Dialect.SQLITE

    def test_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unsupported dialect"):
            Dialect.parse("oracle")


class TestQuoting:
    """Tests for identifier quoting."""

    def test_mssql_brackets(self):
        assert quote_identifier("Order]s", Dialect.MSSQL) == "[Order]]s]"

    def test_double_quotes(self):
        assert quote_identifier('a"b', Dialect.POSTGRESQL) == '"a""b"'

    def test_schema_qualified(self):
        assert qualified_name("Orders", "sales", Dialect.MSSQL) == "[sales].[Orders]"

    def test_sqlite_drops_schema(self):
        assert qualified_name("Orders", "sales", Dialect.SQLITE) == '"Orders"'


class TestExistenceGuard:
    """Tests for existence guards."""

    def test_mssql_procedure(self):
        guard = existence_guard("PROCEDURE", "dbo.usp_Load", Dialect.MSSQL)
        assert guard == (
            "IF EXISTS (SELECT 1 FROM sys.objects WHERE object_id = OBJECT_ID(N'dbo.usp_Load') "
            "AND type IN (N'P', N'PC')) DROP PROCEDURE dbo.usp_Load;"
        )

    def test_mssql_function_codes(self):
        guard = existence_guard("FUNCTION", "dbo.fn_Total", Dialect.MSSQL)
        assert "N'FN', N'IF', N'TF', N'FS', N'FT'" in guard

    def test_postgresql_view(self):
        assert existence_guard("VIEW", "public.v_orders", Dialect.POSTGRESQL) == "DROP VIEW IF EXISTS public.v_orders;"

    def test_postgresql_never_cascades(self):
        assert "CASCADE" not in existence_guard("FUNCTION", "f", Dialect.POSTGRESQL)

    def test_postgresql_trigger_needs_table(self):
        assert existence_guard("TRIGGER", "trg", Dialect.POSTGRESQL) is None
        assert existence_guard("TRIGGER", "trg", Dialect.POSTGRESQL, on_table="orders") == (
            "DROP TRIGGER IF EXISTS trg ON orders;"
        )

    def test_sqlite_supports_views_and_triggers_only(self):
        assert supports_guard("VIEW", Dialect.SQLITE)
        assert supports_guard("TRIGGER", Dialect.SQLITE)
        assert not supports_guard("PROCEDURE", Dialect.SQLITE)
        assert existence_guard("PROCEDURE", "p", Dialect.SQLITE) is None

    def test_apply_guard_mssql_separate_batch(self):
        assert apply_guard("DROP X;", "CREATE X", Dialect.MSSQL) == "DROP X;\nGO\nCREATE X"

    def test_apply_guard_other(self):
        assert apply_guard("DROP X;", "CREATE X", Dialect.SQLITE) == "DROP X;\nCREATE X"


class TestTransactionsAndBatches:
    """Tests for transaction wrappers and executable batches."""

    def test_wrappers(self):
        assert transaction_wrappers(Dialect.MSSQL) == ("BEGIN TRANSACTION;", "COMMIT TRANSACTION;")
        assert transaction_wrappers(Dialect.POSTGRESQL) == ("BEGIN;", "COMMIT;")

    def test_mssql_batches(self):
        assert executable_batches("SELECT 1\nGO\nSELECT 2", Dialect.MSSQL) == ["SELECT 1", "SELECT 2"]

    def test_sqlite_statements(self):
        assert executable_batches("SELECT 1; SELECT 2;", Dialect.SQLITE) == ["SELECT 1;", "SELECT 2;"]

    def test_postgresql_whole_text(self):
        assert executable_batches("  SELECT 1; SELECT 2;\n", Dialect.POSTGRESQL) == ["SELECT 1; SELECT 2;"]

    def test_empty_text(self):
        assert executable_batches("   ", Dialect.POSTGRESQL) == []


class TestVerificationQueries:
    """Pre-flight server query and post-deployment table count."""

    def test_server_info_per_dialect(self):
        assert "@@VERSION" in server_info_query(Dialect.MSSQL)
        assert "version()" in server_info_query(Dialect.POSTGRESQL)
        assert "sqlite_version()" in server_info_query(Dialect.SQLITE)

    def test_postgresql_count_skips_catalogs(self):
        assert "pg_catalog" in table_count_query(Dialect.POSTGRESQL)

    def test_sqlite_count_runs(self, sqlite_engine):
        with sqlite_engine.begin() as conn:
            conn.exec_driver_sql("CREATE TABLE counted (id INTEGER)")
            count = conn.exec_driver_sql(table_count_query(Dialect.SQLITE)).scalar()
        assert count == 1
