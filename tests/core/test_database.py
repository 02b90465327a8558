"""Tests for deployment engine construction."""

from sqlalchemy.pool import StaticPool

from sqldeploy.core.database import create_deployment_engine, probe_connection


class TestCreateDeploymentEngine:
    """Tests for create_deployment_engine."""

    def test_memory_sqlite_uses_static_pool(self):
        engine = create_deployment_engine("sqlite://")
        try:
            assert isinstance(engine.pool, StaticPool)
        finally:
            engine.dispose()

    def test_ddl_rolls_back(self, sqlite_engine, list_tables):
        with sqlite_engine.connect() as conn:
            transaction = conn.begin()
            conn.exec_driver_sql("CREATE TABLE scratch (id INTEGER)")
            transaction.rollback()

        assert list_tables(sqlite_engine) == []

    def test_ddl_commits(self, sqlite_engine, list_tables):
        with sqlite_engine.connect() as conn:
            with conn.begin():
                conn.exec_driver_sql("CREATE TABLE kept (id INTEGER)")

        assert list_tables(sqlite_engine) == ["kept"]

    def test_file_database(self, tmp_path, list_tables):
        engine = create_deployment_engine(f"sqlite:///{tmp_path / 'target.db'}")
        try:
            with engine.begin() as conn:
                conn.exec_driver_sql("CREATE TABLE t (id INTEGER)")
            assert list_tables(engine) == ["t"]
        finally:
            engine.dispose()


class TestProbeConnection:
    """Tests for the pre-flight connectivity check."""

    def test_returns_first_row(self, sqlite_engine):
        assert probe_connection(sqlite_engine) == (1,)
