"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from sqldeploy.core.config import (
    DEFAULT_ARTIFACTS_PATH,
    DEFAULT_DIALECT,
    DEFAULT_MAX_WORKERS,
    DEFAULT_ROW_COUNT,
    Settings,
    dialect_from_url,
    get_settings,
)
from sqldeploy.core.errors import ConfigurationError


class TestDialectFromUrl:
    """Tests for dialect inference from SQLAlchemy URLs."""

    @pytest.mark.parametrize("url,expected", [
        ("mssql+pyodbc://u:p@server/db?driver=ODBC+Driver+18", "mssql"),
        ("postgresql+psycopg://u:p@localhost/app", "postgresql"),
        ("postgres://u:p@localhost/app", "postgresql"),
        ("sqlite:///deploy.db", "sqlite"),
        ("sqlite://", "sqlite"),
    ])
    def test_known_backends(self, url, expected):
        assert dialect_from_url(url) == expected

    def test_unknown_backend(self):
        assert dialect_from_url("oracle://u:p@host/db") is None

    def test_missing_url(self):
        assert dialect_from_url(None) is None
        assert dialect_from_url("not a url") is None


class TestSettingsFromEnv:
    """Tests for Settings.from_env."""

    def test_defaults(self):
        settings = get_settings()

        assert settings.database_url is None
        assert settings.dialect == DEFAULT_DIALECT
        assert settings.artifacts_path == DEFAULT_ARTIFACTS_PATH
        assert settings.restore_dir == DEFAULT_ARTIFACTS_PATH / ".restore_points"
        assert settings.max_workers == DEFAULT_MAX_WORKERS
        assert settings.default_row_count == DEFAULT_ROW_COUNT
        assert settings.bypass_approval is False
        assert settings.version_label is None

    def test_dialect_inferred_from_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/app")
        assert Settings.from_env().dialect == "postgresql"

    def test_explicit_dialect_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/app")
        monkeypatch.setenv("SQLDEPLOY_DIALECT", "SQLite")
        assert Settings.from_env().dialect == "sqlite"

    def test_unsupported_dialect(self, monkeypatch):
        monkeypatch.setenv("SQLDEPLOY_DIALECT", "oracle")
        with pytest.raises(ConfigurationError, match="Unsupported SQLDEPLOY_DIALECT"):
            Settings.from_env()

    def test_paths_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SQLDEPLOY_SCRIPTS_PATH", str(tmp_path / "scripts"))
        monkeypatch.setenv("SQLDEPLOY_ARTIFACTS_PATH", str(tmp_path / "out"))

        settings = Settings.from_env()

        assert settings.scripts_path == tmp_path / "scripts"
        assert settings.artifacts_path == tmp_path / "out"
        assert settings.restore_dir == tmp_path / "out" / ".restore_points"

    def test_integer_parsing(self, monkeypatch):
        monkeypatch.setenv("SQLDEPLOY_MAX_WORKERS", "8")
        monkeypatch.setenv("SQLDEPLOY_DEFAULT_ROW_COUNT", "2500")

        settings = Settings.from_env()

        assert settings.max_workers == 8
        assert settings.default_row_count == 2500

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("SQLDEPLOY_MAX_WORKERS", "many")
        with pytest.raises(ConfigurationError, match="SQLDEPLOY_MAX_WORKERS"):
            Settings.from_env()

    def test_workers_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("SQLDEPLOY_MAX_WORKERS", "0")
        with pytest.raises(ConfigurationError):
            Settings.from_env()

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("YES", True), ("off", False), ("false", False),
    ])
    def test_bypass_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("SQLDEPLOY_BYPASS_APPROVAL", raw)
        assert Settings.from_env().bypass_approval is expected


class TestRequireDatabaseUrl:
    """Tests for require_database_url."""

    def test_missing_url_raises(self):
        with pytest.raises(ConfigurationError, match="DATABASE_URL not found"):
            get_settings().require_database_url()

    def test_returns_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        assert get_settings().require_database_url() == "sqlite://"
