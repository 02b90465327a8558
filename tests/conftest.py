"""
Shared pytest fixtures for all tests.

Provides environment isolation, an in-memory SQLite target and helpers for
building script repositories and settings under tmp_path.
"""

from pathlib import Path
from typing import Callable

import pytest

from sqldeploy.core.config import Settings
from sqldeploy.core.database import create_deployment_engine


# =============================================================================
# ENVIRONMENT FIXTURES
# =============================================================================

_ENV_VARS = (
    "DATABASE_URL",
    "ENVIRONMENT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "SQLDEPLOY_DIALECT",
    "SQLDEPLOY_SCRIPTS_PATH",
    "SQLDEPLOY_DESCRIPTORS_PATH",
    "SQLDEPLOY_ARTIFACTS_PATH",
    "SQLDEPLOY_RESTORE_DIR",
    "SQLDEPLOY_MAX_WORKERS",
    "SQLDEPLOY_DEFAULT_ROW_COUNT",
    "SQLDEPLOY_VERSION_LABEL",
    "SQLDEPLOY_BYPASS_APPROVAL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove sqldeploy variables a developer's shell or .env may carry."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def sqlite_engine():
    """
    In-memory SQLite target.

    create_deployment_engine gives it a StaticPool (one shared connection)
    and transactional DDL, so a rolled-back run leaves no tables behind.
    """
    engine = create_deployment_engine("sqlite://")
    yield engine
    engine.dispose()


def table_names(engine) -> list:
    with engine.connect() as conn:
        rows = conn.exec_driver_sql(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
    return [r[0] for r in rows]


@pytest.fixture
def list_tables() -> Callable:
    return table_names


# =============================================================================
# REPOSITORY / SETTINGS FIXTURES
# =============================================================================

@pytest.fixture
def script_repo(tmp_path) -> Path:
    root = tmp_path / "sql"
    root.mkdir()
    return root


@pytest.fixture
def write_script(script_repo) -> Callable[[str, str, str], Path]:
    """Write <repo>/<folder>/<name> and return its path."""

    def _write(folder: str, name: str, text: str) -> Path:
        directory = script_repo / folder
        directory.mkdir(exist_ok=True)
        path = directory / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_settings(tmp_path, script_repo) -> Callable[..., Settings]:
    """Settings pointing every path into tmp_path; keyword overrides win."""

    def _make(**overrides) -> Settings:
        values = dict(
            database_url="sqlite://",
            dialect="sqlite",
            scripts_path=script_repo,
            descriptors_path=tmp_path / "schema" / "descriptors.yaml",
            artifacts_path=tmp_path / "deployments",
            restore_dir=tmp_path / "restore",
            max_workers=2,
            default_row_count=100_000,
            version_label=None,
            bypass_approval=False,
            log_level="INFO",
            log_format="text",
        )
        values.update(overrides)
        return Settings(**values)

    return _make
