"""
Database engine construction.

The deployment target is reached through one SQLAlchemy engine per run.
DATABASE_URL is resolved by sqldeploy.core.config (single resolution path).
"""

import logging
from typing import Any, Tuple

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def create_deployment_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the engine used for a deployment run.

    In-memory SQLite URLs share one connection (StaticPool) so the restore
    point, the transaction and any verification see the same database.

    Args:
        database_url: SQLAlchemy URL of the target
        echo: Echo SQL to the log

    Returns:
        Engine bound to the target
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url or database_url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(database_url, echo=echo)
        _enable_transactional_ddl(engine)
        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def _enable_transactional_ddl(engine: Engine) -> None:
    # pysqlite only opens transactions before DML; emit BEGIN ourselves so
    # CREATE/ALTER statements roll back with the rest of the deployment
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def probe_connection(engine: Engine, query: str = "SELECT 1") -> Tuple[Any, ...]:
    """
    Verify the target answers a query and return its first row.

    Raises the driver error unchanged when the target is unreachable.
    """
    with engine.connect() as conn:
        row = conn.execute(text(query)).first()
    logger.debug(f"Connectivity probe passed for {engine.url.render_as_string(hide_password=True)}")
    return tuple(row) if row is not None else ()
