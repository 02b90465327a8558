"""
Restore points.

A restore point is captured before a deployment transaction opens. When a
run fails on a production target the executor asks the provider to restore
it, on top of the transaction rollback.

Providers:
- SqliteFileRestorePointProvider: hot copy through the sqlite3 backup API
- NullRestorePointProvider: snapshots are managed by the hosting platform
  (database snapshots, PITR); only the metadata is recorded here
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Union

from sqlalchemy.engine import Engine

from sqldeploy.core.errors import RestorePointError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestorePoint:
    """Pre-deployment snapshot metadata plus an opaque platform reference."""
    timestamp: datetime
    target_database: str
    preceding_version: Optional[str]
    reference: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "target_database": self.target_database,
            "preceding_version": self.preceding_version,
            "reference": self.reference,
        }


class RestorePointProvider(Protocol):
    """Captures and applies restore points for one kind of platform."""

    def capture(self, engine: Engine, preceding_version: Optional[str]) -> RestorePoint:
        ...

    def restore(self, engine: Engine, restore_point: RestorePoint) -> bool:
        """Return True when the target was restored."""
        ...


def _target_name(engine: Engine) -> str:
    return engine.url.database or engine.url.render_as_string(hide_password=True)


class NullRestorePointProvider:
    """Records restore point metadata only."""

    def capture(self, engine: Engine, preceding_version: Optional[str]) -> RestorePoint:
        point = RestorePoint(
            timestamp=datetime.now(timezone.utc),
            target_database=_target_name(engine),
            preceding_version=preceding_version,
        )
        logger.info(f"Restore point recorded for {point.target_database} (snapshots managed externally)")
        return point

    def restore(self, engine: Engine, restore_point: RestorePoint) -> bool:
        logger.warning(
            f"No platform restore available for {restore_point.target_database}; "
            f"restore the snapshot taken at {restore_point.timestamp.isoformat()} externally if needed"
        )
        return False


class SqliteFileRestorePointProvider:
    """Snapshots a SQLite target to a file with the online backup API."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def capture(self, engine: Engine, preceding_version: Optional[str]) -> RestorePoint:
        if engine.dialect.name != "sqlite":
            raise RestorePointError(f"SQLite restore points need a sqlite target, got {engine.dialect.name}")

        timestamp = datetime.now(timezone.utc)
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"restore_{timestamp.strftime('%Y%m%dT%H%M%S%f')}.sqlite"

        raw = engine.raw_connection()
        try:
            source = raw.driver_connection
            destination = sqlite3.connect(path)
            try:
                with destination:
                    source.backup(destination)
            finally:
                destination.close()
        except sqlite3.Error as e:
            raise RestorePointError(f"Could not snapshot {_target_name(engine)}: {e}")
        finally:
            raw.close()

        logger.info(f"Restore point captured: {path}")
        return RestorePoint(
            timestamp=timestamp,
            target_database=_target_name(engine),
            preceding_version=preceding_version,
            reference=str(path),
        )

    def restore(self, engine: Engine, restore_point: RestorePoint) -> bool:
        if not restore_point.reference or not Path(restore_point.reference).exists():
            raise RestorePointError(f"Restore point file missing: {restore_point.reference}")

        raw = engine.raw_connection()
        try:
            snapshot = sqlite3.connect(restore_point.reference)
            try:
                snapshot.backup(raw.driver_connection)
            finally:
                snapshot.close()
        except sqlite3.Error as e:
            raise RestorePointError(f"Could not restore {restore_point.target_database}: {e}")
        finally:
            raw.close()

        logger.warning(f"Target {restore_point.target_database} restored from {restore_point.reference}")
        return True


def provider_for(engine: Engine, restore_dir: Union[str, Path]) -> RestorePointProvider:
    """Pick the provider matching the target platform."""
    if engine.dialect.name == "sqlite":
        return SqliteFileRestorePointProvider(restore_dir)
    return NullRestorePointProvider()
