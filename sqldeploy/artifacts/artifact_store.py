"""
Compiled deployment artifact store.

An append-only directory of deployment_<version>.sql files, one per
committed run. Files are created exclusively and never rewritten.

version = "<sequence:04d>-<label>", so file names sort in history order.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from sqldeploy.artifacts.renderer import parse_artifact, parse_header, render_artifact
from sqldeploy.core.errors import HistoryCorrupt, SqlDeployError, VersionNotFound
from sqldeploy.domain.models.artifacts import CompiledDeployment, HistoryEntry
from sqldeploy.domain.models.operation import DeploymentPlan, Operation

logger = logging.getLogger(__name__)

_FILE_RE = re.compile(r"^deployment_(?P<sequence>\d{4,})-(?P<label>.+)\.sql$")
_LABEL_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_label(label: Optional[str]) -> str:
    """File-name-safe version label ("Release 2.1/final" -> "Release-2.1-final")."""
    cleaned = _LABEL_UNSAFE_RE.sub("-", label or "").strip("-.")
    return cleaned or "deployment"


@dataclass(frozen=True)
class ReversalOutcome:
    """Reverse-intent plan for returning to an earlier version.

    Destructive reversal SQL is never generated: additive deployments need
    nothing (the objects they added are left in place) and everything else
    is listed as manual steps.
    """
    target_version: str
    reverted_versions: List[str] = field(default_factory=list)
    manual_steps: List[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.manual_steps

    @property
    def message(self) -> str:
        if not self.reverted_versions:
            return f"{self.target_version} is already the latest deployment; nothing to reverse"
        reverted = ", ".join(self.reverted_versions)
        if self.is_noop:
            return (
                f"Deployments {reverted} were additive only; schema is compatible with "
                f"{self.target_version}. No changes applied"
            )
        return (
            f"Reversing {reverted} needs {len(self.manual_steps)} manual step(s); "
            f"no destructive SQL was generated"
        )

    def to_dict(self) -> dict:
        return {
            "target_version": self.target_version,
            "reverted_versions": self.reverted_versions,
            "noop": self.is_noop,
            "manual_steps": self.manual_steps,
            "message": self.message,
        }


class ArtifactStore:
    """Reads and appends compiled deployments in one directory."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def record(
        self,
        plan: DeploymentPlan,
        executed: List[Operation],
        label: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> CompiledDeployment:
        """
        Append the executed operations as the next compiled deployment.

        Args:
            plan: Plan the run executed (descriptor version, dialect, summary)
            executed: Operations in executed order, with their executed text
            label: Version label; defaults to the descriptor version

        Returns:
            The CompiledDeployment that was written
        """
        sequence = self.next_sequence()
        version = f"{sequence:04d}-{sanitize_label(label or plan.source_descriptor_version)}"
        compiled = CompiledDeployment(
            version=version,
            sequence=sequence,
            generated_at=generated_at or datetime.now(timezone.utc),
            source_descriptor_version=plan.source_descriptor_version,
            dialect=plan.dialect,
            operations=tuple(executed),
            change_summary=plan.change_summary(),
        )

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(version)
        try:
            with open(path, "x", encoding="utf-8", newline="") as f:
                f.write(render_artifact(compiled))
        except FileExistsError:
            raise SqlDeployError(f"Compiled deployment already exists and is immutable: {path}")

        logger.info(f"Compiled deployment written: {path} ({len(executed)} operations)")
        return compiled

    def path_for(self, version: str) -> Path:
        return self.directory / f"deployment_{version}.sql"

    def next_sequence(self) -> int:
        sequences = [self._sequence_of(p) for p in self._files()]
        return max(sequences, default=0) + 1

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def history(self) -> Iterator[HistoryEntry]:
        """
        Lazily yield summaries, newest first.

        Raises:
            HistoryCorrupt: a file's header is malformed (raised when reached)
        """
        for path in reversed(self._files()):
            header = parse_header(self._read(path), path)
            yield HistoryEntry(
                version=header.version,
                sequence=header.sequence,
                generated_at=header.generated_at,
                source_descriptor_version=header.source_descriptor_version,
                change_summary=header.change_summary,
                path=str(path),
            )

    def latest(self) -> Optional[HistoryEntry]:
        return next(self.history(), None)

    def get(self, version: str) -> CompiledDeployment:
        """
        Load one compiled deployment.

        Raises:
            VersionNotFound: no file for version
            HistoryCorrupt: file is malformed
        """
        path = self.path_for(version)
        if not path.exists():
            raise VersionNotFound(version)
        compiled = parse_artifact(self._read(path), path)
        if compiled.version != version:
            raise HistoryCorrupt(f"File name says {version}, header says {compiled.version}", str(path))
        return compiled

    # -------------------------------------------------------------------------
    # Reversal
    # -------------------------------------------------------------------------

    def rollback_to_previous(self) -> ReversalOutcome:
        """Reverse the latest deployment, back to the one before it."""
        entries = self._versions()
        if not entries:
            raise VersionNotFound("latest (history is empty)")
        if len(entries) < 2:
            raise VersionNotFound(f"previous to {entries[-1]} (only one deployment recorded)")
        return self.restore_from(entries[-2])

    def restore_from(self, version: str) -> ReversalOutcome:
        """Reverse every deployment newer than version."""
        versions = self._versions()
        if version not in versions:
            raise VersionNotFound(version)

        newer = versions[versions.index(version) + 1:]
        steps: List[str] = []
        for newer_version in reversed(newer):
            compiled = self.get(newer_version)
            if compiled.is_additive:
                continue
            for op in reversed(compiled.operations):
                if op.additive:
                    continue
                hint = op.rollback_hint or (
                    f"-- Rollback: Manual intervention required for "
                    f"{op.object_type or 'operation'} {op.object_name}"
                )
                steps.append(f"{newer_version} phase {op.phase}: {hint}")

        outcome = ReversalOutcome(
            target_version=version,
            reverted_versions=list(reversed(newer)),
            manual_steps=steps,
        )
        logger.info(outcome.message)
        return outcome

    # -------------------------------------------------------------------------

    def _files(self) -> List[Path]:
        if not self.directory.is_dir():
            return []
        files = [p for p in self.directory.glob("deployment_*.sql") if _FILE_RE.match(p.name)]
        return sorted(files, key=lambda p: (self._sequence_of(p), p.name))

    def _versions(self) -> List[str]:
        """All versions, oldest first."""
        return [p.name[len("deployment_"):-len(".sql")] for p in self._files()]

    @staticmethod
    def _sequence_of(path: Path) -> int:
        return int(_FILE_RE.match(path.name).group("sequence"))

    @staticmethod
    def _read(path: Path) -> str:
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise HistoryCorrupt(f"Artifact is not valid UTF-8: {e.reason}", str(path))
