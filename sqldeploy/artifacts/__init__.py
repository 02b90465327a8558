"""Compiled deployment artifacts: file format and append-only store."""

from sqldeploy.artifacts.artifact_store import ArtifactStore, ReversalOutcome
from sqldeploy.artifacts.renderer import parse_artifact, render_artifact

__all__ = ["ArtifactStore", "ReversalOutcome", "parse_artifact", "render_artifact"]
