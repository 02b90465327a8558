"""Compiled deployment models.

CompiledDeployment is the immutable record of exactly what a committed run
executed. ArtifactHeader and HistoryEntry describe the on-disk header and
the summaries returned by history(); they validate data read back from
files, so they are pydantic models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from sqldeploy.domain.models.operation import Operation

ARTIFACT_FORMAT = "sqldeploy.compiled/v1"


@dataclass(frozen=True)
class CompiledDeployment:
    """Versioned record of one committed deployment."""
    version: str
    sequence: int
    generated_at: datetime
    source_descriptor_version: Optional[str]
    dialect: str
    operations: Tuple[Operation, ...]
    change_summary: Dict[str, int] = field(default_factory=dict)

    @property
    def is_additive(self) -> bool:
        """True when every operation only adds objects or data."""
        return all(op.additive for op in self.operations)


class ArtifactHeader(BaseModel):
    """Metadata block at the top of a compiled deployment file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    format: str = Field(ARTIFACT_FORMAT, description="Artifact format identifier")
    version: str = Field(..., min_length=1, description="Deployment version string")
    sequence: int = Field(..., ge=1, description="Position in the append-only history")
    generated_at: datetime = Field(..., description="UTC commit timestamp")
    source_descriptor_version: Optional[str] = Field(None, description="Descriptor feed version")
    dialect: str = Field(..., description="SQL dialect of the statements")
    operation_count: int = Field(..., ge=0, description="Number of recorded operations")
    change_summary: Dict[str, int] = Field(default_factory=dict, description="Counts by kind")


class HistoryEntry(BaseModel):
    """Summary of one past deployment, as listed by history()."""

    model_config = ConfigDict(frozen=True)

    version: str
    sequence: int
    generated_at: datetime
    source_descriptor_version: Optional[str] = None
    change_summary: Dict[str, int] = Field(default_factory=dict)
    path: str = Field(..., description="Artifact file path")

    @property
    def operation_count(self) -> int:
        return self.change_summary.get("total", 0)
