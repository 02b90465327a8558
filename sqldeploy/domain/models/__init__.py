"""Domain models: phases, operations, plans, descriptors, reports, artifacts."""

from sqldeploy.domain.models.phases import PHASES, PhaseDefinition, get_phase
from sqldeploy.domain.models.operation import (
    DeploymentPlan,
    EnhancementRecord,
    Operation,
    ScriptEnhancementSkipped,
    SourceKind,
)
from sqldeploy.domain.models.descriptors import (
    ColumnAction,
    ColumnChange,
    ColumnDescriptor,
    ConstraintDescriptor,
    ConstraintType,
    DescriptorFeed,
    IndexDescriptor,
    TableDescriptor,
)
from sqldeploy.domain.models.validation import (
    OverallResult,
    Severity,
    ValidationIssue,
    ValidationReport,
)
from sqldeploy.domain.models.artifacts import (
    ArtifactHeader,
    CompiledDeployment,
    HistoryEntry,
)

__all__ = [
    "PHASES",
    "PhaseDefinition",
    "get_phase",
    "DeploymentPlan",
    "EnhancementRecord",
    "Operation",
    "ScriptEnhancementSkipped",
    "SourceKind",
    "ColumnAction",
    "ColumnChange",
    "ColumnDescriptor",
    "ConstraintDescriptor",
    "ConstraintType",
    "DescriptorFeed",
    "IndexDescriptor",
    "TableDescriptor",
    "OverallResult",
    "Severity",
    "ValidationIssue",
    "ValidationReport",
    "ArtifactHeader",
    "CompiledDeployment",
    "HistoryEntry",
]
