"""Validation issues and reports.

INVARIANTS:
- overall_result == BLOCKED iff at least one ERROR issue exists
- overall_result == WARNINGS iff no ERROR and at least one WARNING issue
- otherwise SAFE
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqldeploy.domain.models.operation import Operation


class Severity(str, Enum):
    """Issue severity, ordered INFO < WARNING < ERROR."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


class OverallResult(str, Enum):
    """Aggregate verdict of a validation report."""
    SAFE = "safe"
    WARNINGS = "warnings"
    BLOCKED = "blocked"

    @property
    def exit_code(self) -> int:
        """CLI exit code: 0 safe, 1 warnings, 2 blocked."""
        return {OverallResult.SAFE: 0, OverallResult.WARNINGS: 1, OverallResult.BLOCKED: 2}[self]

    @classmethod
    def from_severity(cls, severity: Optional[Severity]) -> "OverallResult":
        if severity == Severity.ERROR:
            return cls.BLOCKED
        if severity == Severity.WARNING:
            return cls.WARNINGS
        return cls.SAFE


@dataclass(frozen=True)
class ValidationIssue:
    """One classified finding about one operation."""
    severity: Severity
    category: str
    description: str
    recommendation: str
    related_operation: Optional[Operation] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        op = self.related_operation
        return {
            "severity": self.severity.value,
            "category": self.category,
            "description": self.description,
            "recommendation": self.recommendation,
            "phase": op.phase if op else None,
            "ordinal": op.ordinal_within_phase if op else None,
            "object_name": op.object_name if op else None,
        }


@dataclass(frozen=True)
class ValidationReport:
    """Aggregate classification result for one plan."""
    issues: Tuple[ValidationIssue, ...]
    operation_count: int
    estimated_duration_seconds: int
    estimated_storage_bytes: int
    recommendations: Tuple[str, ...] = ()
    approval_phases: Tuple[int, ...] = ()

    @property
    def overall_result(self) -> OverallResult:
        highest: Optional[Severity] = None
        for issue in self.issues:
            if highest is None or issue.severity.rank > highest.rank:
                highest = issue.severity
        return OverallResult.from_severity(highest)

    @property
    def counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for issue in self.issues:
            counts[issue.severity.value] += 1
        return counts

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def is_blocked(self) -> bool:
        return self.overall_result == OverallResult.BLOCKED

    @property
    def estimated_duration(self) -> str:
        """Human form of the duration estimate ("3 minutes", "1h 20m")."""
        minutes = max(1, -(-self.estimated_duration_seconds // 60))
        if minutes < 60:
            return f"{minutes} minutes"
        return f"{minutes // 60}h {minutes % 60}m"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "overall_result": self.overall_result.value,
            "exit_code": self.overall_result.exit_code,
            "operation_count": self.operation_count,
            "counts": self.counts,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "estimated_duration": self.estimated_duration,
            "estimated_storage_bytes": self.estimated_storage_bytes,
            "approval_phases": list(self.approval_phases),
            "recommendations": list(self.recommendations),
            "issues": [i.to_dict() for i in self.issues],
        }
