"""
Risk classifier / validator.

classify(plan, metadata) -> ValidationReport

Each operation's rendered (post-enhancement) text is matched against the
rule tiers in order. The first tier with a qualifying match decides the
operation's severity; only that tier's matches become issues. An operation
no rule recognises contributes no issue.

Pure and deterministic: per-operation matching may fan out over a thread
pool, but results are re-joined in plan order and depend only on the plan,
the rule set and the table metadata.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from sqldeploy.domain.models.operation import DeploymentPlan, Operation
from sqldeploy.domain.models.validation import Severity, ValidationIssue, ValidationReport
from sqldeploy.domain.services.risk_rules import INDEX_TARGET, RuleContext, RuleSet, default_rule_set
from sqldeploy.domain.sql.lexer import code_text, unquote_last

logger = logging.getLogger(__name__)

# Baseline throughput: ten operations per minute
SECONDS_PER_OPERATION = 6
# Rows rewritten/scanned per second by table-touching changes
ROWS_PER_SECOND = 50_000
INDEX_BYTES_PER_ROW = 32
COLUMN_BYTES_PER_ROW = 16
TABLE_EXTENT_BYTES = 64 * 1024

# Half an hour or more suggests a maintenance window
LONG_DEPLOYMENT_SECONDS = 30 * 60

_TARGET_TABLE_RE = re.compile(
    r"\b(?:ALTER\s+TABLE|TRUNCATE\s+TABLE|DROP\s+TABLE)\s+(?P<table>\S+)",
    re.IGNORECASE,
)
_INDEX_RE = re.compile(INDEX_TARGET, re.IGNORECASE)
_COLUMN_ADD_RE = re.compile(r"\bALTER\s+TABLE\s+\S+\s+ADD\s+(?!CONSTRAINT\b)", re.IGNORECASE)
_CREATE_TABLE_RE = re.compile(r"\bCREATE\s+TABLE\b", re.IGNORECASE)


@dataclass
class TableMetadata:
    """Caller-supplied row counts per table (name matching is case-insensitive)."""
    row_counts: Dict[str, int] = field(default_factory=dict)
    default_row_count: int = 100_000

    def rows(self, table: str) -> int:
        counts = {k.lower(): v for k, v in self.row_counts.items()}
        return counts.get(unquote_last(table), self.default_row_count)

    @classmethod
    def from_counts(cls, counts: Dict[str, int], default_row_count: int = 100_000) -> "TableMetadata":
        return cls(
            row_counts={k.lower(): v for k, v in counts.items()},
            default_row_count=default_row_count,
        )


@dataclass(frozen=True)
class OperationClassification:
    """Severity and issues for one operation."""
    severity: Optional[Severity]
    issues: Tuple[ValidationIssue, ...]
    duration_seconds: int
    storage_bytes: int


class RiskClassifier:
    """Classifies plans against an explicit rule set."""

    def __init__(self, rules: Optional[RuleSet] = None, max_workers: int = 4):
        self.rules = rules if rules is not None else default_rule_set()
        self.max_workers = max_workers

    def classify(self, plan: DeploymentPlan, metadata: Optional[TableMetadata] = None) -> ValidationReport:
        """
        Classify every operation of a plan.

        Args:
            plan: Enhanced deployment plan
            metadata: Optional row counts; absent tables use the default

        Returns:
            ValidationReport with issues in plan order
        """
        metadata = metadata or TableMetadata()
        context = RuleContext(created_objects=frozenset(plan.created_objects()))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(lambda op: self.classify_operation(op, context, metadata), plan.operations))

        issues: List[ValidationIssue] = []
        duration = 0
        storage = 0
        for result in results:
            issues.extend(result.issues)
            duration += result.duration_seconds
            storage += result.storage_bytes

        report = ValidationReport(
            issues=tuple(issues),
            operation_count=len(plan),
            estimated_duration_seconds=duration,
            estimated_storage_bytes=storage,
            approval_phases=tuple(plan.approval_phases),
        )
        report = _with_recommendations(report)

        logger.info(
            f"Validation: {report.overall_result.value} "
            f"({report.counts['error']} errors, {report.counts['warning']} warnings, "
            f"{report.counts['info']} info) over {report.operation_count} operations"
        )
        return report

    def classify_operation(
        self,
        operation: Operation,
        context: RuleContext,
        metadata: TableMetadata,
    ) -> OperationClassification:
        """Apply the rule tiers to one operation."""
        text = code_text(operation.statement_text)

        severity: Optional[Severity] = None
        issues: List[ValidationIssue] = []
        for tier in self.rules.tiers():
            for rule in tier:
                for _ in rule.find(text, context):
                    issues.append(ValidationIssue(
                        severity=rule.severity,
                        category=rule.category,
                        description=f"{rule.description} ({operation.object_name})",
                        recommendation=rule.recommendation,
                        related_operation=operation,
                    ))
            if issues:
                severity = issues[0].severity
                break

        duration, storage = _estimate(text, severity, context, metadata)
        return OperationClassification(
            severity=severity,
            issues=tuple(issues),
            duration_seconds=duration,
            storage_bytes=storage,
        )


def _estimate(
    text: str,
    severity: Optional[Severity],
    context: RuleContext,
    metadata: TableMetadata,
) -> Tuple[int, int]:
    duration = SECONDS_PER_OPERATION
    storage = 0

    index = _INDEX_RE.search(text)
    target = index or _TARGET_TABLE_RE.search(text)
    table = target.group("table") if target else None
    existing_rows = metadata.rows(table) if table and context.is_existing(table) else 0

    if severity in (Severity.WARNING, Severity.ERROR) and existing_rows:
        duration += -(-existing_rows // ROWS_PER_SECOND)

    if _CREATE_TABLE_RE.search(text):
        storage += TABLE_EXTENT_BYTES
    if index:
        storage += existing_rows * INDEX_BYTES_PER_ROW
    elif _COLUMN_ADD_RE.search(text):
        storage += existing_rows * COLUMN_BYTES_PER_ROW

    return duration, storage


def _with_recommendations(report: ValidationReport) -> ValidationReport:
    steps: List[str] = []
    if report.is_blocked:
        steps.append("Remove the blocking statements; destructive changes need a separate, manually reviewed change")
    elif report.warnings:
        steps.append("Review the warnings, then deploy with explicit approval (--approve)")
    else:
        steps.append("Plan is safe to deploy")

    if report.approval_phases:
        phases = ", ".join(str(p) for p in report.approval_phases)
        steps.append(f"Phases {phases} require approval regardless of their content")

    if report.estimated_duration_seconds >= LONG_DEPLOYMENT_SECONDS:
        steps.append(f"Estimated {report.estimated_duration}: schedule a maintenance window")

    return replace(report, recommendations=tuple(steps))


def classify(
    plan: DeploymentPlan,
    metadata: Optional[TableMetadata] = None,
    rules: Optional[RuleSet] = None,
) -> ValidationReport:
    """Classify with the given (or default) rule set."""
    return RiskClassifier(rules).classify(plan, metadata)
