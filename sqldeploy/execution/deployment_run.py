"""
Deployment run state machine.

PLANNED -> VALIDATED -> BLOCKED (terminal)
                     -> AWAITING_APPROVAL -> APPROVED
                     -> APPROVED (SAFE report, no approval-required phase)
APPROVED -> EXECUTING -> COMMITTED | ROLLED_BACK

Any state before EXECUTING may move to DISCARDED (cancellation).
Pure module: no database access.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqldeploy.core.errors import ApprovalRequired, InvalidRunTransition, ValidationBlocked
from sqldeploy.domain.models.artifacts import CompiledDeployment
from sqldeploy.domain.models.operation import DeploymentPlan
from sqldeploy.domain.models.validation import OverallResult, ValidationReport
from sqldeploy.execution.restore_points import RestorePoint

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    PLANNED = "planned"
    VALIDATED = "validated"
    BLOCKED = "blocked"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    DISCARDED = "discarded"


RUN_VALID_TRANSITIONS: Dict[RunState, List[RunState]] = {
    RunState.PLANNED: [RunState.VALIDATED, RunState.DISCARDED],
    RunState.VALIDATED: [RunState.BLOCKED, RunState.AWAITING_APPROVAL, RunState.APPROVED, RunState.DISCARDED],
    RunState.AWAITING_APPROVAL: [RunState.APPROVED, RunState.DISCARDED],
    RunState.APPROVED: [RunState.EXECUTING, RunState.DISCARDED],
    RunState.EXECUTING: [RunState.COMMITTED, RunState.ROLLED_BACK],
    RunState.BLOCKED: [],  # Terminal
    RunState.COMMITTED: [],  # Terminal
    RunState.ROLLED_BACK: [],  # Terminal
    RunState.DISCARDED: [],  # Terminal
}


def validate_run_transition(current: RunState, target: RunState) -> bool:
    """
    Validate a run state transition.

    Raises:
        InvalidRunTransition: If the transition is not allowed
    """
    valid_targets = RUN_VALID_TRANSITIONS.get(current, [])
    if target not in valid_targets:
        raise InvalidRunTransition(
            f"Invalid run transition: {current.value} -> {target.value}. "
            f"Valid targets from {current.value}: {[t.value for t in valid_targets]}"
        )
    return True


@dataclass(frozen=True)
class OperationResult:
    """Outcome of applying one operation inside the deployment transaction."""
    index: int
    phase: int
    ordinal_within_phase: int
    object_name: str
    succeeded: bool
    batches_executed: int = 0
    elapsed_ms: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class PostDeploymentCheck:
    """What the target looked like once the deployment committed."""
    table_count_before: int
    table_count_after: Optional[int] = None
    missing_tables: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and not self.missing_tables

    def to_dict(self) -> Dict[str, object]:
        return {
            "passed": self.passed,
            "table_count_before": self.table_count_before,
            "table_count_after": self.table_count_after,
            "missing_tables": list(self.missing_tables),
            "error": self.error,
        }


@dataclass
class DeploymentRun:
    """One attempt to deploy a plan, from planning to its terminal state."""
    plan: DeploymentPlan
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: RunState = RunState.PLANNED
    report: Optional[ValidationReport] = None
    approved_by: Optional[str] = None
    restore_point: Optional[RestorePoint] = None
    server_version: Optional[str] = None
    post_deployment: Optional[PostDeploymentCheck] = None
    results: List[OperationResult] = field(default_factory=list)
    compiled: Optional[CompiledDeployment] = None
    failure: Optional[Exception] = None
    transitions: List[Tuple[RunState, datetime]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not RUN_VALID_TRANSITIONS[self.state]

    @property
    def needs_approval(self) -> bool:
        return self.state == RunState.AWAITING_APPROVAL

    def transition(self, target: RunState) -> None:
        validate_run_transition(self.state, target)
        logger.debug(f"Run {self.run_id}: {self.state.value} -> {target.value}")
        self.state = target
        self.transitions.append((target, datetime.now(timezone.utc)))

    def validated(self, report: ValidationReport) -> RunState:
        """
        Attach the validation report and move to the gate state.

        BLOCKED reports end the run. A SAFE report on a plan with no
        approval-required phase is approved automatically; anything else
        waits for approve().
        """
        self.transition(RunState.VALIDATED)
        self.report = report

        if report.overall_result == OverallResult.BLOCKED:
            self.transition(RunState.BLOCKED)
        elif report.overall_result == OverallResult.SAFE and not self.plan.requires_approval:
            self.transition(RunState.APPROVED)
            self.approved_by = "auto:safe"
        else:
            self.transition(RunState.AWAITING_APPROVAL)
        return self.state

    def approve(self, approved_by: str = "operator") -> None:
        """Give the explicit approval signal."""
        if self.state == RunState.BLOCKED:
            raise ValidationBlocked("Run is BLOCKED by validation; approval cannot override it")
        if self.state == RunState.APPROVED:
            return
        self.transition(RunState.APPROVED)
        self.approved_by = approved_by
        logger.info(f"Run {self.run_id} approved by {approved_by}")

    def require_approved(self) -> None:
        """Raise unless the run may start executing."""
        if self.state == RunState.BLOCKED:
            raise ValidationBlocked(
                f"Deployment blocked: {len(self.report.errors) if self.report else 0} blocking issue(s)"
            )
        if self.state in (RunState.PLANNED, RunState.VALIDATED, RunState.AWAITING_APPROVAL):
            reasons = []
            if self.report is not None and self.report.overall_result == OverallResult.WARNINGS:
                reasons.append(f"{len(self.report.warnings)} warning(s)")
            if self.plan.requires_approval:
                reasons.append(f"approval-required phases {self.plan.approval_phases}")
            detail = ", ".join(reasons) or "run not validated"
            raise ApprovalRequired(f"Deployment needs explicit approval ({detail})")
        if self.state != RunState.APPROVED:
            raise InvalidRunTransition(f"Run {self.run_id} cannot execute from state {self.state.value}")

    def discard(self) -> None:
        """Cancel a run that has not started executing."""
        self.transition(RunState.DISCARDED)
