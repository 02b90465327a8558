"""
Deployment orchestrator.

Runs the full sequence for one invocation:
1. Load the descriptor feed (optional) and the script repository
2. Build the ordered plan
3. Enhance repository scripts for idempotency
4. Classify risk into a ValidationReport
5. Gate on the report and the approval signal
6. Execute in one transaction and record the compiled deployment

Every collaborator is built from Settings per call; the orchestrator keeps
no state between invocations other than an injected engine.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from sqlalchemy.engine import Engine

from sqldeploy.artifacts.artifact_store import ArtifactStore, ReversalOutcome
from sqldeploy.core.config import Settings
from sqldeploy.core.database import create_deployment_engine
from sqldeploy.core.environment import Environment
from sqldeploy.core.errors import RepositoryLoadError
from sqldeploy.core.logging import LogContext
from sqldeploy.domain.models.artifacts import HistoryEntry
from sqldeploy.domain.models.descriptors import DescriptorFeed
from sqldeploy.domain.models.operation import DeploymentPlan
from sqldeploy.domain.models.validation import ValidationReport
from sqldeploy.domain.services.descriptor_loader import DescriptorFeedLoader
from sqldeploy.domain.services.idempotency_enhancer import IdempotencyEnhancer
from sqldeploy.domain.services.plan_builder import DeploymentPlanBuilder
from sqldeploy.domain.services.risk_classifier import RiskClassifier, TableMetadata
from sqldeploy.domain.services.script_loader import ScriptRepositoryLoader
from sqldeploy.execution.deployment_run import DeploymentRun
from sqldeploy.execution.executor import DeploymentExecutor
from sqldeploy.execution.restore_points import provider_for

logger = logging.getLogger(__name__)

BYPASS_APPROVER = "policy:bypass"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class PreparedPlan:
    """A built, enhanced and (optionally) classified plan."""
    plan: DeploymentPlan
    load_errors: List[RepositoryLoadError] = field(default_factory=list)
    ignored_folders: List[str] = field(default_factory=list)
    enhanced: int = 0
    report: Optional[ValidationReport] = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class DeploymentOrchestrator:
    """Facade over loading, planning, validation, execution and history."""

    def __init__(self, settings: Settings, engine: Optional[Engine] = None):
        self.settings = settings
        self._engine = engine
        self.store = ArtifactStore(settings.artifacts_path)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def load_feed(self) -> Optional[DescriptorFeed]:
        path = self.settings.descriptors_path
        if not path.exists():
            logger.info(f"No descriptor feed at {path}; planning repository scripts only")
            return None
        return DescriptorFeedLoader().load(path)

    def plan(self) -> PreparedPlan:
        """
        Build and enhance the plan.

        Raises:
            DescriptorFeedError: feed unreadable or invalid
            PlanOrderingViolation: a script references a later-phase object
        """
        feed = self.load_feed()
        loaded = ScriptRepositoryLoader(
            self.settings.scripts_path, max_workers=self.settings.max_workers
        ).load()

        latest = self.store.latest()
        last_deployed = latest.source_descriptor_version if latest else None

        plan = DeploymentPlanBuilder(self.settings.dialect).build(feed, loaded.scripts, last_deployed)
        summary = IdempotencyEnhancer(self.settings.dialect).enhance_plan(plan)

        return PreparedPlan(
            plan=summary.plan,
            load_errors=list(loaded.errors),
            ignored_folders=list(loaded.ignored_folders),
            enhanced=summary.enhanced,
        )

    def validate(self, metadata: Optional[TableMetadata] = None) -> PreparedPlan:
        """Build the plan and attach its ValidationReport."""
        prepared = self.plan()
        metadata = metadata or TableMetadata(default_row_count=self.settings.default_row_count)
        classifier = RiskClassifier(max_workers=self.settings.max_workers)
        prepared.report = classifier.classify(prepared.plan, metadata)
        return prepared

    # -------------------------------------------------------------------------
    # Deployment
    # -------------------------------------------------------------------------

    def deploy(
        self,
        approve: bool = False,
        approved_by: str = "operator",
        metadata: Optional[TableMetadata] = None,
    ) -> DeploymentRun:
        """
        Validate, gate and execute the plan.

        Args:
            approve: Explicit approval signal for WARNINGS or approval phases
            approved_by: Recorded on the run when approve is given
            metadata: Optional row counts for the classifier

        Returns:
            The run: COMMITTED with run.compiled set, or DISCARDED when the
            plan is empty

        Raises:
            ValidationBlocked: report is BLOCKED; no connection is opened
            ApprovalRequired: approval needed and not given
            ExecutionFailed: an operation failed; nothing was recorded
        """
        prepared = self.validate(metadata)
        run = DeploymentRun(plan=prepared.plan)

        with LogContext(run_id=run.run_id):
            run.validated(prepared.report)

            if run.needs_approval:
                if approve:
                    run.approve(approved_by)
                elif self.settings.bypass_approval and Environment.is_development():
                    logger.warning("SQLDEPLOY_BYPASS_APPROVAL set in development; approving by policy")
                    run.approve(BYPASS_APPROVER)
            run.require_approved()

            if prepared.plan.is_empty:
                logger.info("Nothing to deploy: plan is empty")
                run.discard()
                return run

            latest = self.store.latest()
            preceding_version = latest.version if latest else None

            engine = self._engine or create_deployment_engine(self.settings.require_database_url())
            try:
                executor = DeploymentExecutor(
                    engine,
                    self.settings.dialect,
                    restore_provider=provider_for(engine, self.settings.restore_dir),
                    is_production=Environment.is_production(),
                )
                executor.execute(run, preceding_version)
            finally:
                if self._engine is None:
                    engine.dispose()

            run.compiled = self.store.record(
                prepared.plan,
                list(prepared.plan.operations),
                label=self.settings.version_label,
            )
            with LogContext(version=run.compiled.version):
                logger.info(f"Deployment {run.compiled.version} committed ({len(prepared.plan)} operations)")
        return run

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def rollback_to_previous(self) -> ReversalOutcome:
        return self.store.rollback_to_previous()

    def restore_from(self, version: str) -> ReversalOutcome:
        return self.store.restore_from(version)

    def history(self) -> Iterator[HistoryEntry]:
        return self.store.history()
