"""
Transactional deployment executor.

Runs an approved DeploymentRun against the target:
1. pre-flight: read the server version and count the existing tables
2. capture a restore point
3. open one transaction and apply every operation in plan order
4. commit, or roll back on the first failure (the commit itself included)
5. post-deployment check: count tables again and confirm every table the
   plan creates is present

A failed run ends ROLLED_BACK; on production targets the restore point is
applied as well. There are no retries: the failing operation is reported
with its phase, object name and statement text.
"""

import logging
import time
from typing import List, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from sqldeploy.core.database import probe_connection
from sqldeploy.core.errors import ExecutionFailed, OperationContext, RestorePointError
from sqldeploy.domain.models.operation import DeploymentPlan, Operation
from sqldeploy.domain.sql.dialects import Dialect, executable_batches, server_info_query, table_count_query
from sqldeploy.domain.sql.lexer import LexError, created_objects
from sqldeploy.execution.deployment_run import (
    DeploymentRun,
    OperationResult,
    PostDeploymentCheck,
    RunState,
)
from sqldeploy.execution.restore_points import NullRestorePointProvider, RestorePointProvider

logger = logging.getLogger(__name__)


def _driver_message(error: Exception) -> str:
    original = getattr(error, "orig", None)
    return str(original) if original is not None else str(error)


def planned_tables(plan: DeploymentPlan, dialect: Dialect) -> List[Tuple[Optional[str], str]]:
    """(schema, table) for every permanent table the plan creates, in plan order."""
    tables: List[Tuple[Optional[str], str]] = []
    for op in plan.operations:
        for clause in created_objects(op.statement_text):
            if clause.kind != "TABLE" or clause.temporary:
                continue
            schema = clause.name_parts[-2] if len(clause.name_parts) > 1 else None
            if dialect == Dialect.SQLITE:
                schema = None
            entry = (schema, clause.name)
            if entry not in tables:
                tables.append(entry)
    return tables


class DeploymentExecutor:
    """Applies approved plans in a single transaction."""

    def __init__(
        self,
        engine: Engine,
        dialect: "Dialect | str",
        restore_provider: Optional[RestorePointProvider] = None,
        is_production: bool = False,
    ):
        self.engine = engine
        self.dialect = Dialect.parse(dialect)
        self.restore_provider = restore_provider or NullRestorePointProvider()
        self.is_production = is_production

    def execute(self, run: DeploymentRun, preceding_version: Optional[str] = None) -> DeploymentRun:
        """
        Execute an approved run.

        Args:
            run: Run in APPROVED state
            preceding_version: Latest compiled deployment version, recorded
                on the restore point

        Returns:
            The run, COMMITTED, with per-operation results and its
            post-deployment check

        Raises:
            ValidationBlocked: run is BLOCKED (no connection is opened)
            ApprovalRequired: run still awaits approval
            ExecutionFailed: an operation or the commit failed; the run is ROLLED_BACK
        """
        run.require_approved()
        run.transition(RunState.EXECUTING)
        plan = run.plan
        total = len(plan)
        logger.info(f"Run {run.run_id}: executing {total} operations ({self.dialect.value})")

        try:
            server = probe_connection(self.engine, server_info_query(self.dialect))
            run.server_version = str(server[0]) if server else None
            tables_before = self._count_tables()
            run.restore_point = self.restore_provider.capture(self.engine, preceding_version)
        except (SQLAlchemyError, RestorePointError) as e:
            run.transition(RunState.ROLLED_BACK)
            failure = ExecutionFailed(f"Pre-flight failed before any operation ran: {_driver_message(e)}")
            run.failure = failure
            raise failure
        logger.info(f"Run {run.run_id}: target {run.server_version}, {tables_before} tables")

        with self.engine.connect() as conn:
            transaction = conn.begin()
            for index, operation in enumerate(plan.operations, start=1):
                result = self._apply(conn, index, operation)
                run.results.append(result)
                if result.succeeded:
                    continue

                transaction.rollback()
                self._fail(
                    run,
                    f"Operation {index} of {total} failed: {result.error}",
                    operation,
                    index,
                )

            try:
                transaction.commit()
            except SQLAlchemyError as e:
                # Deferred constraints are checked here; the driver may still
                # hold the open transaction
                conn.connection.dbapi_connection.rollback()
                last = plan.operations[-1] if total else None
                self._fail(run, f"Commit failed after {total} operations: {_driver_message(e)}", last, None)

        run.transition(RunState.COMMITTED)
        logger.info(f"Run {run.run_id}: committed {total} operations")
        run.post_deployment = self.verify(plan, tables_before)
        return run

    def verify(self, plan: DeploymentPlan, tables_before: int) -> PostDeploymentCheck:
        """
        Check the committed target: table count and every planned table present.

        The commit already stands, so a failing check is recorded and logged
        rather than raised.
        """
        try:
            tables_after = self._count_tables()
            with self.engine.connect() as conn:
                inspector = inspect(conn)
                missing = tuple(
                    f"{schema}.{name}" if schema else name
                    for schema, name in planned_tables(plan, self.dialect)
                    if not inspector.has_table(name, schema=schema)
                )
        except SQLAlchemyError as e:
            check = PostDeploymentCheck(table_count_before=tables_before, error=_driver_message(e))
            logger.error(f"Post-deployment check could not run: {check.error}")
            return check

        check = PostDeploymentCheck(
            table_count_before=tables_before,
            table_count_after=tables_after,
            missing_tables=missing,
        )
        if check.passed:
            logger.info(f"Post-deployment check passed: {tables_before} -> {tables_after} tables")
        else:
            logger.error(f"Post-deployment check failed: planned tables missing: {', '.join(missing)}")
        return check

    def _count_tables(self) -> int:
        with self.engine.connect() as conn:
            return int(conn.exec_driver_sql(
                table_count_query(self.dialect), execution_options={"no_parameters": True}
            ).scalar())

    def _fail(
        self,
        run: DeploymentRun,
        message: str,
        operation: Optional[Operation],
        index: Optional[int],
    ) -> None:
        run.transition(RunState.ROLLED_BACK)
        restored = self._restore_if_production(run)
        context = None
        if operation is not None:
            context = OperationContext(operation.phase, operation.object_name, operation.statement_text)
        failure = ExecutionFailed(message, context=context, operation_index=index, restored=restored)
        run.failure = failure
        where = f"operation {index} of {len(run.plan)}" if index is not None else "commit"
        logger.error(f"Run {run.run_id}: rolled back after {where}")
        raise failure

    def _apply(self, conn: Connection, index: int, operation: Operation) -> OperationResult:
        started = time.perf_counter()
        executed = 0
        try:
            batches: List[str] = executable_batches(operation.statement_text, self.dialect)
            for batch in batches:
                conn.exec_driver_sql(batch, execution_options={"no_parameters": True})
                executed += 1
        except (SQLAlchemyError, LexError) as e:
            return OperationResult(
                index=index,
                phase=operation.phase,
                ordinal_within_phase=operation.ordinal_within_phase,
                object_name=operation.object_name,
                succeeded=False,
                batches_executed=executed,
                elapsed_ms=(time.perf_counter() - started) * 1000,
                error=_driver_message(e),
            )

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"  [{operation.phase:02d}.{operation.ordinal_within_phase:03d}] {operation.object_name} "
            f"({executed} batches, {elapsed_ms:.0f}ms)"
        )
        return OperationResult(
            index=index,
            phase=operation.phase,
            ordinal_within_phase=operation.ordinal_within_phase,
            object_name=operation.object_name,
            succeeded=True,
            batches_executed=executed,
            elapsed_ms=elapsed_ms,
        )

    def _restore_if_production(self, run: DeploymentRun) -> bool:
        if not self.is_production or run.restore_point is None:
            return False
        try:
            return self.restore_provider.restore(self.engine, run.restore_point)
        except RestorePointError as e:
            # The transaction rollback already stands; report the restore failure
            logger.error(f"Run {run.run_id}: platform restore failed: {e}")
            return False
