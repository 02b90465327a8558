"""Deployment execution: run state machine, restore points and the executor."""

from sqldeploy.execution.deployment_run import DeploymentRun, OperationResult, RunState
from sqldeploy.execution.executor import DeploymentExecutor
from sqldeploy.execution.restore_points import (
    NullRestorePointProvider,
    RestorePoint,
    SqliteFileRestorePointProvider,
)

__all__ = [
    "DeploymentRun",
    "OperationResult",
    "RunState",
    "DeploymentExecutor",
    "NullRestorePointProvider",
    "RestorePoint",
    "SqliteFileRestorePointProvider",
]
