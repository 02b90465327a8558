"""
Error taxonomy for sqldeploy.

Fatal errors raised around a specific operation carry an OperationContext so
the message always names the phase, object and statement to remediate.
"""

from dataclasses import dataclass
from typing import Optional


# Statement text is truncated in messages beyond this many characters
MAX_STATEMENT_PREVIEW = 2000


@dataclass(frozen=True)
class OperationContext:
    """Where an error happened: phase, object name and statement text."""
    phase: int
    object_name: str
    statement_text: str

    def describe(self) -> str:
        statement = self.statement_text
        if len(statement) > MAX_STATEMENT_PREVIEW:
            statement = statement[:MAX_STATEMENT_PREVIEW] + "\n... (truncated)"
        return (
            f"phase={self.phase} object={self.object_name}\n"
            f"--- statement ---\n{statement}\n-----------------"
        )


class SqlDeployError(Exception):
    """Base error for all sqldeploy failures."""

    def __init__(self, message: str, context: Optional[OperationContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context is None:
            return self.message
        return f"{self.message}\n{self.context.describe()}"


class ConfigurationError(SqlDeployError):
    """Invalid or missing configuration."""
    pass


class DescriptorFeedError(SqlDeployError):
    """Schema descriptor feed could not be read or failed schema validation."""
    pass


class RepositoryLoadError(SqlDeployError):
    """A script file could not be read. Non-fatal: aggregated by the loader."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class PlanOrderingViolation(SqlDeployError):
    """A script references an object the plan only creates in a later phase."""

    def __init__(self, message: str, object_name: str, context: OperationContext):
        super().__init__(message, context)
        self.object_name = object_name


class ValidationBlocked(SqlDeployError):
    """Execution refused: the validation report is BLOCKED."""
    pass


class ApprovalRequired(SqlDeployError):
    """Execution refused: the run needs an explicit approval signal."""
    pass


class InvalidRunTransition(SqlDeployError):
    """A deployment run was asked to move to a state it cannot reach."""
    pass


class ExecutionFailed(SqlDeployError):
    """A statement failed; the transaction was rolled back."""

    def __init__(
        self,
        message: str,
        context: Optional[OperationContext] = None,
        operation_index: Optional[int] = None,
        restored: bool = False,
    ):
        super().__init__(message, context)
        self.operation_index = operation_index
        self.restored = restored


class RestorePointError(SqlDeployError):
    """The hosting platform could not capture or apply a restore point."""
    pass


class VersionNotFound(SqlDeployError):
    """No compiled deployment exists for the requested version."""

    def __init__(self, version: str):
        super().__init__(f"Compiled deployment version not found: {version}")
        self.version = version


class HistoryCorrupt(SqlDeployError):
    """A prior compiled deployment artifact is malformed."""

    def __init__(self, message: str, path: str):
        super().__init__(f"{message} ({path})")
        self.path = path
