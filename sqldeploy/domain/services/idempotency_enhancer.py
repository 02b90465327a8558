"""
Idempotency enhancer for re-creatable script objects.

A script whose leading statement is
    CREATE [OR ALTER|OR REPLACE] PROCEDURE|PROC|FUNCTION|TRIGGER|VIEW <name>
gets a dialect existence guard that drops <name> first, so re-running the
deployment does not fail on "object already exists".

When the clause cannot be identified with confidence the script is used
as-is and a ScriptEnhancementSkipped note says why. Enhancing an already
guarded script returns it unchanged.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqldeploy.domain.models.operation import (
    DeploymentPlan,
    EnhancementRecord,
    Operation,
    ScriptEnhancementSkipped,
)
from sqldeploy.domain.sql.dialects import (
    Dialect,
    apply_guard,
    existence_guard,
    supports_guard,
)
from sqldeploy.domain.sql.lexer import (
    LexError,
    created_objects,
    parse_create,
    read_qualified_name,
    split_batches,
    split_statements,
    tokenize,
    unquote_last,
)

logger = logging.getLogger(__name__)

GUARDED_KINDS = ("PROCEDURE", "FUNCTION", "TRIGGER", "VIEW")

_DROP_KINDS = {"PROCEDURE": "PROCEDURE", "PROC": "PROCEDURE", "FUNCTION": "FUNCTION",
               "TRIGGER": "TRIGGER", "VIEW": "VIEW"}


@dataclass
class EnhancementOutcome:
    """Result of enhancing one operation."""
    operation: Operation
    changed: bool = False
    skipped: Optional[ScriptEnhancementSkipped] = None


@dataclass
class EnhancementSummary:
    """Aggregate over a whole plan."""
    plan: DeploymentPlan
    enhanced: int = 0
    skipped: List[ScriptEnhancementSkipped] = field(default_factory=list)


class IdempotencyEnhancer:
    """Adds existence guards to CREATE scripts for one dialect."""

    def __init__(self, dialect: "Dialect | str"):
        self.dialect = Dialect.parse(dialect)

    def enhance(self, operation: Operation) -> EnhancementOutcome:
        """
        Guard one operation's statement text.

        Returns:
            EnhancementOutcome holding a new Operation. The text is unchanged
            when nothing needed guarding, the script was already guarded, or
            the clause could not be identified (then `skipped` is set).
        """
        text = operation.statement_text

        try:
            tokens = tokenize(text)
        except LexError as e:
            return self._skip(operation, f"script could not be scanned: {e}")

        if not tokens:
            return EnhancementOutcome(operation=operation.with_statement(text))

        units = self._units(text)

        if self._is_already_guarded(units):
            logger.debug(f"Already guarded: {operation.object_name}")
            return EnhancementOutcome(operation=operation.with_statement(text))

        clause = parse_create(tokens, 0)
        if clause is None or clause.kind not in GUARDED_KINDS:
            if any(c.kind in GUARDED_KINDS for c in created_objects(text)):
                return self._skip(operation, "CREATE of a re-creatable object is not the leading statement")
            # Nothing re-creatable in this script
            return EnhancementOutcome(operation=operation.with_statement(text))

        if clause.or_replace:
            return EnhancementOutcome(operation=operation.with_statement(text))

        if len(units) != 1:
            return self._skip(
                operation,
                f"script holds {len(units)} statements; CREATE {clause.kind} must be the only one",
            )

        if not supports_guard(clause.kind, self.dialect):
            return self._skip(operation, f"{self.dialect.value} has no {clause.kind.lower()} objects to guard")

        guard = existence_guard(clause.kind, clause.display_name, self.dialect, on_table=clause.on_table)
        if guard is None:
            return self._skip(operation, f"no ON <table> found for {clause.kind.lower()} {clause.display_name}")

        enhanced = operation.with_statement(apply_guard(guard, text, self.dialect))
        logger.info(f"Guarded {clause.kind} {clause.display_name} ({operation.source_path or operation.object_name})")
        return EnhancementOutcome(operation=enhanced, changed=True)

    def enhance_plan(self, plan: DeploymentPlan) -> EnhancementSummary:
        """Enhance every operation; the audit trail records each rewrite."""
        operations: List[Operation] = []
        records: List[EnhancementRecord] = []
        notes: List[ScriptEnhancementSkipped] = []

        for operation in plan.operations:
            outcome = self.enhance(operation)
            operations.append(outcome.operation)
            if outcome.changed:
                records.append(
                    EnhancementRecord(
                        phase=operation.phase,
                        object_name=operation.object_name,
                        source_path=operation.source_path,
                        original_text=operation.statement_text,
                        enhanced_text=outcome.operation.statement_text,
                    )
                )
            if outcome.skipped is not None:
                notes.append(outcome.skipped)

        new_plan = plan.with_operations(operations, enhancements=records, notes=notes)
        return EnhancementSummary(plan=new_plan, enhanced=len(records), skipped=notes)

    # -------------------------------------------------------------------------

    def _units(self, text: str) -> List[str]:
        # On SQL Server a module body runs to the end of its batch
        if self.dialect == Dialect.MSSQL:
            return split_batches(text)
        try:
            return split_statements(text)
        except LexError:
            return [text]

    def _is_already_guarded(self, units: List[str]) -> bool:
        if len(units) != 2:
            return False
        dropped = _dropped_object(units[0])
        if dropped is None:
            return False
        try:
            clause = parse_create(tokenize(units[1]), 0)
        except LexError:
            return False
        if clause is None:
            return False
        return (clause.kind, clause.name) == dropped

    def _skip(self, operation: Operation, reason: str) -> EnhancementOutcome:
        note = ScriptEnhancementSkipped(
            object_name=operation.object_name,
            source_path=operation.source_path,
            reason=reason,
        )
        logger.warning(f"{note}; using script as-is")
        return EnhancementOutcome(operation=operation.with_statement(operation.statement_text), skipped=note)


def _dropped_object(unit: str) -> Optional[Tuple[str, str]]:
    """(kind, name) dropped by a leading guard statement, if unit is one."""
    try:
        tokens = tokenize(unit)
    except LexError:
        return None
    if not tokens or tokens[0].upper not in ("IF", "DROP"):
        return None

    for index, token in enumerate(tokens):
        if token.upper != "DROP" or index + 1 >= len(tokens):
            continue
        kind = _DROP_KINDS.get(tokens[index + 1].upper)
        if kind is None:
            continue
        i = index + 2
        if i + 1 < len(tokens) and tokens[i].upper == "IF" and tokens[i + 1].upper == "EXISTS":
            i += 2
        name = read_qualified_name(tokens, i)
        if name is None:
            return None
        return kind, unquote_last(name[1])
    return None


def enhance_plan(plan: DeploymentPlan, dialect: "Dialect | str") -> EnhancementSummary:
    """Convenience wrapper around IdempotencyEnhancer.enhance_plan."""
    return IdempotencyEnhancer(dialect).enhance_plan(plan)


__all__ = [
    "EnhancementOutcome",
    "EnhancementSummary",
    "IdempotencyEnhancer",
    "enhance_plan",
]
