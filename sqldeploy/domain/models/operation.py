"""Operations and deployment plans.

Operations are immutable once planned. Any rewrite (idempotency guard)
produces a new Operation and the pair is kept in the plan's audit trail.

INVARIANTS:
- Plan operations are strictly ordered by (phase, ordinal_within_phase)
- No operation references an object created by a later-phase operation
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqldeploy.domain.models.phases import get_phase


class SourceKind(str, Enum):
    """Where an operation came from."""
    ENTITY_DERIVED = "entity_derived"
    REPOSITORY_SCRIPT = "repository_script"


@dataclass(frozen=True)
class Operation:
    """One executable unit of a deployment plan."""
    phase: int
    source_kind: SourceKind
    object_name: str
    statement_text: str
    ordinal_within_phase: int = 0

    # Object type keyword ("TABLE", "INDEX", "PROCEDURE", ...), when known
    object_type: Optional[str] = None
    # Names this operation creates / mentions, lower-cased, unqualified
    creates: Tuple[str, ...] = ()
    references: Tuple[str, ...] = ()
    # Repository-relative path for scripts
    source_path: Optional[str] = None
    # Text before enhancement; None when the operation was never rewritten
    original_text: Optional[str] = None
    # Reverse-intent hint ("-- Rollback: DROP TABLE Foo")
    rollback_hint: Optional[str] = None
    additive: bool = True

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.phase, self.ordinal_within_phase)

    @property
    def was_enhanced(self) -> bool:
        return self.original_text is not None and self.original_text != self.statement_text

    def with_statement(self, statement_text: str) -> "Operation":
        """Return a copy carrying new text; the first original is preserved."""
        original = self.original_text if self.original_text is not None else self.statement_text
        return replace(self, statement_text=statement_text, original_text=original)

    def with_ordinal(self, ordinal: int) -> "Operation":
        return replace(self, ordinal_within_phase=ordinal)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "phase": self.phase,
            "ordinal_within_phase": self.ordinal_within_phase,
            "source_kind": self.source_kind.value,
            "object_name": self.object_name,
            "object_type": self.object_type,
            "source_path": self.source_path,
            "statement_text": self.statement_text,
            "enhanced": self.was_enhanced,
            "rollback_hint": self.rollback_hint,
        }


@dataclass(frozen=True)
class ScriptEnhancementSkipped:
    """Informational note: a script was left unguarded and used as-is."""
    object_name: str
    source_path: Optional[str]
    reason: str

    def __str__(self) -> str:
        where = self.source_path or self.object_name
        return f"ScriptEnhancementSkipped: {where}: {self.reason}"


@dataclass(frozen=True)
class EnhancementRecord:
    """Audit trail entry pairing the planned text with its rewrite."""
    phase: int
    object_name: str
    source_path: Optional[str]
    original_text: str
    enhanced_text: str


@dataclass(frozen=True)
class DeploymentPlan:
    """Ordered operation sequence for one deployment run."""
    operations: Tuple[Operation, ...]
    source_descriptor_version: Optional[str]
    dialect: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    enhancements: Tuple[EnhancementRecord, ...] = ()
    notes: Tuple[ScriptEnhancementSkipped, ...] = ()

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return len(self.operations) == 0

    @property
    def phases_used(self) -> List[int]:
        return sorted({op.phase for op in self.operations})

    @property
    def approval_phases(self) -> List[int]:
        """Phases in this plan flagged requires_approval."""
        return [p for p in self.phases_used if get_phase(p).requires_approval]

    @property
    def requires_approval(self) -> bool:
        return len(self.approval_phases) > 0

    def operations_in_phase(self, phase: int) -> List[Operation]:
        return [op for op in self.operations if op.phase == phase]

    def created_objects(self) -> Dict[str, int]:
        """Map of object name -> first phase that creates it."""
        created: Dict[str, int] = {}
        for op in self.operations:
            for name in op.creates:
                created.setdefault(name, op.phase)
        return created

    def change_summary(self) -> Dict[str, int]:
        """Operation counts by source kind and object type."""
        summary: Dict[str, int] = {
            "total": len(self.operations),
            SourceKind.ENTITY_DERIVED.value: 0,
            SourceKind.REPOSITORY_SCRIPT.value: 0,
            "enhanced": 0,
        }
        for op in self.operations:
            summary[op.source_kind.value] += 1
            if op.was_enhanced:
                summary["enhanced"] += 1
            if op.object_type:
                key = op.object_type.lower()
                summary[key] = summary.get(key, 0) + 1
        return summary

    def with_operations(
        self,
        operations: List[Operation],
        enhancements: Optional[List[EnhancementRecord]] = None,
        notes: Optional[List[ScriptEnhancementSkipped]] = None,
    ) -> "DeploymentPlan":
        """Return a new plan with replaced operations and extended audit trail."""
        return replace(
            self,
            operations=tuple(operations),
            enhancements=self.enhancements + tuple(enhancements or ()),
            notes=self.notes + tuple(notes or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "source_descriptor_version": self.source_descriptor_version,
            "dialect": self.dialect,
            "created_at": self.created_at.isoformat(),
            "requires_approval": self.requires_approval,
            "approval_phases": self.approval_phases,
            "change_summary": self.change_summary(),
            "operations": [op.to_dict() for op in self.operations],
            "notes": [str(n) for n in self.notes],
        }
