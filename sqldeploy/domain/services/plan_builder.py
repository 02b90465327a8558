"""
Deployment plan builder.

Merges entity-derived DDL with repository scripts into one DeploymentPlan
across the 29 fixed phases.

Ordering rules:
- phases run in their fixed numeric order
- within a phase, entity-derived operations precede repository scripts
- entity operations keep feed order; scripts keep loader order
- ordinals are reassigned 1..n per phase

A script that references an object the plan only creates in a later phase
fails the build (PlanOrderingViolation) before anything touches the target.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from sqldeploy.core.errors import OperationContext, PlanOrderingViolation
from sqldeploy.domain.models.descriptors import DescriptorFeed
from sqldeploy.domain.models.operation import DeploymentPlan, Operation, SourceKind
from sqldeploy.domain.models.phases import get_phase
from sqldeploy.domain.services.ddl_renderer import DdlRenderer, rollback_hint_for_create
from sqldeploy.domain.services.script_loader import LoadedScript
from sqldeploy.domain.sql.dialects import Dialect
from sqldeploy.domain.sql.lexer import created_objects, leading_verbs, referenced_names

logger = logging.getLogger(__name__)

# Statements that change or remove what already exists
NON_ADDITIVE_VERBS = {"ALTER", "DROP", "DELETE", "UPDATE", "TRUNCATE", "MERGE"}


def script_operation(script: LoadedScript) -> Operation:
    """Wrap a loaded script as a REPOSITORY_SCRIPT operation.

    The object name is the first created object when the script creates one,
    else the file stem.
    """
    clauses = created_objects(script.raw_text)
    creates = tuple(dict.fromkeys(c.name for c in clauses))
    references = tuple(sorted(n for n in referenced_names(script.raw_text) if n not in creates))

    if clauses:
        first = clauses[0]
        object_name = first.display_name
        object_type = first.kind
        rollback_hint = rollback_hint_for_create(first.kind, first.display_name)
    else:
        object_name = script.object_name
        object_type = None
        rollback_hint = None

    return Operation(
        phase=script.phase,
        source_kind=SourceKind.REPOSITORY_SCRIPT,
        object_name=object_name,
        statement_text=script.raw_text,
        ordinal_within_phase=script.ordinal,
        object_type=object_type,
        creates=creates,
        references=references,
        source_path=script.path,
        rollback_hint=rollback_hint,
        additive=not any(v in NON_ADDITIVE_VERBS for v in leading_verbs(script.raw_text)),
    )


class DeploymentPlanBuilder:
    """Builds ordered deployment plans for one dialect."""

    def __init__(self, dialect: "Dialect | str"):
        self.dialect = Dialect.parse(dialect)
        self.renderer = DdlRenderer(self.dialect)

    def build(
        self,
        feed: Optional[DescriptorFeed],
        scripts: Iterable[LoadedScript],
        last_deployed_version: Optional[str] = None,
    ) -> DeploymentPlan:
        """
        Build a plan from the descriptor feed and loaded scripts.

        Args:
            feed: Descriptor feed, or None when there is none
            scripts: Loaded repository scripts
            last_deployed_version: source_descriptor_version of the newest
                compiled deployment; a feed at the same version contributes
                no entity-derived operations

        Returns:
            DeploymentPlan ordered by (phase, ordinal_within_phase)

        Raises:
            PlanOrderingViolation: a script references an object created in a later phase
        """
        source_version = feed.source_descriptor_version if feed else None

        entity_ops: List[Operation] = []
        if feed is not None:
            if last_deployed_version is not None and feed.source_descriptor_version == last_deployed_version:
                logger.info(
                    f"Descriptor version {feed.source_descriptor_version} already deployed; "
                    f"no entity-derived operations"
                )
            else:
                entity_ops = self.renderer.render(feed)

        script_ops = [script_operation(s) for s in scripts]

        operations = self.order(entity_ops, script_ops)
        plan = DeploymentPlan(
            operations=tuple(operations),
            source_descriptor_version=source_version,
            dialect=self.dialect.value,
        )
        self.check_references(plan)

        logger.info(
            f"Built plan: {len(plan)} operations across {len(plan.phases_used)} phases "
            f"({len(entity_ops)} entity-derived, {len(script_ops)} scripts)"
        )
        return plan

    @staticmethod
    def order(entity_ops: List[Operation], script_ops: List[Operation]) -> List[Operation]:
        """Group by phase, entities first, then renumber ordinals from 1."""
        by_phase: Dict[int, List[Operation]] = defaultdict(list)
        for op in entity_ops:
            get_phase(op.phase)
            by_phase[op.phase].append(op)
        for op in sorted(script_ops, key=lambda o: o.sort_key):
            get_phase(op.phase)
            by_phase[op.phase].append(op)

        ordered: List[Operation] = []
        for phase in sorted(by_phase):
            for ordinal, op in enumerate(by_phase[phase], start=1):
                ordered.append(op.with_ordinal(ordinal))
        return ordered

    @staticmethod
    def check_references(plan: DeploymentPlan) -> None:
        """Fail on the first operation that references a later-phase object."""
        created = plan.created_objects()
        for op in plan.operations:
            for name in op.references:
                created_in = created.get(name)
                if created_in is not None and created_in > op.phase:
                    raise PlanOrderingViolation(
                        f"{op.object_name} in phase {op.phase} ({get_phase(op.phase).label}) "
                        f"references {name}, which the plan creates in phase {created_in} "
                        f"({get_phase(created_in).label})",
                        object_name=name,
                        context=OperationContext(op.phase, op.object_name, op.statement_text),
                    )
