"""
Risk rule tables.

Three tiers, evaluated in order: Blocking, then Warning, then Safe. A RuleSet
is an explicit value handed to the classifier; there is no module-level
registry to mutate.

Patterns are case-insensitive and run against an operation's rendered text
with comments removed and string literals blanked (see lexer.code_text).
"""

import re
from dataclasses import dataclass, field
from typing import Callable, ClassVar, FrozenSet, Iterator, List, Match, Optional, Pattern, Tuple

from sqldeploy.domain.models.validation import Severity
from sqldeploy.domain.sql.lexer import unquote_last

# Quoted or bare, optionally qualified, object name
_NAME = r"(?:\[[^\]]+\]|\"[^\"]+\"|`[^`]+`|[\w@#$]+)(?:\.(?:\[[^\]]+\]|\"[^\"]+\"|`[^`]+`|[\w@#$]+))*"

# CREATE [UNIQUE] [CLUSTERED] INDEX [CONCURRENTLY] [IF NOT EXISTS] [name] ON [ONLY] <table>
INDEX_TARGET = (
    r"\bCREATE\s+(?:UNIQUE\s+)?(?:(?:NON)?CLUSTERED\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"
    r"(?:(?!ON\b)" + _NAME + r"\s+)?ON\s+(?:ONLY\s+)?(?P<table>" + _NAME + r")"
)


@dataclass(frozen=True)
class RuleContext:
    """Plan-level facts a rule may consult."""
    created_objects: FrozenSet[str] = frozenset()

    def is_existing(self, name: str) -> bool:
        """True when the plan does not create the named object itself."""
        return unquote_last(name) not in self.created_objects


@dataclass(frozen=True)
class RiskRule:
    """One regex rule. `applies` narrows a regex match with plan context."""
    name: str
    pattern: Pattern
    category: str
    description: str
    recommendation: str
    applies: Optional[Callable[[Match, RuleContext], bool]] = field(default=None, compare=False)

    severity: ClassVar[Severity] = Severity.INFO

    def find(self, text: str, context: RuleContext) -> List[Match]:
        """Every qualifying match of this rule in text."""
        return [
            m for m in self.pattern.finditer(text)
            if self.applies is None or self.applies(m, context)
        ]


@dataclass(frozen=True)
class BlockingRule(RiskRule):
    """Destructive change: the deployment cannot proceed."""
    severity: ClassVar[Severity] = Severity.ERROR


@dataclass(frozen=True)
class WarningRule(RiskRule):
    """Risky change: proceeds only with explicit approval."""
    severity: ClassVar[Severity] = Severity.WARNING


@dataclass(frozen=True)
class SafeRule(RiskRule):
    """Recognised low-risk change, reported for information."""
    severity: ClassVar[Severity] = Severity.INFO


@dataclass(frozen=True)
class RuleSet:
    """Ordered rule tiers. Precedence: blocking > warning > safe."""
    blocking: Tuple[BlockingRule, ...] = ()
    warning: Tuple[WarningRule, ...] = ()
    safe: Tuple[SafeRule, ...] = ()

    def tiers(self) -> Iterator[Tuple[RiskRule, ...]]:
        yield self.blocking
        yield self.warning
        yield self.safe

    def __len__(self) -> int:
        return len(self.blocking) + len(self.warning) + len(self.safe)


def _regex(pattern: str) -> Pattern:
    return re.compile(pattern, re.IGNORECASE)


def _index_target_is_existing(match: Match, context: RuleContext) -> bool:
    return context.is_existing(match.group("table"))


def default_rule_set() -> RuleSet:
    """The standard deployment rules."""
    return RuleSet(
        blocking=(
            BlockingRule(
                name="drop_table",
                pattern=_regex(r"\bDROP\s+TABLE\b"),
                category="data_loss",
                description="DROP TABLE permanently removes the table and its data",
                recommendation="Archive the data and drop the table in a separate, manually reviewed change",
            ),
            BlockingRule(
                name="drop_column",
                pattern=_regex(r"\bDROP\s+COLUMN\b"),
                category="data_loss",
                description="DROP COLUMN permanently removes the column's data",
                recommendation="Stop using the column first; drop it later in a manually reviewed change",
            ),
            BlockingRule(
                name="truncate_table",
                pattern=_regex(r"\bTRUNCATE\s+TABLE\b"),
                category="data_loss",
                description="TRUNCATE TABLE deletes every row",
                recommendation="Move data clean-up out of the schema deployment",
            ),
            BlockingRule(
                name="drop_database",
                pattern=_regex(r"\bDROP\s+DATABASE\b"),
                category="data_loss",
                description="DROP DATABASE removes the whole database",
                recommendation="Never drop databases from a schema deployment",
            ),
            BlockingRule(
                name="drop_schema",
                pattern=_regex(r"\bDROP\s+SCHEMA\b"),
                category="data_loss",
                description="DROP SCHEMA removes the schema and may cascade to its objects",
                recommendation="Drop the schema manually after confirming it is empty",
            ),
        ),
        warning=(
            WarningRule(
                name="alter_column",
                pattern=_regex(r"\bALTER\s+COLUMN\b"),
                category="schema_change",
                description="ALTER COLUMN can rewrite the table and fail on existing data",
                recommendation="Check existing values fit the new definition; expect table locks",
            ),
            WarningRule(
                name="not_null_without_default",
                pattern=_regex(
                    r"\bALTER\s+TABLE\s+" + _NAME + r"\s+ADD\s+(?:COLUMN\s+)?"
                    r"(?!CONSTRAINT\b)(?![^;]*\bDEFAULT\b)[^;]*?\bNOT\s+NULL\b"
                ),
                category="schema_change",
                description="Adding a NOT NULL column without a DEFAULT fails when the table has rows",
                recommendation="Add a DEFAULT, or add the column as NULL and backfill before tightening",
            ),
            WarningRule(
                name="index_on_existing_table",
                pattern=_regex(INDEX_TARGET),
                category="performance",
                description="Building an index on an existing table locks it for the build",
                recommendation="Schedule during low traffic; consider ONLINE index builds where available",
                applies=_index_target_is_existing,
            ),
            WarningRule(
                name="add_constraint",
                pattern=_regex(r"\bADD\s+CONSTRAINT\b"),
                category="data_integrity",
                description="Adding a constraint validates existing rows and can fail on bad data",
                recommendation="Verify existing data satisfies the constraint before deploying",
            ),
        ),
        safe=(
            SafeRule(
                name="create_table",
                pattern=_regex(r"\bCREATE\s+TABLE\b"),
                category="schema_addition",
                description="CREATE TABLE adds a new, empty table",
                recommendation="No action required",
            ),
            SafeRule(
                name="create_schema",
                pattern=_regex(r"\bCREATE\s+SCHEMA\b"),
                category="schema_addition",
                description="CREATE SCHEMA adds a new namespace",
                recommendation="No action required",
            ),
            SafeRule(
                name="nullable_column_add",
                pattern=_regex(
                    r"\bALTER\s+TABLE\s+" + _NAME + r"\s+ADD\s+(?:COLUMN\s+)?"
                    r"(?!CONSTRAINT\b)(?![^;]*\bNOT\s+NULL\b)" + _NAME + r"\s+\w+"
                ),
                category="schema_addition",
                description="Adding a nullable column does not touch existing rows",
                recommendation="No action required",
            ),
            SafeRule(
                name="filtered_index",
                pattern=_regex(
                    r"\bCREATE\s+(?:UNIQUE\s+)?(?:(?:NON)?CLUSTERED\s+)?INDEX\b[^;]*\bWHERE\b"
                ),
                category="performance",
                description="Filtered index covers a subset of rows",
                recommendation="No action required",
            ),
        ),
    )
