"""The 29 fixed deployment phases.

Phase order is total and never reconfigured per run. Some categories are
inherently risky and require approval regardless of the SQL they contain.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

MIN_PHASE = 1
MAX_PHASE = 29


@dataclass(frozen=True)
class PhaseDefinition:
    """A deployment phase: number, label, folder slug and approval flag."""
    number: int
    label: str
    slug: str
    requires_approval: bool = False

    @property
    def folder_name(self) -> str:
        """Canonical repository folder name, e.g. "04-reference-data"."""
        return f"{self.number:02d}-{self.slug}"


PHASES: List[PhaseDefinition] = [
    PhaseDefinition(1, "Create tables", "tables"),
    PhaseDefinition(2, "Primary key indexes", "primary-keys"),
    PhaseDefinition(3, "Unique indexes", "unique-indexes"),
    PhaseDefinition(4, "Reference data", "reference-data"),
    PhaseDefinition(5, "Foreign key constraints", "foreign-keys"),
    PhaseDefinition(6, "Non-clustered indexes", "nonclustered-indexes"),
    PhaseDefinition(7, "Composite indexes", "composite-indexes"),
    PhaseDefinition(8, "Filtered indexes", "filtered-indexes"),
    PhaseDefinition(9, "Computed columns", "computed-columns"),
    PhaseDefinition(10, "Advanced column constraints", "column-constraints"),
    PhaseDefinition(11, "User-defined types", "user-defined-types"),
    PhaseDefinition(12, "Scalar functions", "scalar-functions"),
    PhaseDefinition(13, "Table-valued functions", "table-valued-functions"),
    PhaseDefinition(14, "Views", "views"),
    PhaseDefinition(15, "Stored procedures", "stored-procedures"),
    PhaseDefinition(16, "Triggers", "triggers", requires_approval=True),
    PhaseDefinition(17, "Roles", "roles", requires_approval=True),
    PhaseDefinition(18, "Users", "users", requires_approval=True),
    PhaseDefinition(19, "Object permissions", "object-permissions", requires_approval=True),
    PhaseDefinition(20, "Schema permissions", "schema-permissions", requires_approval=True),
    PhaseDefinition(21, "Synonyms", "synonyms"),
    PhaseDefinition(22, "Full-text catalogs and indexes", "full-text", requires_approval=True),
    PhaseDefinition(23, "Partition functions and schemes", "partition-functions", requires_approval=True),
    PhaseDefinition(24, "Table partitioning", "table-partitioning", requires_approval=True),
    PhaseDefinition(25, "Database options", "database-options", requires_approval=True),
    PhaseDefinition(26, "Statistics update", "statistics"),
    PhaseDefinition(27, "Data validation scripts", "data-validation", requires_approval=True),
    PhaseDefinition(28, "Documentation", "documentation"),
    PhaseDefinition(29, "Maintenance tasks", "maintenance", requires_approval=True),
]

_BY_NUMBER: Dict[int, PhaseDefinition] = {p.number: p for p in PHASES}

# Named phases used by the descriptor-derived DDL generator
PHASE_TABLES = 1
PHASE_UNIQUE_INDEXES = 3
PHASE_FOREIGN_KEYS = 5
PHASE_NONCLUSTERED_INDEXES = 6
PHASE_COMPOSITE_INDEXES = 7
PHASE_FILTERED_INDEXES = 8
PHASE_COMPUTED_COLUMNS = 9
PHASE_COLUMN_CONSTRAINTS = 10


def get_phase(number: int) -> PhaseDefinition:
    """Return the definition for a phase number.

    Raises:
        ValueError: number outside 1..29
    """
    try:
        return _BY_NUMBER[number]
    except KeyError:
        raise ValueError(f"Phase number must be between {MIN_PHASE} and {MAX_PHASE}, got: {number}")


def find_phase(number: int) -> Optional[PhaseDefinition]:
    """Return the phase definition, or None for an unknown number."""
    return _BY_NUMBER.get(number)


def approval_phases() -> List[int]:
    """Phase numbers that always require approval."""
    return [p.number for p in PHASES if p.requires_approval]
