"""Schema descriptor models.

Descriptors are the input feed derived from the annotated domain model:
tables, their columns, indexes and constraints, plus column changes on
existing tables. Created by DescriptorFeedLoader after schema validation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConstraintType(str, Enum):
    """Constraint kinds a descriptor can declare."""
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"
    UNIQUE = "unique"
    DEFAULT = "default"


class ColumnAction(str, Enum):
    """Change applied to a column of an existing table."""
    ADD = "add"
    ALTER = "alter"


@dataclass
class ColumnDescriptor:
    """A column definition."""
    name: str
    sql_type: str
    nullable: bool = True
    primary_key: bool = False
    identity: bool = False
    default: Optional[str] = None
    computed: Optional[str] = None  # expression for computed columns
    persisted: bool = False

    @property
    def is_computed(self) -> bool:
        return self.computed is not None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ColumnDescriptor":
        """Create from raw dict."""
        return cls(
            name=raw["name"],
            sql_type=raw.get("type", ""),
            nullable=raw.get("nullable", True),
            primary_key=raw.get("primary_key", False),
            identity=raw.get("identity", False),
            default=_optional_str(raw.get("default")),
            computed=raw.get("computed"),
            persisted=raw.get("persisted", False),
        )


@dataclass
class IndexDescriptor:
    """An index on one table."""
    name: str
    columns: List[str]
    unique: bool = False
    clustered: bool = False
    filter: Optional[str] = None

    @property
    def is_composite(self) -> bool:
        return len(self.columns) > 1

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "IndexDescriptor":
        """Create from raw dict."""
        return cls(
            name=raw["name"],
            columns=list(raw["columns"]),
            unique=raw.get("unique", False),
            clustered=raw.get("clustered", False),
            filter=raw.get("filter"),
        )


@dataclass
class ConstraintDescriptor:
    """A table constraint."""
    name: str
    type: ConstraintType
    columns: List[str] = field(default_factory=list)
    referenced_table: Optional[str] = None
    referenced_columns: List[str] = field(default_factory=list)
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"
    expression: Optional[str] = None  # check expression or default value

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ConstraintDescriptor":
        """Create from raw dict."""
        references = raw.get("references") or {}
        return cls(
            name=raw["name"],
            type=ConstraintType(raw["type"]),
            columns=list(raw.get("columns", [])),
            referenced_table=references.get("table"),
            referenced_columns=list(references.get("columns", [])),
            on_delete=raw.get("on_delete", "NO ACTION").replace("_", " ").upper(),
            on_update=raw.get("on_update", "NO ACTION").replace("_", " ").upper(),
            expression=_optional_str(raw.get("expression")),
        )


@dataclass
class TableDescriptor:
    """A table and everything declared on it.

    existing=True means the table is already deployed: no CREATE TABLE is
    generated, only the indexes and constraints listed here.
    """
    name: str
    schema: Optional[str] = None
    columns: List[ColumnDescriptor] = field(default_factory=list)
    indexes: List[IndexDescriptor] = field(default_factory=list)
    constraints: List[ConstraintDescriptor] = field(default_factory=list)
    existing: bool = False

    @property
    def primary_key_columns(self) -> List[str]:
        return [c.name for c in self.columns if c.primary_key]

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TableDescriptor":
        """Create from raw dict."""
        return cls(
            name=raw["name"],
            schema=raw.get("schema"),
            columns=[ColumnDescriptor.from_dict(c) for c in raw.get("columns", [])],
            indexes=[IndexDescriptor.from_dict(i) for i in raw.get("indexes", [])],
            constraints=[ConstraintDescriptor.from_dict(c) for c in raw.get("constraints", [])],
            existing=raw.get("existing", False),
        )


@dataclass
class ColumnChange:
    """Add or alter a column on a table not created by this feed."""
    table: str
    action: ColumnAction
    column: ColumnDescriptor
    schema: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ColumnChange":
        """Create from raw dict."""
        return cls(
            table=raw["table"],
            action=ColumnAction(raw["action"]),
            column=ColumnDescriptor.from_dict(raw["column"]),
            schema=raw.get("schema"),
        )


@dataclass
class DescriptorFeed:
    """The complete descriptor input for one run."""
    source_descriptor_version: str
    tables: List[TableDescriptor] = field(default_factory=list)
    column_changes: List[ColumnChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.tables and not self.column_changes

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "DescriptorFeed":
        """Create from raw dict."""
        return cls(
            source_descriptor_version=str(raw["source_descriptor_version"]),
            tables=[TableDescriptor.from_dict(t) for t in raw.get("tables", [])],
            column_changes=[ColumnChange.from_dict(c) for c in raw.get("column_changes", [])],
        )


def _optional_str(value: Any) -> Optional[str]:
    # YAML turns bare defaults like 0 or true into non-strings
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)
