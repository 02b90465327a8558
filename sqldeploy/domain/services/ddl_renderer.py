"""
Descriptor-to-DDL rendering.

Turns a DescriptorFeed into entity-derived Operations, each placed in its
fixed phase:

    CREATE TABLE (primary key inline)    -> 1
    column add / alter on existing table -> 1
    unique index, unique constraint      -> 3
    foreign key                          -> 5
    single-column index                  -> 6
    composite index                      -> 7
    filtered index                       -> 8
    computed column                      -> 9
    index or constraint on a computed column -> 9 (after the column)
    check / default constraint           -> 10

SQLite cannot add constraints after creation, so its foreign keys, check
constraints and defaults are declared inside CREATE TABLE.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqldeploy.core.errors import DescriptorFeedError
from sqldeploy.domain.models.descriptors import (
    ColumnAction,
    ColumnChange,
    ColumnDescriptor,
    ConstraintDescriptor,
    ConstraintType,
    DescriptorFeed,
    IndexDescriptor,
    TableDescriptor,
)
from sqldeploy.domain.models.operation import Operation, SourceKind
from sqldeploy.domain.models.phases import (
    PHASE_COLUMN_CONSTRAINTS,
    PHASE_COMPOSITE_INDEXES,
    PHASE_COMPUTED_COLUMNS,
    PHASE_FILTERED_INDEXES,
    PHASE_FOREIGN_KEYS,
    PHASE_NONCLUSTERED_INDEXES,
    PHASE_TABLES,
    PHASE_UNIQUE_INDEXES,
)
from sqldeploy.domain.sql.dialects import Dialect, qualified_name, quote_identifier

logger = logging.getLogger(__name__)


def _column_key(table: str, column: str) -> str:
    return f"{table}.{column}".lower()


def computed_columns(feed: DescriptorFeed) -> Set[str]:
    """Keys ("table.column") of every computed column the feed declares or adds."""
    keys = {
        _column_key(table.name, column.name)
        for table in feed.tables
        for column in table.columns
        if column.is_computed
    }
    keys.update(
        _column_key(change.table, change.column.name)
        for change in feed.column_changes
        if change.action == ColumnAction.ADD and change.column.is_computed
    )
    return keys


def _after_computed(
    phase: int,
    table_key: str,
    columns: Iterable[str],
    computed: Set[str],
) -> Tuple[int, Tuple[str, ...]]:
    """Move an index or constraint on computed columns to the computed-column phase."""
    refs = tuple(key for key in (_column_key(table_key, c) for c in columns) if key in computed)
    if refs and phase < PHASE_COMPUTED_COLUMNS:
        return PHASE_COMPUTED_COLUMNS, refs
    return phase, refs


def rollback_hint_for_create(object_type: str, name: str) -> str:
    return f"-- Rollback: DROP {object_type} {name}"


def rollback_hint_for_alter(object_type: str, name: str) -> str:
    return f"-- Rollback: Manual intervention required for ALTER {object_type} {name}"


class DdlRenderer:
    """Renders descriptor feeds as dialect DDL operations."""

    def __init__(self, dialect: "Dialect | str"):
        self.dialect = Dialect.parse(dialect)

    def render(self, feed: DescriptorFeed) -> List[Operation]:
        """
        Render every descriptor in the feed.

        Operations come back grouped in feed order; ordinals are assigned by
        the plan builder.

        Raises:
            DescriptorFeedError: a change the dialect cannot express
        """
        operations: List[Operation] = []
        computed = computed_columns(feed)
        for table in feed.tables:
            operations.extend(self.render_table(table, computed))
        for change in feed.column_changes:
            operations.append(self.render_column_change(change))
        # Computed columns lead their phase so indexes on them follow the column
        operations.sort(key=lambda op: op.phase == PHASE_COMPUTED_COLUMNS and op.object_type != "COLUMN")
        logger.debug(f"Rendered {len(operations)} entity-derived operations ({self.dialect.value})")
        return operations

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    def render_table(self, table: TableDescriptor, computed: Optional[Set[str]] = None) -> List[Operation]:
        """
        Render one table and everything declared on it.

        Args:
            computed: "table.column" keys of computed columns across the feed;
                defaults to the table's own
        """
        if computed is None:
            computed = {_column_key(table.name, c.name) for c in table.columns if c.is_computed}
        operations: List[Operation] = []
        table_sql = qualified_name(table.name, table.schema, self.dialect)
        table_key = table.name.lower()

        if not table.existing:
            operations.append(self._operation(
                phase=PHASE_TABLES,
                object_name=table.name,
                object_type="TABLE",
                statement=self._create_table(table, table_sql),
                creates=(table_key,),
                references=self._inline_references(table),
                rollback_hint=rollback_hint_for_create("TABLE", table.name),
            ))

        for column in table.columns:
            if column.is_computed:
                operations.append(self._computed_column(table_sql, table_key, table.name, column))

        for index in table.indexes:
            operations.append(self._index(table_sql, table_key, index, computed))

        for constraint in table.constraints:
            op = self._constraint(table, table_sql, table_key, constraint, computed)
            if op is not None:
                operations.append(op)

        return operations

    def _create_table(self, table: TableDescriptor, table_sql: str) -> str:
        lines = []
        pk_columns = table.primary_key_columns
        inline_pk = None
        inline_defaults = {}
        if self.dialect == Dialect.SQLITE:
            inline_defaults = {
                c.columns[0]: c.expression
                for c in table.constraints
                if c.type == ConstraintType.DEFAULT and c.columns
            }

        for column in table.columns:
            if column.is_computed:
                continue
            # SQLite AUTOINCREMENT only exists as an inline INTEGER PRIMARY KEY
            if (
                self.dialect == Dialect.SQLITE
                and column.identity
                and pk_columns == [column.name]
            ):
                inline_pk = column.name
                lines.append(f"    {quote_identifier(column.name, self.dialect)} INTEGER PRIMARY KEY AUTOINCREMENT")
                continue
            lines.append("    " + self._column_definition(column, inline_defaults.get(column.name)))

        if pk_columns and inline_pk is None:
            cols = ", ".join(quote_identifier(c, self.dialect) for c in pk_columns)
            pk_name = quote_identifier(f"PK_{table.name}", self.dialect)
            lines.append(f"    CONSTRAINT {pk_name} PRIMARY KEY ({cols})")

        if self.dialect == Dialect.SQLITE:
            for constraint in table.constraints:
                if constraint.type == ConstraintType.FOREIGN_KEY:
                    lines.append("    " + self._foreign_key_clause(constraint))
                elif constraint.type == ConstraintType.CHECK:
                    name = quote_identifier(constraint.name, self.dialect)
                    lines.append(f"    CONSTRAINT {name} CHECK ({constraint.expression})")

        body = ",\n".join(lines)
        return f"CREATE TABLE {table_sql} (\n{body}\n);"

    def _column_definition(self, column: ColumnDescriptor, default_override: Optional[str] = None) -> str:
        parts = [quote_identifier(column.name, self.dialect), column.sql_type]
        if column.identity:
            if self.dialect == Dialect.MSSQL:
                parts.append("IDENTITY(1,1)")
            elif self.dialect == Dialect.POSTGRESQL:
                parts.append("GENERATED BY DEFAULT AS IDENTITY")
        parts.append("NULL" if column.nullable and not column.primary_key else "NOT NULL")
        default = default_override if default_override is not None else column.default
        if default is not None:
            parts.append(f"DEFAULT {default}")
        return " ".join(parts)

    def _inline_references(self, table: TableDescriptor) -> tuple:
        if self.dialect != Dialect.SQLITE:
            return ()
        return tuple(
            c.referenced_table.lower()
            for c in table.constraints
            if c.type == ConstraintType.FOREIGN_KEY and c.referenced_table
            and c.referenced_table.lower() != table.name.lower()
        )

    # -------------------------------------------------------------------------
    # Indexes
    # -------------------------------------------------------------------------

    def _index(
        self,
        table_sql: str,
        table_key: str,
        index: IndexDescriptor,
        computed: Set[str] = frozenset(),
    ) -> Operation:
        if index.filter:
            phase = PHASE_FILTERED_INDEXES
        elif index.unique:
            phase = PHASE_UNIQUE_INDEXES
        elif index.is_composite:
            phase = PHASE_COMPOSITE_INDEXES
        else:
            phase = PHASE_NONCLUSTERED_INDEXES
        phase, computed_refs = _after_computed(phase, table_key, index.columns, computed)

        keywords = ["CREATE"]
        if index.unique:
            keywords.append("UNIQUE")
        if self.dialect == Dialect.MSSQL:
            keywords.append("CLUSTERED" if index.clustered else "NONCLUSTERED")
        keywords.append("INDEX")

        cols = ", ".join(quote_identifier(c, self.dialect) for c in index.columns)
        statement = f"{' '.join(keywords)} {quote_identifier(index.name, self.dialect)} ON {table_sql} ({cols})"
        if index.filter:
            statement += f" WHERE {index.filter}"
        statement += ";"

        return self._operation(
            phase=phase,
            object_name=index.name,
            object_type="INDEX",
            statement=statement,
            creates=(index.name.lower(),),
            references=(table_key,) + computed_refs,
            rollback_hint=rollback_hint_for_create("INDEX", index.name),
        )

    # -------------------------------------------------------------------------
    # Constraints and computed columns
    # -------------------------------------------------------------------------

    def _constraint(
        self,
        table: TableDescriptor,
        table_sql: str,
        table_key: str,
        constraint: ConstraintDescriptor,
        computed: Set[str] = frozenset(),
    ) -> Optional[Operation]:
        name_sql = quote_identifier(constraint.name, self.dialect)
        references = (table_key,)

        if constraint.type == ConstraintType.UNIQUE:
            cols = ", ".join(quote_identifier(c, self.dialect) for c in constraint.columns)
            if self.dialect == Dialect.SQLITE:
                statement = f"CREATE UNIQUE INDEX {name_sql} ON {table_sql} ({cols});"
            else:
                statement = f"ALTER TABLE {table_sql} ADD CONSTRAINT {name_sql} UNIQUE ({cols});"
            phase = PHASE_UNIQUE_INDEXES

        elif constraint.type == ConstraintType.FOREIGN_KEY:
            if self.dialect == Dialect.SQLITE:
                if table.existing:
                    self._unsupported(table, constraint)
                return None
            statement = f"ALTER TABLE {table_sql} ADD {self._foreign_key_clause(constraint)};"
            phase = PHASE_FOREIGN_KEYS
            if constraint.referenced_table:
                references = (table_key, constraint.referenced_table.lower())

        elif constraint.type == ConstraintType.CHECK:
            if self.dialect == Dialect.SQLITE:
                if table.existing:
                    self._unsupported(table, constraint)
                return None
            statement = f"ALTER TABLE {table_sql} ADD CONSTRAINT {name_sql} CHECK ({constraint.expression});"
            phase = PHASE_COLUMN_CONSTRAINTS

        else:  # DEFAULT
            if not constraint.columns:
                raise DescriptorFeedError(f"Default constraint {constraint.name} on {table.name} names no column")
            column = quote_identifier(constraint.columns[0], self.dialect)
            if self.dialect == Dialect.MSSQL:
                statement = (
                    f"ALTER TABLE {table_sql} ADD CONSTRAINT {name_sql} "
                    f"DEFAULT {constraint.expression} FOR {column};"
                )
            elif self.dialect == Dialect.POSTGRESQL:
                statement = f"ALTER TABLE {table_sql} ALTER COLUMN {column} SET DEFAULT {constraint.expression};"
            else:
                # Declared as a column DEFAULT inside CREATE TABLE
                if table.existing:
                    self._unsupported(table, constraint)
                return None
            phase = PHASE_COLUMN_CONSTRAINTS

        phase, computed_refs = _after_computed(phase, table_key, constraint.columns, computed)
        return self._operation(
            phase=phase,
            object_name=constraint.name,
            object_type="CONSTRAINT",
            statement=statement,
            creates=(constraint.name.lower(),),
            references=references + computed_refs,
            rollback_hint=rollback_hint_for_create("CONSTRAINT", constraint.name),
        )

    def _foreign_key_clause(self, constraint: ConstraintDescriptor) -> str:
        cols = ", ".join(quote_identifier(c, self.dialect) for c in constraint.columns)
        ref_cols = ", ".join(quote_identifier(c, self.dialect) for c in constraint.referenced_columns)
        ref_table = quote_identifier(constraint.referenced_table or "", self.dialect)
        on_delete = self._referential_action(constraint.on_delete)
        on_update = self._referential_action(constraint.on_update)
        return (
            f"CONSTRAINT {quote_identifier(constraint.name, self.dialect)} FOREIGN KEY ({cols}) "
            f"REFERENCES {ref_table} ({ref_cols}) ON DELETE {on_delete} ON UPDATE {on_update}"
        )

    def _referential_action(self, action: str) -> str:
        # SQL Server has no RESTRICT; NO ACTION is its equivalent
        if self.dialect == Dialect.MSSQL and action == "RESTRICT":
            return "NO ACTION"
        return action

    def _computed_column(
        self,
        table_sql: str,
        table_key: str,
        table_name: str,
        column: ColumnDescriptor,
    ) -> Operation:
        name = quote_identifier(column.name, self.dialect)
        if self.dialect == Dialect.MSSQL:
            statement = f"ALTER TABLE {table_sql} ADD {name} AS ({column.computed})"
            if column.persisted:
                statement += " PERSISTED"
        elif self.dialect == Dialect.POSTGRESQL:
            statement = (
                f"ALTER TABLE {table_sql} ADD COLUMN {name} {column.sql_type} "
                f"GENERATED ALWAYS AS ({column.computed}) STORED"
            )
        else:
            # ALTER TABLE can only add VIRTUAL generated columns in SQLite
            statement = (
                f"ALTER TABLE {table_sql} ADD COLUMN {name} {column.sql_type} "
                f"GENERATED ALWAYS AS ({column.computed}) VIRTUAL"
            )
        object_name = f"{table_name}.{column.name}"
        return self._operation(
            phase=PHASE_COMPUTED_COLUMNS,
            object_name=object_name,
            object_type="COLUMN",
            statement=statement + ";",
            creates=(_column_key(table_name, column.name),),
            references=(table_key,),
            rollback_hint=rollback_hint_for_create("COLUMN", object_name),
        )

    # -------------------------------------------------------------------------
    # Column changes on existing tables
    # -------------------------------------------------------------------------

    def render_column_change(self, change: ColumnChange) -> Operation:
        table_sql = qualified_name(change.table, change.schema, self.dialect)
        table_key = change.table.lower()
        column = change.column
        object_name = f"{change.table}.{column.name}"

        if change.action == ColumnAction.ADD:
            if column.is_computed:
                return self._computed_column(table_sql, table_key, change.table, column)
            add = "ADD" if self.dialect == Dialect.MSSQL else "ADD COLUMN"
            return self._operation(
                phase=PHASE_TABLES,
                object_name=object_name,
                object_type="COLUMN",
                statement=f"ALTER TABLE {table_sql} {add} {self._column_definition(column)};",
                references=(table_key,),
                rollback_hint=rollback_hint_for_create("COLUMN", object_name),
            )

        name = quote_identifier(column.name, self.dialect)
        if self.dialect == Dialect.MSSQL:
            null_sql = "NULL" if column.nullable else "NOT NULL"
            statement = f"ALTER TABLE {table_sql} ALTER COLUMN {name} {column.sql_type} {null_sql};"
        elif self.dialect == Dialect.POSTGRESQL:
            null_sql = "DROP NOT NULL" if column.nullable else "SET NOT NULL"
            statement = (
                f"ALTER TABLE {table_sql} ALTER COLUMN {name} TYPE {column.sql_type}, "
                f"ALTER COLUMN {name} {null_sql};"
            )
        else:
            raise DescriptorFeedError(
                f"Column alter on {object_name} is not expressible in sqlite (ALTER COLUMN unsupported)"
            )

        return self._operation(
            phase=PHASE_TABLES,
            object_name=object_name,
            object_type="COLUMN",
            statement=statement,
            references=(table_key,),
            rollback_hint=rollback_hint_for_alter("COLUMN", object_name),
            additive=False,
        )

    # -------------------------------------------------------------------------

    def _unsupported(self, table: TableDescriptor, constraint: ConstraintDescriptor) -> None:
        logger.warning(
            f"Skipping {constraint.type.value} constraint {constraint.name} on existing table "
            f"{table.name}: sqlite cannot add constraints to an existing table"
        )

    def _operation(
        self,
        phase: int,
        object_name: str,
        object_type: str,
        statement: str,
        creates: tuple = (),
        references: tuple = (),
        rollback_hint: Optional[str] = None,
        additive: bool = True,
    ) -> Operation:
        return Operation(
            phase=phase,
            source_kind=SourceKind.ENTITY_DERIVED,
            object_name=object_name,
            statement_text=statement,
            object_type=object_type,
            creates=creates,
            references=tuple(r for r in references if r not in creates),
            rollback_hint=rollback_hint,
            additive=additive,
        )
