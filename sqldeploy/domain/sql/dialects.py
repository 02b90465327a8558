"""Dialect-specific SQL fragments.

Quoting, existence guards for re-creatable objects, transaction wrappers and
the split of an operation's text into driver-executable batches.
"""

from enum import Enum
from typing import List, Optional, Tuple

from sqldeploy.domain.sql.lexer import split_batches, split_statements


class Dialect(str, Enum):
    MSSQL = "mssql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @classmethod
    def parse(cls, value: "str | Dialect") -> "Dialect":
        """Accept a Dialect or its string value.

        Raises:
            ValueError: unknown dialect name
        """
        if isinstance(value, Dialect):
            return value
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(
                f"Unsupported dialect: {value}. Must be one of: {', '.join(d.value for d in cls)}"
            )


# SQL Server OBJECT_ID type codes per kind
_MSSQL_TYPE_CODES = {
    "PROCEDURE": ("P", "PC"),
    "FUNCTION": ("FN", "IF", "TF", "FS", "FT"),
    "TRIGGER": ("TR",),
    "VIEW": ("V",),
}

# Kinds each dialect can drop and re-create
_GUARDABLE = {
    Dialect.MSSQL: {"PROCEDURE", "FUNCTION", "TRIGGER", "VIEW"},
    Dialect.POSTGRESQL: {"PROCEDURE", "FUNCTION", "TRIGGER", "VIEW"},
    Dialect.SQLITE: {"TRIGGER", "VIEW"},
}


def quote_identifier(name: str, dialect: Dialect) -> str:
    """Quote one identifier for the dialect."""
    if dialect == Dialect.MSSQL:
        return "[" + name.replace("]", "]]") + "]"
    return '"' + name.replace('"', '""') + '"'


def qualified_name(name: str, schema: Optional[str], dialect: Dialect) -> str:
    """Quote and optionally schema-qualify a table name."""
    if schema and dialect != Dialect.SQLITE:
        return f"{quote_identifier(schema, dialect)}.{quote_identifier(name, dialect)}"
    return quote_identifier(name, dialect)


def supports_guard(kind: str, dialect: Dialect) -> bool:
    return kind in _GUARDABLE[dialect]


def existence_guard(kind: str, name: str, dialect: Dialect, on_table: Optional[str] = None) -> Optional[str]:
    """
    Build the statement that drops kind/name when it already exists.

    Args:
        kind: PROCEDURE, FUNCTION, TRIGGER or VIEW
        name: Object name as written in the script (may be qualified/quoted)
        dialect: Target dialect
        on_table: Table a PostgreSQL trigger is attached to

    Returns:
        Guard text, or None when the dialect cannot guard this kind
    """
    if not supports_guard(kind, dialect):
        return None

    if dialect == Dialect.MSSQL:
        literal = name.replace("'", "''")
        codes = ", ".join(f"N'{code}'" for code in _MSSQL_TYPE_CODES[kind])
        return (
            f"IF EXISTS (SELECT 1 FROM sys.objects WHERE object_id = OBJECT_ID(N'{literal}') "
            f"AND type IN ({codes})) DROP {kind} {name};"
        )

    if dialect == Dialect.POSTGRESQL:
        if kind == "TRIGGER":
            if not on_table:
                return None
            return f"DROP TRIGGER IF EXISTS {name} ON {on_table};"
        return f"DROP {kind} IF EXISTS {name};"

    return f"DROP {kind} IF EXISTS {name};"


def apply_guard(guard: str, script: str, dialect: Dialect) -> str:
    """Place the guard ahead of the script, in its own batch on SQL Server."""
    if dialect == Dialect.MSSQL:
        return f"{guard}\nGO\n{script}"
    return f"{guard}\n{script}"


def transaction_wrappers(dialect: Dialect) -> Tuple[str, str]:
    """(begin, commit) statements used in compiled deployment files."""
    if dialect == Dialect.MSSQL:
        return "BEGIN TRANSACTION;", "COMMIT TRANSACTION;"
    return "BEGIN;", "COMMIT;"


# Pre-flight: (server version, database name)
_SERVER_INFO_QUERIES = {
    Dialect.MSSQL: "SELECT @@VERSION AS server_version, DB_NAME() AS current_database",
    Dialect.POSTGRESQL: "SELECT version() AS server_version, current_database() AS current_database",
    Dialect.SQLITE: "SELECT sqlite_version() AS server_version, 'main' AS current_database",
}

# Post-deployment: number of user tables
_TABLE_COUNT_QUERIES = {
    Dialect.MSSQL: "SELECT COUNT(*) AS table_count FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_TYPE = 'BASE TABLE'",
    Dialect.POSTGRESQL: (
        "SELECT COUNT(*) AS table_count FROM information_schema.tables "
        "WHERE table_type = 'BASE TABLE' AND table_schema NOT IN ('pg_catalog', 'information_schema')"
    ),
    Dialect.SQLITE: (
        "SELECT COUNT(*) AS table_count FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    ),
}


def server_info_query(dialect: Dialect) -> str:
    return _SERVER_INFO_QUERIES[dialect]


def table_count_query(dialect: Dialect) -> str:
    return _TABLE_COUNT_QUERIES[dialect]


def executable_batches(statement_text: str, dialect: Dialect) -> List[str]:
    """
    Split an operation's text into what the driver executes one call at a time.

    mssql: GO-separated batches (a batch may hold many statements).
    sqlite: top-level statements; the sqlite3 driver runs one per call.
    postgresql: the whole text (the driver accepts multi-statement strings).
    """
    if dialect == Dialect.MSSQL:
        return split_batches(statement_text)
    if dialect == Dialect.SQLITE:
        return split_statements(statement_text)
    return [statement_text.strip()] if statement_text.strip() else []
