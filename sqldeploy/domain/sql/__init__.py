"""SQL text helpers: lexical scanning and dialect fragments."""

from sqldeploy.domain.sql.dialects import Dialect, executable_batches, existence_guard
from sqldeploy.domain.sql.lexer import (
    CreateClause,
    LexError,
    created_objects,
    parse_create,
    referenced_names,
    split_batches,
    split_statements,
    tokenize,
)

__all__ = [
    "Dialect",
    "executable_batches",
    "existence_guard",
    "CreateClause",
    "LexError",
    "created_objects",
    "parse_create",
    "referenced_names",
    "split_batches",
    "split_statements",
    "tokenize",
]
