"""Lightweight SQL lexical scanning.

Not a parser. It knows enough about comments, string literals, quoted
identifiers and BEGIN/END blocks to:
- find the leading CREATE clause of a script
- split scripts into batches (GO) and top-level statements
- collect the object names a script creates and references
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set, Tuple


class TokenKind(str, Enum):
    WORD = "word"          # bare identifier or keyword
    IDENT = "ident"        # quoted identifier: [x], "x", `x`
    STRING = "string"      # '...' or $tag$...$tag$
    NUMBER = "number"
    PUNCT = "punct"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    start: int
    end: int

    @property
    def upper(self) -> str:
        return self.text.upper() if self.kind == TokenKind.WORD else ""

    @property
    def is_name(self) -> bool:
        return self.kind in (TokenKind.WORD, TokenKind.IDENT)

    @property
    def name_value(self) -> str:
        """Identifier value without quoting."""
        if self.kind == TokenKind.IDENT:
            return self.text[1:-1]
        return self.text


class LexError(ValueError):
    """Unterminated string, identifier or comment."""
    pass


_WORD_RE = re.compile(r"[A-Za-z_@#][A-Za-z0-9_@#$]*")
_NUMBER_RE = re.compile(r"\d+(\.\d+)?")
_DOLLAR_TAG_RE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")
_GO_LINE_RE = re.compile(r"^[ \t]*GO(?:[ \t]+\d+)?[ \t]*;?[ \t]*$", re.IGNORECASE | re.MULTILINE)

_CLOSING_QUOTE = {"[": "]", '"': '"', "`": "`"}


def tokenize(text: str) -> List[Token]:
    """Split SQL text into tokens, dropping whitespace and comments.

    Raises:
        LexError: unterminated literal, quoted identifier or block comment
    """
    tokens: List[Token] = []
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if text.startswith("--", i):
            newline = text.find("\n", i)
            i = length if newline == -1 else newline + 1
            continue

        if text.startswith("/*", i):
            close = text.find("*/", i + 2)
            if close == -1:
                raise LexError(f"Unterminated block comment at offset {i}")
            i = close + 2
            continue

        if ch == "'" or (ch in "Nn" and text.startswith("'", i + 1)):
            start = i
            i = i + 2 if ch != "'" else i + 1
            while True:
                close = text.find("'", i)
                if close == -1:
                    raise LexError(f"Unterminated string literal at offset {start}")
                if text.startswith("''", close):
                    i = close + 2
                    continue
                i = close + 1
                break
            tokens.append(Token(TokenKind.STRING, text[start:i], start, i))
            continue

        if ch in _CLOSING_QUOTE:
            closing = _CLOSING_QUOTE[ch]
            close = text.find(closing, i + 1)
            if close == -1:
                raise LexError(f"Unterminated quoted identifier at offset {i}")
            tokens.append(Token(TokenKind.IDENT, text[i:close + 1], i, close + 1))
            i = close + 1
            continue

        if ch == "$":
            tag = _DOLLAR_TAG_RE.match(text, i)
            if tag:
                close = text.find(tag.group(0), tag.end())
                if close == -1:
                    raise LexError(f"Unterminated dollar-quoted string at offset {i}")
                end = close + len(tag.group(0))
                tokens.append(Token(TokenKind.STRING, text[i:end], i, end))
                i = end
                continue

        word = _WORD_RE.match(text, i)
        if word:
            tokens.append(Token(TokenKind.WORD, word.group(0), i, word.end()))
            i = word.end()
            continue

        number = _NUMBER_RE.match(text, i)
        if number:
            tokens.append(Token(TokenKind.NUMBER, number.group(0), i, number.end()))
            i = number.end()
            continue

        tokens.append(Token(TokenKind.PUNCT, ch, i, i + 1))
        i += 1

    return tokens


# =============================================================================
# Batches and statements
# =============================================================================

def split_batches(text: str) -> List[str]:
    """Split on SQL Server GO separator lines; empty batches are dropped."""
    batches = []
    for part in _GO_LINE_RE.split(text):
        if has_code(part):
            batches.append(part.strip())
    return batches


def has_code(text: str) -> bool:
    """True when text holds anything besides whitespace and comments."""
    try:
        return len(tokenize(text)) > 0
    except LexError:
        return bool(text.strip())


def split_statements(text: str) -> List[str]:
    """Split on top-level semicolons.

    Semicolons inside BEGIN ... END (trigger and procedure bodies) and
    CASE ... END do not end a statement. BEGIN TRANSACTION/TRAN does not
    open a block.
    """
    tokens = tokenize(text)
    statements: List[str] = []
    depth = 0
    start = 0

    for index, token in enumerate(tokens):
        word = token.upper
        if word == "BEGIN":
            following = tokens[index + 1].upper if index + 1 < len(tokens) else ""
            if following not in ("TRANSACTION", "TRAN", "DEFERRED", "IMMEDIATE", "EXCLUSIVE") and not (
                following == "" and index + 1 < len(tokens) and tokens[index + 1].text == ";"
            ):
                depth += 1
        elif word == "CASE":
            depth += 1
        elif word == "END" and depth > 0:
            depth -= 1
        elif token.text == ";" and token.kind == TokenKind.PUNCT and depth == 0:
            piece = text[start:token.end]
            if has_code(piece):
                statements.append(piece.strip())
            start = token.end

    tail = text[start:]
    if has_code(tail):
        statements.append(tail.strip())
    return statements


# =============================================================================
# CREATE clauses and name references
# =============================================================================

# CREATE <kind> keywords recognised when cataloguing created objects
_CREATE_KINDS = {
    "TABLE": "TABLE",
    "VIEW": "VIEW",
    "PROCEDURE": "PROCEDURE",
    "PROC": "PROCEDURE",
    "FUNCTION": "FUNCTION",
    "TRIGGER": "TRIGGER",
    "INDEX": "INDEX",
    "SCHEMA": "SCHEMA",
    "TYPE": "TYPE",
    "SYNONYM": "SYNONYM",
    "ROLE": "ROLE",
    "USER": "USER",
    "SEQUENCE": "SEQUENCE",
}

# Modifiers allowed between CREATE and the kind keyword
_CREATE_MODIFIERS = {
    "UNIQUE", "CLUSTERED", "NONCLUSTERED", "COLUMNSTORE", "TEMP", "TEMPORARY",
    "MATERIALIZED", "RECURSIVE", "FULLTEXT", "SPATIAL", "XML", "PRIMARY",
}

# Keywords whose following name is an object reference
_REFERENCE_KEYWORDS = {
    "FROM", "JOIN", "INTO", "UPDATE", "TABLE", "REFERENCES", "ON", "EXEC",
    "EXECUTE", "VIEW", "PROCEDURE", "PROC", "FUNCTION", "TRIGGER", "FOR",
    "TRUNCATE", "MERGE", "USING",
}


@dataclass(frozen=True)
class CreateClause:
    """A CREATE statement head: kind, object name and optional target table."""
    kind: str
    name_parts: Tuple[str, ...]
    display_name: str
    or_replace: bool = False
    if_not_exists: bool = False
    on_table: Optional[str] = None
    token_index: int = 0
    temporary: bool = False

    @property
    def name(self) -> str:
        """Unqualified, lower-cased object name."""
        return self.name_parts[-1].lower()

    @property
    def on_table_name(self) -> Optional[str]:
        """Unqualified, lower-cased ON target, when present."""
        if not self.on_table:
            return None
        return unquote_last(self.on_table)


def read_qualified_name(tokens: List[Token], index: int) -> Optional[Tuple[Tuple[str, ...], str, int]]:
    """Read name(.name)* starting at index.

    Returns:
        (parts, display text, index after the name) or None
    """
    if index >= len(tokens) or not tokens[index].is_name:
        return None
    parts = [tokens[index].name_value]
    display = [tokens[index].text]
    index += 1
    while (
        index + 1 < len(tokens)
        and tokens[index].text == "."
        and tokens[index + 1].is_name
    ):
        parts.append(tokens[index + 1].name_value)
        display.append(tokens[index + 1].text)
        index += 2
    return tuple(parts), ".".join(display), index


def parse_create(tokens: List[Token], index: int = 0) -> Optional[CreateClause]:
    """Recognise `CREATE [OR ALTER|OR REPLACE] [modifiers] <kind> <name>` at index."""
    if index >= len(tokens) or tokens[index].upper != "CREATE":
        return None
    start = index
    i = index + 1
    or_replace = False

    if i + 1 < len(tokens) and tokens[i].upper == "OR" and tokens[i + 1].upper in ("ALTER", "REPLACE"):
        or_replace = True
        i += 2

    temporary = False
    while i < len(tokens) and tokens[i].upper in _CREATE_MODIFIERS:
        temporary = temporary or tokens[i].upper in ("TEMP", "TEMPORARY")
        i += 1

    if i >= len(tokens):
        return None
    kind = _CREATE_KINDS.get(tokens[i].upper)
    if kind is None:
        return None
    i += 1

    # PostgreSQL: CREATE INDEX CONCURRENTLY name ON ...
    if kind == "INDEX" and i < len(tokens) and tokens[i].upper == "CONCURRENTLY":
        i += 1

    if_not_exists = False
    if (
        i + 2 < len(tokens)
        and tokens[i].upper == "IF"
        and tokens[i + 1].upper == "NOT"
        and tokens[i + 2].upper == "EXISTS"
    ):
        if_not_exists = True
        i += 3

    name = read_qualified_name(tokens, i)
    if name is None:
        return None
    parts, display, i = name

    on_table = None
    if kind in ("INDEX", "TRIGGER"):
        on_table = _find_on_target(tokens, i)

    return CreateClause(
        kind=kind,
        name_parts=parts,
        display_name=display,
        or_replace=or_replace,
        if_not_exists=if_not_exists,
        on_table=on_table,
        token_index=start,
        temporary=temporary,
    )


def _find_on_target(tokens: List[Token], index: int) -> Optional[str]:
    # Trigger headers put timing words between the name and ON
    limit = min(len(tokens), index + 12)
    for i in range(index, limit):
        if tokens[i].upper == "ON":
            name = read_qualified_name(tokens, i + 1)
            if name:
                return name[1]
            return None
        if tokens[i].upper in ("AS", "BEGIN") or tokens[i].text == ";":
            return None
    return None


def created_objects(text: str) -> List[CreateClause]:
    """Every CREATE clause found at a statement start in text."""
    try:
        tokens = tokenize(text)
    except LexError:
        return []
    clauses = []
    for index, token in enumerate(tokens):
        if token.upper != "CREATE":
            continue
        # Statement starts only: beginning, after ";" or ")" or a GO line
        if index > 0 and tokens[index - 1].text not in (";", ")") and tokens[index - 1].upper != "GO":
            continue
        clause = parse_create(tokens, index)
        # Temp tables and table variables are not deployed objects
        if clause and not clause.name.startswith(("#", "@")):
            clauses.append(clause)
    return clauses


def referenced_names(text: str) -> Set[str]:
    """Lower-cased unqualified names the text refers to.

    Picks names after object keywords (FROM, JOIN, REFERENCES, ON, EXEC, ...)
    and schema-qualified names used as function calls.
    """
    try:
        tokens = tokenize(text)
    except LexError:
        return set()

    names: Set[str] = set()
    for index, token in enumerate(tokens):
        if token.upper in _REFERENCE_KEYWORDS:
            name = read_qualified_name(tokens, index + 1)
            if name and tokens[index + 1].upper not in _REFERENCE_KEYWORDS:
                names.add(name[0][-1].lower())
        elif token.is_name and (index == 0 or tokens[index - 1].text != "."):
            name = read_qualified_name(tokens, index)
            if name and len(name[0]) > 1:
                after = name[2]
                if after < len(tokens) and tokens[after].text == "(":
                    names.add(name[0][-1].lower())
    return names


def unquote_last(display_name: str) -> str:
    """Last part of a written name, unquoted and lower-cased ("[dbo].[Foo]" -> "foo")."""
    try:
        tokens = tokenize(display_name)
    except LexError:
        return display_name.lower()
    name = read_qualified_name(tokens, 0)
    if name is None:
        return display_name.lower()
    return name[0][-1].lower()


# Kinds whose body runs to the end of the batch or statement
MODULE_KINDS = ("PROCEDURE", "FUNCTION", "TRIGGER", "VIEW")


def leading_verbs(text: str) -> List[str]:
    """First keyword of every statement ("CREATE", "INSERT", "ALTER", ...).

    Module bodies (procedures, functions, triggers, views) count as a single
    CREATE; the statements inside them are not inspected.
    """
    verbs: List[str] = []
    try:
        for batch in split_batches(text):
            tokens = tokenize(batch)
            clause = parse_create(tokens, 0)
            if clause is not None and clause.kind in MODULE_KINDS:
                verbs.append("CREATE")
                continue
            for statement in split_statements(batch):
                head = tokenize(statement)
                if head:
                    verbs.append(head[0].upper or head[0].text)
    except LexError:
        return []
    return verbs


def code_text(text: str) -> str:
    """Text with comments removed and string literals blanked to ''.

    Tokens are re-joined with single spaces, so pattern matching sees no
    comments, no literal contents and no layout differences.
    """
    try:
        tokens = tokenize(text)
    except LexError:
        return text
    parts: List[str] = []
    previous: Optional[Token] = None
    for token in tokens:
        piece = "''" if token.kind == TokenKind.STRING else token.text
        # Keep qualified names (dbo.Foo) together
        if parts and token.text != "." and not (previous is not None and previous.text == "."):
            parts.append(" ")
        parts.append(piece)
        previous = token
    return "".join(parts)
