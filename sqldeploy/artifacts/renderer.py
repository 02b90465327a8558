"""
Compiled deployment file format.

    -- sqldeploy compiled deployment
    -- ---
    -- <YAML header, one line per comment>
    -- ...
    BEGIN;

    -- @@operation {"index": 1, "phase": 1, ...}
    <statement text, verbatim>
    -- @@end-operation 1

    COMMIT;

The file is plain SQL a DBA can read or run by hand. Statement text sits
between markers unchanged, so parsing returns exactly what was executed.
"""

import json
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import ValidationError

from sqldeploy.core.errors import HistoryCorrupt
from sqldeploy.domain.models.artifacts import ArtifactHeader, CompiledDeployment
from sqldeploy.domain.models.operation import Operation, SourceKind
from sqldeploy.domain.sql.dialects import Dialect, transaction_wrappers

TITLE_LINE = "-- sqldeploy compiled deployment"
HEADER_START = "-- ---"
HEADER_END = "-- ..."
OPERATION_MARKER = "-- @@operation "
END_MARKER = "-- @@end-operation "


def build_header(compiled: CompiledDeployment) -> ArtifactHeader:
    return ArtifactHeader(
        version=compiled.version,
        sequence=compiled.sequence,
        generated_at=compiled.generated_at,
        source_descriptor_version=compiled.source_descriptor_version,
        dialect=compiled.dialect,
        operation_count=len(compiled.operations),
        change_summary=compiled.change_summary,
    )


def render_artifact(compiled: CompiledDeployment) -> str:
    """Render a compiled deployment as transaction-wrapped SQL text."""
    header = build_header(compiled)
    header_yaml = yaml.safe_dump(header.model_dump(mode="json"), sort_keys=False, default_flow_style=False)
    begin, commit = transaction_wrappers(Dialect.parse(compiled.dialect))

    lines: List[str] = [TITLE_LINE, HEADER_START]
    lines.extend(f"-- {line}" for line in header_yaml.rstrip("\n").split("\n"))
    lines.append(HEADER_END)
    lines.append(begin)
    lines.append("")

    for index, op in enumerate(compiled.operations, start=1):
        meta = {
            "index": index,
            "phase": op.phase,
            "ordinal": op.ordinal_within_phase,
            "source_kind": op.source_kind.value,
            "object_name": op.object_name,
            "object_type": op.object_type,
            "source_path": op.source_path,
            "rollback_hint": op.rollback_hint,
            "additive": op.additive,
        }
        lines.append(OPERATION_MARKER + json.dumps(meta, sort_keys=True))
        lines.append(op.statement_text)
        lines.append(f"{END_MARKER}{index}")
        lines.append("")

    lines.append(commit)
    return "\n".join(lines) + "\n"


def parse_header(text: str, path: Union[str, Path] = "<memory>") -> ArtifactHeader:
    """
    Read the header block of a compiled deployment file.

    Raises:
        HistoryCorrupt: missing or invalid header
    """
    lines = text.split("\n")
    if not lines or lines[0] != TITLE_LINE or len(lines) < 2 or lines[1] != HEADER_START:
        raise HistoryCorrupt("Not a compiled deployment file (missing title/header)", str(path))

    try:
        end = lines.index(HEADER_END, 2)
    except ValueError:
        raise HistoryCorrupt("Header block is not terminated", str(path))

    body = []
    for line in lines[2:end]:
        if not line.startswith("-- "):
            raise HistoryCorrupt(f"Malformed header line: {line!r}", str(path))
        body.append(line[3:])

    try:
        raw = yaml.safe_load("\n".join(body))
    except yaml.YAMLError as e:
        raise HistoryCorrupt(f"Header is not valid YAML: {e}", str(path))
    if not isinstance(raw, dict):
        raise HistoryCorrupt("Header is not a mapping", str(path))

    try:
        return ArtifactHeader.model_validate(raw)
    except ValidationError as e:
        raise HistoryCorrupt(f"Header failed validation: {e.errors()[0]['msg']}", str(path))


def parse_artifact(text: str, path: Union[str, Path] = "<memory>") -> CompiledDeployment:
    """
    Parse a full compiled deployment file.

    Raises:
        HistoryCorrupt: malformed header, markers or operation metadata
    """
    header = parse_header(text, path)
    operations: List[Operation] = []

    position = 0
    expected = 1
    while True:
        marker_at = _find_line(text, OPERATION_MARKER, position)
        if marker_at is None:
            break
        line_end = text.find("\n", marker_at)
        if line_end == -1:
            raise HistoryCorrupt("Operation marker without statement", str(path))

        try:
            meta = json.loads(text[marker_at + len(OPERATION_MARKER):line_end])
        except json.JSONDecodeError as e:
            raise HistoryCorrupt(f"Operation metadata is not valid JSON: {e}", str(path))
        if meta.get("index") != expected:
            raise HistoryCorrupt(f"Operation {expected} missing or out of order", str(path))

        terminator = f"\n{END_MARKER}{expected}\n"
        stop = text.find(terminator, line_end)
        if stop == -1:
            raise HistoryCorrupt(f"Operation {expected} is not terminated", str(path))

        try:
            operations.append(Operation(
                phase=int(meta["phase"]),
                source_kind=SourceKind(meta["source_kind"]),
                object_name=meta["object_name"],
                statement_text=text[line_end + 1:stop],
                ordinal_within_phase=int(meta["ordinal"]),
                object_type=meta.get("object_type"),
                source_path=meta.get("source_path"),
                rollback_hint=meta.get("rollback_hint"),
                additive=bool(meta.get("additive", True)),
            ))
        except (KeyError, ValueError, TypeError) as e:
            raise HistoryCorrupt(f"Operation {expected} metadata incomplete: {e}", str(path))

        position = stop + len(terminator)
        expected += 1

    if len(operations) != header.operation_count:
        raise HistoryCorrupt(
            f"Header declares {header.operation_count} operations, file holds {len(operations)}",
            str(path),
        )

    return CompiledDeployment(
        version=header.version,
        sequence=header.sequence,
        generated_at=header.generated_at,
        source_descriptor_version=header.source_descriptor_version,
        dialect=header.dialect,
        operations=tuple(operations),
        change_summary=dict(header.change_summary),
    )


def _find_line(text: str, prefix: str, start: int) -> Optional[int]:
    """Offset of the next line starting with prefix, at or after start."""
    index = start
    while True:
        found = text.find(prefix, index)
        if found == -1:
            return None
        if found == 0 or text[found - 1] == "\n":
            return found
        index = found + 1
