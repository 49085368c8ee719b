"""Bulk import of terminals from spreadsheet rows.

Rows come in loosely typed (whatever openpyxl hands back for a cell) and go
out as :class:`~terminal_tracker.model.DispatchCommand` objects. Mapping is
all-or-nothing: a missing required value or an unknown device model anywhere
in the batch rejects the whole batch. Over-long identifiers are truncated
rather than rejected, and an unreadable dispatch date falls back to the
import time with a logged warning.

Nothing here writes to storage; see :func:`terminal_tracker.core_logic.add_terminals`.
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from . import log
from .constants import (
    LINE_SERIAL_MAX_LENGTH,
    NAME_MAX_LENGTH,
    SERIAL_NUMBER_MAX_LENGTH,
    TERMINAL_ID_MAX_LENGTH,
    Branch,
    TerminalType,
)
from .exceptions import FieldViolation, ValidationError
from .model import DispatchCommand, parse_timestamp, resolve_timestamp


REQUIRED_SOURCE_FIELDS = (
    "name",
    "terminal_id",
    "serial_number",
    "line_serial_number",
    "type",
    "branch",
)
OPTIONAL_SOURCE_FIELDS = ("dispatch_date", "fedex_tracking_number")

TRUNCATE_LIMITS = {
    "name": NAME_MAX_LENGTH,
    "terminal_id": TERMINAL_ID_MAX_LENGTH,
    "serial_number": SERIAL_NUMBER_MAX_LENGTH,
    "line_serial_number": LINE_SERIAL_MAX_LENGTH,
}

# Headers written by exported reports, so a report can be fed back in.
HEADER_ALIASES = {
    "merchant name": "name",
    "terminal id": "terminal_id",
    "serial number": "serial_number",
    "line serial number": "line_serial_number",
    "dispatch date": "dispatch_date",
    "fedex tracking": "fedex_tracking_number",
    "fedex tracking number": "fedex_tracking_number",
}


class DateOutcome(str, Enum):
    """How the dispatch date of an imported row was obtained."""

    PARSED = "parsed"
    DEFAULTED = "defaulted"
    MISSING = "missing"


@dataclass(frozen=True)
class ImportedRow:
    """A mapped row, ready to be dispatched."""

    row_number: int
    command: DispatchCommand
    dispatch_date_outcome: DateOutcome


def normalize_header(value: object) -> Optional[str]:
    """Map a header cell to a source field key (``"Terminal ID"`` -> ``"terminal_id"``)."""

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in HEADER_ALIASES:
        return HEADER_ALIASES[lowered]
    return lowered.replace(" ", "_")


def _cell_text(value: Any) -> str:
    # Excel stores long digit strings as floats once someone retypes them.
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def read_import_rows(source: Path) -> List[Dict[str, Any]]:
    """Load the first sheet of an ``.xlsx`` file as a list of row mappings.

    The first row supplies the keys (see :func:`normalize_header`); fully empty
    rows are skipped.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        ValidationError: If the file cannot be read as a workbook or holds no
            data rows.
    """

    source = Path(source).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Import file not found: {source}")

    try:
        workbook = openpyxl.load_workbook(source, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        log.error("Could not read import file '%s': %s", source, exc)
        raise ValidationError([FieldViolation("file", f"could not read '{source.name}': {exc}")]) from exc

    try:
        raw_rows = list(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()

    if not raw_rows:
        raise ValidationError([FieldViolation("file", "the file does not contain any data")])

    headers = [normalize_header(cell) for cell in raw_rows[0]]
    rows: List[Dict[str, Any]] = []
    for raw in raw_rows[1:]:
        if not any(not _is_blank(cell) for cell in raw):
            continue
        rows.append({key: value for key, value in zip(headers, raw) if key is not None})

    if not rows:
        raise ValidationError([FieldViolation("file", "the file does not contain any data")])

    log.info("Read %d rows from import file '%s'", len(rows), source)
    return rows


def _collect_violations(rows: Sequence[Mapping[str, Any]]) -> List[FieldViolation]:
    violations: List[FieldViolation] = []
    for row_number, row in enumerate(rows, start=1):
        missing = [field for field in REQUIRED_SOURCE_FIELDS if _is_blank(row.get(field))]
        violations.extend(FieldViolation(field, "is required", row=row_number) for field in missing)

        if "type" not in missing:
            try:
                TerminalType.parse(row["type"])
            except ValueError:
                violations.append(
                    FieldViolation("type", f"invalid terminal type '{row['type']}'", row=row_number)
                )
        if "branch" not in missing:
            try:
                Branch.parse(row["branch"])
            except ValueError:
                violations.append(FieldViolation("branch", f"invalid branch '{row['branch']}'", row=row_number))
    return violations


def _resolve_dispatch_date(raw: Any, *, row_number: int, now: datetime) -> tuple[datetime, DateOutcome]:
    if _is_blank(raw):
        return now, DateOutcome.MISSING
    try:
        return parse_timestamp(raw), DateOutcome.PARSED
    except ValueError:
        log.warning("Row %d: invalid dispatch date %r, using %s instead", row_number, raw, now.isoformat())
        return now, DateOutcome.DEFAULTED


def map_import_row(row: Mapping[str, Any], *, row_number: int, now: datetime) -> ImportedRow:
    """Map one row that has already passed the batch checks."""

    truncated = {}
    for field, limit in TRUNCATE_LIMITS.items():
        text = _cell_text(row[field]).strip()
        if len(text) > limit:
            log.info("Row %d: truncated %s to %d characters", row_number, field, limit)
        truncated[field] = text[:limit]

    dispatch_date, outcome = _resolve_dispatch_date(row.get("dispatch_date"), row_number=row_number, now=now)
    tracking = row.get("fedex_tracking_number")

    command = DispatchCommand(
        name=truncated["name"],
        terminal_id=truncated["terminal_id"],
        serial_number=truncated["serial_number"],
        line_serial_number=truncated["line_serial_number"],
        type=TerminalType.parse(row["type"]),
        branch=Branch.parse(row["branch"]),
        dispatch_date=dispatch_date,
        fedex_tracking_number=None if _is_blank(tracking) else _cell_text(tracking),
    )
    return ImportedRow(row_number=row_number, command=command, dispatch_date_outcome=outcome)


def map_import_rows(rows: Sequence[Mapping[str, Any]], *, now: Optional[datetime] = None) -> List[ImportedRow]:
    """Turn external rows into dispatch commands, all or nothing.

    Args:
        rows (Sequence[Mapping[str, Any]]): Row mappings keyed by source field
            name (``name``, ``terminal_id``, ``serial_number``,
            ``line_serial_number``, ``type``, ``branch`` and optionally
            ``dispatch_date`` and ``fedex_tracking_number``).
        now (datetime | None): Timestamp substituted for missing or unreadable
            dispatch dates.

    Returns:
        list[ImportedRow]: One entry per input row, in input order.

    Raises:
        ValidationError: If any row misses a required value or names an unknown
            device model or branch. No row is mapped in that case.
    """

    rows = list(rows)
    violations = _collect_violations(rows)
    if violations:
        log.warning("Rejected import batch of %d rows: %d problems", len(rows), len(violations))
        raise ValidationError(violations)

    now = resolve_timestamp(now)
    mapped = [map_import_row(row, row_number=number, now=now) for number, row in enumerate(rows, start=1)]
    defaulted = sum(1 for row in mapped if row.dispatch_date_outcome is DateOutcome.DEFAULTED)
    log.info("Mapped %d import rows (%d with defaulted dispatch dates)", len(mapped), defaulted)
    return mapped


__all__ = [
    "REQUIRED_SOURCE_FIELDS",
    "OPTIONAL_SOURCE_FIELDS",
    "TRUNCATE_LIMITS",
    "HEADER_ALIASES",
    "DateOutcome",
    "ImportedRow",
    "normalize_header",
    "read_import_rows",
    "map_import_row",
    "map_import_rows",
]
