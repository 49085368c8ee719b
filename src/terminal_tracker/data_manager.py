"""Data access layer for the terminal tracker.

This module owns everything that touches disk. Business logic belongs in
:mod:`terminal_tracker.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the ``.xlsx`` store.
3. The persistence gateway: :class:`TerminalGateway` describes the operations
   the core issues against storage, and :class:`WorkbookGateway` implements
   them over the ``Terminals`` sheet.
"""


from __future__ import annotations

import configparser
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import log
from .constants import TERMINAL_COLUMNS, Branch, SheetName, TerminalType
from .exceptions import GatewayError, NotFoundError
from .filters import TerminalFilter, filter_terminals
from .model import Terminal, TerminalDraft, ValidationRules, check_invariants, parse_timestamp


CONFIG_FILE_NAME = "config.ini"
TERMINALS_SHEET = SheetName.TERMINALS.value
DEFAULT_IMPORT_BATCH_SIZE = 50


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    rules: ValidationRules = ValidationRules()
    import_batch_size: int = DEFAULT_IMPORT_BATCH_SIZE


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the current
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Rules]`` and ``[Import]`` are
    optional and fall back to the defaults of :class:`ValidationRules` and
    ``DEFAULT_IMPORT_BATCH_SIZE``. Relative ``DataFile`` paths are anchored to
    ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor a relative
            ``DataFile`` entry.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional entry holds a malformed value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    defaults = ValidationRules()
    rules = ValidationRules(
        terminal_id_prefix=parser.get("Rules", "TerminalIdPrefix", fallback=defaults.terminal_id_prefix).strip(),
        enforce_return_reason=parser.getboolean(
            "Rules", "EnforceReturnReason", fallback=defaults.enforce_return_reason
        ),
        enforce_unique_terminal_id=parser.getboolean(
            "Rules", "EnforceUniqueTerminalId", fallback=defaults.enforce_unique_terminal_id
        ),
    )
    batch_size = parser.getint("Import", "BatchSize", fallback=DEFAULT_IMPORT_BATCH_SIZE)
    if batch_size < 1:
        raise ValueError(f"Import batch size must be positive, got {batch_size}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        rules=rules,
        import_batch_size=batch_size,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the terminal workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def terminals_sheet(workbook: Workbook) -> Worksheet:
    """Return the ``Terminals`` worksheet, failing loudly when it is absent."""

    if TERMINALS_SHEET not in workbook.sheetnames:
        raise GatewayError(f"Workbook has no '{TERMINALS_SHEET}' sheet")
    return workbook[TERMINALS_SHEET]


def iter_terminals(workbook: Workbook) -> Iterable[Terminal]:
    """Iterate over terminal records stored on the ``Terminals`` worksheet.

    The header row and fully empty rows are skipped.

    Yields:
        Terminal: One record per populated row, in sheet order.
    """

    sheet = terminals_sheet(workbook)
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_terminal(raw)


def append_terminal(workbook: Workbook, record: Terminal) -> None:
    """Append a terminal record to the ``Terminals`` worksheet."""

    sheet = terminals_sheet(workbook)
    sheet.append(serialize_terminal(record))


def write_terminal(workbook: Workbook, row_index: int, record: Terminal) -> None:
    """Overwrite the row at ``row_index`` with ``record``; absent values clear their cells."""

    sheet = terminals_sheet(workbook)
    for column, value in enumerate(serialize_terminal(record), start=1):
        # cell(..., value=None) leaves the old value in place.
        sheet.cell(row=row_index, column=column).value = value


def locate_row(workbook: Workbook, key_column: str, key_value: str) -> Optional[int]:
    """Find a row on the ``Terminals`` sheet by matching a key column.

    Args:
        workbook (Workbook): Workbook holding the terminals sheet.
        key_column (str): Header title of the column storing the lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based row index of the first match, otherwise ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = terminals_sheet(workbook)
    # Build header -> column index map
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        # Hand-edited sheets may hold ids as numbers.
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_terminal(record: Terminal) -> list[object]:
    """Convert a terminal into the worksheet column ordering.

    Timestamps are stored as ISO-8601 strings and enumerations by label so the
    sheet stays readable when opened in Excel.
    """

    return [
        record.id,
        record.name,
        record.terminal_id,
        record.serial_number,
        record.line_serial_number,
        record.type.value,
        record.branch.value,
        record.dispatch_date.isoformat(),
        record.fedex_tracking_number,
        record.is_returned,
        record.return_date.isoformat() if record.return_date is not None else None,
        record.return_reason,
    ]


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def deserialize_terminal(raw_row: Sequence[object]) -> Terminal:
    """Convert a raw worksheet row into a :class:`Terminal`.

    Identifier columns are coerced to ``str`` because Excel likes to turn
    digit strings into numbers when a sheet is edited by hand.

    Raises:
        GatewayError: If the row holds values that cannot form a valid record.
    """

    cells = list(raw_row) + [None] * (len(TERMINAL_COLUMNS) - len(raw_row))
    (
        record_id,
        name,
        terminal_id,
        serial_number,
        line_serial_number,
        type_label,
        branch_label,
        dispatch_raw,
        fedex_tracking_number,
        is_returned,
        return_raw,
        return_reason,
    ) = cells[: len(TERMINAL_COLUMNS)]

    try:
        record = Terminal(
            id=str(record_id),
            name=str(name),
            terminal_id=str(terminal_id),
            serial_number=str(serial_number),
            line_serial_number=str(line_serial_number),
            type=TerminalType.parse(type_label),
            branch=Branch.parse(branch_label),
            dispatch_date=parse_timestamp(dispatch_raw),
            fedex_tracking_number=_optional_text(fedex_tracking_number),
            is_returned=_as_bool(is_returned),
            return_date=parse_timestamp(return_raw) if return_raw not in (None, "") else None,
            return_reason=_optional_text(return_reason),
        )
    except ValueError as exc:
        log.error("Corrupt terminal row '%s': %s", record_id, exc)
        raise GatewayError(f"Corrupt terminal row '{record_id}': {exc}") from exc

    problems = check_invariants(record)
    if problems:
        log.error("Terminal row '%s' breaks invariants: %s", record_id, ", ".join(problems))
        raise GatewayError(f"Terminal row '{record_id}' is inconsistent: {', '.join(problems)}")
    return record


class TerminalGateway(Protocol):
    """Operations the core issues against durable storage.

    Implementations raise :class:`NotFoundError` for unknown ids and
    :class:`GatewayError` for every other failure. They never retry.
    """

    def list(self, criteria: Optional[TerminalFilter] = None) -> List[Terminal]:
        ...

    def get(self, record_id: str) -> Terminal:
        ...

    def insert(self, draft: TerminalDraft) -> Terminal:
        ...

    def insert_many(self, drafts: Sequence[TerminalDraft]) -> List[Terminal]:
        ...

    def update(self, record_id: str, fields: Mapping[str, Any]) -> None:
        ...

    def delete(self, record_id: str) -> None:
        ...

    def delete_where(self, predicate: Callable[[Terminal], bool]) -> int:
        ...

    def count(self, criteria: Optional[TerminalFilter] = None) -> int:
        ...


def _new_record_id() -> str:
    return str(uuid.uuid4())


class WorkbookGateway:
    """Persistence gateway storing terminals on an ``.xlsx`` workbook.

    Every call opens the workbook, applies at most one change, and saves it
    before returning. Nothing is cached between calls, so the result of a read
    is only a snapshot.
    """

    def __init__(self, data_file: Path, *, id_factory: Callable[[], str] = _new_record_id) -> None:
        self.data_file = Path(data_file)
        self._id_factory = id_factory

    def __repr__(self) -> str:
        return f"WorkbookGateway({str(self.data_file)!r})"

    def _load(self) -> Workbook:
        try:
            return open_workbook(self.data_file)
        # openpyxl raises KeyError for a zip archive that is not a workbook.
        except (OSError, InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
            log.error("Unable to open workbook '%s': %s", self.data_file, exc)
            raise GatewayError(f"Unable to open workbook '{self.data_file}': {exc}") from exc

    def _save(self, workbook: Workbook) -> None:
        try:
            save_workbook(workbook, self.data_file)
        except OSError as exc:
            log.error("Unable to save workbook '%s': %s", self.data_file, exc)
            raise GatewayError(f"Unable to save workbook '{self.data_file}': {exc}") from exc

    def _require_row(self, workbook: Workbook, record_id: str) -> int:
        row_index = locate_row(workbook, "ID", record_id)
        if row_index is None:
            raise NotFoundError(f"Unknown terminal id: {record_id}")
        return row_index

    def list(self, criteria: Optional[TerminalFilter] = None) -> List[Terminal]:
        return filter_terminals(iter_terminals(self._load()), criteria)

    def get(self, record_id: str) -> Terminal:
        for record in iter_terminals(self._load()):
            if record.id == record_id:
                return record
        raise NotFoundError(f"Unknown terminal id: {record_id}")

    def insert(self, draft: TerminalDraft) -> Terminal:
        return self.insert_many([draft])[0]

    def insert_many(self, drafts: Sequence[TerminalDraft]) -> List[Terminal]:
        workbook = self._load()
        created = [Terminal.from_draft(self._id_factory(), draft) for draft in drafts]
        for record in created:
            append_terminal(workbook, record)
        self._save(workbook)
        log.debug("Inserted %d terminal rows into '%s'", len(created), self.data_file)
        return created

    def update(self, record_id: str, fields: Mapping[str, Any]) -> None:
        workbook = self._load()
        row_index = self._require_row(workbook, record_id)
        sheet = terminals_sheet(workbook)
        current = deserialize_terminal(next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True)))
        write_terminal(workbook, row_index, current.with_fields(**fields))
        self._save(workbook)

    def delete(self, record_id: str) -> None:
        workbook = self._load()
        row_index = self._require_row(workbook, record_id)
        terminals_sheet(workbook).delete_rows(row_index)
        self._save(workbook)

    def delete_where(self, predicate: Callable[[Terminal], bool]) -> int:
        workbook = self._load()
        sheet = terminals_sheet(workbook)
        doomed = [
            row_idx
            for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
            if any(cell is not None for cell in raw) and predicate(deserialize_terminal(raw))
        ]
        # Delete bottom-up so earlier indices stay valid.
        for row_idx in reversed(doomed):
            sheet.delete_rows(row_idx)
        if doomed:
            self._save(workbook)
        return len(doomed)

    def count(self, criteria: Optional[TerminalFilter] = None) -> int:
        return len(self.list(criteria))


__all__ = [
    "CONFIG_FILE_NAME",
    "TERMINALS_SHEET",
    "DEFAULT_IMPORT_BATCH_SIZE",
    "ConfigSettings",
    "find_config_file",
    "read_config",
    "parse_settings",
    "open_workbook",
    "save_workbook",
    "terminals_sheet",
    "iter_terminals",
    "append_terminal",
    "write_terminal",
    "locate_row",
    "serialize_terminal",
    "deserialize_terminal",
    "TerminalGateway",
    "WorkbookGateway",
]
