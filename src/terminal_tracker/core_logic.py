"""Business logic layer for the terminal tracker.

This module holds the terminal lifecycle (dispatch, return, reactivate,
delete) and the read-side helpers used by front-ends. It talks to storage only
through a :class:`~terminal_tracker.data_manager.TerminalGateway`, validates
every mutation with :mod:`terminal_tracker.model`, and keeps no cache: each
read goes back to the gateway.

Lifecycle::

    dispatch -> Active --return--> Returned
                  ^                   |
                  +----reactivate-----+
    Active | Returned --delete--> Deleted (record removed, no way back)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, ReportType
from .exceptions import (
    FieldViolation,
    GatewayError,
    InvalidStateError,
    PartialBatchFailure,
    ValidationError,
)
from .filters import TerminalFilter
from .import_mapper import map_import_rows, read_import_rows
from .model import (
    DispatchCommand,
    Terminal,
    TerminalDraft,
    TerminalState,
    resolve_timestamp,
    validate_dispatch,
    validate_return_reason,
)
from .reports import export_terminals_report


# Source states from which each lifecycle action may start.
ALLOWED_SOURCE_STATES: Dict[str, Tuple[TerminalState, ...]] = {
    "return": (TerminalState.ACTIVE,),
    "reactivate": (TerminalState.RETURNED,),
    "delete": (TerminalState.ACTIVE, TerminalState.RETURNED),
}


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the gateway used by the business layer."""

    settings: data_manager.ConfigSettings
    gateway: data_manager.TerminalGateway


@dataclass(frozen=True)
class TerminalStats:
    """Headline counts shown on the dashboard."""

    total: int
    active: int
    returned: int


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and bind a workbook gateway.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context ready for the orchestration functions below.

    Raises:
        FileNotFoundError: If the configuration file or the workbook it names
            cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    if not settings.data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {settings.data_file}")
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, gateway=data_manager.WorkbookGateway(settings.data_file))


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def require_state(terminal: Terminal, action: str) -> None:
    """Ensure ``action`` may start from the terminal's current state.

    Raises:
        InvalidStateError: If the lifecycle forbids the transition.
    """
    allowed = ALLOWED_SOURCE_STATES[action]
    if terminal.state not in allowed:
        log.warning(
            "Cannot %s terminal '%s' while it is %s",
            action,
            terminal.id,
            terminal.state.value,
        )
        raise InvalidStateError(
            f"Cannot {action} terminal '{terminal.terminal_id}': it is {terminal.state.value.lower()}"
        )


def get_terminal(context: RuntimeContext, record_id: str) -> Terminal:
    """Fetch a single record by id.

    Raises:
        NotFoundError: If no record has ``record_id``.
        GatewayError: If storage fails.
    """
    return context.gateway.get(record_id)


def list_terminals(context: RuntimeContext, criteria: Optional[TerminalFilter] = None) -> List[Terminal]:
    """Return a fresh snapshot of the records matching ``criteria``.

    The criteria are pushed down to the gateway; the result is stale as soon
    as any mutation happens and must be re-fetched.
    """
    terminals = context.gateway.list(criteria)
    log.debug("Listed %d terminals", len(terminals))
    return terminals


def terminal_stats(context: RuntimeContext) -> TerminalStats:
    """Count all, active, and returned terminals."""
    return TerminalStats(
        total=context.gateway.count(None),
        active=context.gateway.count(TerminalFilter(is_returned=False)),
        returned=context.gateway.count(TerminalFilter(is_returned=True)),
    )


def select_report_terminals(context: RuntimeContext, report_type: ReportType) -> List[Terminal]:
    """Return the records that belong in a report of ``report_type``."""
    if report_type is ReportType.ACTIVE:
        return list_terminals(context, TerminalFilter(is_returned=False))
    if report_type is ReportType.RETURNED:
        return list_terminals(context, TerminalFilter(is_returned=True))
    return list_terminals(context)


def export_report(
    context: RuntimeContext,
    report_type: ReportType,
    destination_dir: Path,
    *,
    today: Optional[date] = None,
) -> Path:
    """Write a spreadsheet report for ``report_type`` and return its path."""
    terminals = select_report_terminals(context, report_type)
    path = export_terminals_report(terminals, report_type, destination_dir, today=today)
    log.info("Exported %s report with %d terminals to '%s'", report_type.value, len(terminals), path)
    return path


def _ensure_unique_terminal_ids(context: RuntimeContext, drafts: Sequence[TerminalDraft]) -> None:
    """Reject drafts whose business ``terminal_id`` is already taken.

    Duplicates are checked against every stored record (active or returned)
    and within the batch itself.

    Raises:
        ValidationError: Naming ``terminal_id`` for every clash.
    """
    if not context.settings.rules.enforce_unique_terminal_id or not drafts:
        return

    existing = {terminal.terminal_id for terminal in context.gateway.list()}
    seen: Dict[str, int] = {}
    violations: List[FieldViolation] = []
    batch = len(drafts) > 1
    for position, draft in enumerate(drafts, start=1):
        row = position if batch else None
        if draft.terminal_id in existing:
            violations.append(
                FieldViolation("terminal_id", f"'{draft.terminal_id}' is already dispatched", row=row)
            )
        elif draft.terminal_id in seen:
            violations.append(
                FieldViolation(
                    "terminal_id",
                    f"'{draft.terminal_id}' duplicates row {seen[draft.terminal_id]}",
                    row=row,
                )
            )
        else:
            seen[draft.terminal_id] = position

    if violations:
        log.warning("Rejected %d duplicate terminal ids", len(violations))
        raise ValidationError(violations)


def dispatch_terminal(
    context: RuntimeContext,
    command: DispatchCommand,
    *,
    now: Optional[datetime] = None,
) -> Terminal:
    """Validate a dispatch request and create the record in the ``Active`` state.

    Args:
        context (RuntimeContext): Runtime context providing settings and the
            gateway.
        command (DispatchCommand): Raw field values for the new terminal.
        now (datetime | None): Submission time for the future-date check.

    Returns:
        Terminal: The stored record, with its gateway-assigned id.

    Raises:
        ValidationError: If the command violates model constraints or the
            terminal id is already in use.
        GatewayError: If storage fails.
    """
    try:
        draft = validate_dispatch(command, rules=context.settings.rules, now=now)
    except ValidationError as exc:
        log.warning("Rejected dispatch of terminal '%s': %s", command.terminal_id, exc)
        raise
    _ensure_unique_terminal_ids(context, [draft])

    terminal = context.gateway.insert(draft)
    log.info(
        "Dispatched terminal '%s' (%s) to %s as record '%s'",
        terminal.terminal_id,
        terminal.type.value,
        terminal.branch.value,
        terminal.id,
    )
    return terminal


def add_terminals(
    context: RuntimeContext,
    commands: Iterable[DispatchCommand],
    *,
    now: Optional[datetime] = None,
) -> List[Terminal]:
    """Dispatch many terminals at once.

    Every command is validated before anything is written, so a validation
    problem leaves storage untouched. Inserts then go to the gateway in chunks
    of ``settings.import_batch_size``; the gateway guarantees nothing across
    chunks.

    Returns:
        list[Terminal]: Stored records in input order.

    Raises:
        ValidationError: Listing every invalid field of every command.
        PartialBatchFailure: If a chunk failed after earlier chunks were
            stored; ``succeeded`` holds the stored records and ``failed`` the
            drafts that were not written.
        GatewayError: If the very first chunk failed.
    """
    commands = list(commands)
    if not commands:
        return []

    now = resolve_timestamp(now)
    drafts: List[TerminalDraft] = []
    violations: List[FieldViolation] = []
    for position, command in enumerate(commands, start=1):
        try:
            drafts.append(validate_dispatch(command, rules=context.settings.rules, now=now))
        except ValidationError as exc:
            violations.extend(
                FieldViolation(violation.field, violation.message, row=position) for violation in exc.violations
            )
    if violations:
        log.warning("Rejected batch of %d terminals with %d violations", len(commands), len(violations))
        raise ValidationError(violations)

    _ensure_unique_terminal_ids(context, drafts)

    batch_size = context.settings.import_batch_size
    created: List[Terminal] = []
    for start in range(0, len(drafts), batch_size):
        chunk = drafts[start : start + batch_size]
        try:
            created.extend(context.gateway.insert_many(chunk))
        except GatewayError as exc:
            if not created:
                log.error("Bulk dispatch failed before any terminal was stored: %s", exc)
                raise
            remaining = drafts[start:]
            log.error(
                "Bulk dispatch stopped after %d of %d terminals: %s",
                len(created),
                len(drafts),
                exc,
            )
            raise PartialBatchFailure(
                f"Stored {len(created)} of {len(drafts)} terminals before the gateway failed: {exc}",
                succeeded=created,
                failed=remaining,
            ) from exc

    log.info("Dispatched %d terminals in bulk", len(created))
    return created


def import_terminals(
    context: RuntimeContext,
    source: Path,
    *,
    now: Optional[datetime] = None,
) -> List[Terminal]:
    """Read a spreadsheet, map its rows, and dispatch them all.

    Raises:
        ValidationError: If the sheet is empty, a row misses required values,
            or a mapped row fails model validation.
        PartialBatchFailure: See :func:`add_terminals`.
    """
    now = resolve_timestamp(now)
    imported = map_import_rows(read_import_rows(source), now=now)
    return add_terminals(context, [row.command for row in imported], now=now)


def return_terminal(
    context: RuntimeContext,
    record_id: str,
    reason: Optional[str],
    *,
    when: Optional[datetime] = None,
) -> Terminal:
    """Move a terminal from ``Active`` to ``Returned``.

    Args:
        context (RuntimeContext): Runtime context.
        record_id (str): Id of the stored record.
        reason (str | None): Why the terminal came back.
        when (datetime | None): Return timestamp; defaults to now.

    Returns:
        Terminal: The record as it now stands.

    Raises:
        NotFoundError: If ``record_id`` is unknown.
        InvalidStateError: If the terminal is already returned; its return
            date is left untouched.
        ValidationError: If ``reason`` violates the configured bounds.
    """
    current = get_terminal(context, record_id)
    require_state(current, "return")
    try:
        reason_text = validate_return_reason(reason, rules=context.settings.rules)
    except ValidationError as exc:
        log.warning("Rejected return of terminal '%s': %s", current.terminal_id, exc)
        raise

    fields = {
        "is_returned": True,
        "return_date": resolve_timestamp(when),
        "return_reason": reason_text,
    }
    context.gateway.update(record_id, fields)
    log.info("Returned terminal '%s' from %s", current.terminal_id, current.branch.value)
    return current.with_fields(**fields)


def reactivate_terminal(context: RuntimeContext, record_id: str) -> Terminal:
    """Move a terminal from ``Returned`` back to ``Active``.

    Clears the return date and reason; every other field is kept.

    Raises:
        NotFoundError: If ``record_id`` is unknown.
        InvalidStateError: If the terminal is not currently returned.
    """
    current = get_terminal(context, record_id)
    require_state(current, "reactivate")

    fields = {"is_returned": False, "return_date": None, "return_reason": None}
    context.gateway.update(record_id, fields)
    log.info("Reactivated terminal '%s' at %s", current.terminal_id, current.branch.value)
    return current.with_fields(**fields)


def delete_terminal(context: RuntimeContext, record_id: str) -> None:
    """Permanently remove one record.

    Raises:
        NotFoundError: If the record is already absent.
    """
    context.gateway.delete(record_id)
    log.info("Deleted terminal record '%s'", record_id)


def delete_all_terminals(context: RuntimeContext) -> int:
    """Permanently remove every record; a no-op on an empty store.

    Returns:
        int: Number of records removed.

    Raises:
        PartialBatchFailure: If the gateway failed after removing some records;
            ``succeeded`` lists the removed ids and ``failed`` the survivors.
        GatewayError: If the gateway failed and nothing was removed.
    """
    before = [terminal.id for terminal in context.gateway.list()]
    if not before:
        log.info("Delete-all requested on an empty store")
        return 0

    try:
        removed = context.gateway.delete_where(lambda terminal: True)
    except GatewayError as exc:
        if isinstance(exc, PartialBatchFailure):
            raise
        try:
            survivors = {terminal.id for terminal in context.gateway.list()}
        except GatewayError:
            log.error("Delete-all failed and the store could not be re-read: %s", exc)
            raise exc
        deleted = [record_id for record_id in before if record_id not in survivors]
        if not deleted:
            log.error("Delete-all failed before removing anything: %s", exc)
            raise
        failed = [record_id for record_id in before if record_id in survivors]
        log.error("Delete-all removed %d of %d terminals before failing: %s", len(deleted), len(before), exc)
        raise PartialBatchFailure(
            f"Removed {len(deleted)} of {len(before)} terminals before the gateway failed: {exc}",
            succeeded=deleted,
            failed=failed,
        ) from exc

    log.info("Deleted all %d terminal records", removed)
    return removed
