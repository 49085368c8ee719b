"""Terminal record model.

Defines the shape of a terminal record and the rules a dispatch request must
satisfy before it may be stored. Everything here is pure: no I/O, no logging
of successful paths, and no dependency on how records are persisted.

The canonical ruleset is one rule per field:

* ``name``: required, at most 25 characters.
* ``terminal_id``: required, at most 8 characters, no whitespace, and the
  configured prefix when :attr:`ValidationRules.terminal_id_prefix` is set.
* ``serial_number``: required, 5 to 11 characters.
* ``line_serial_number``: required, digits only, 16 to 18 characters.
* ``type`` / ``branch``: members of the closed enumerations.
* ``dispatch_date``: required and not later than the submission time.
* ``return_reason``: 3 to 255 characters when the deployment enforces it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any, List, Optional, Union

from .constants import (
    LINE_SERIAL_MAX_LENGTH,
    LINE_SERIAL_MIN_LENGTH,
    NAME_MAX_LENGTH,
    RETURN_REASON_MAX_LENGTH,
    RETURN_REASON_MIN_LENGTH,
    SERIAL_NUMBER_MAX_LENGTH,
    SERIAL_NUMBER_MIN_LENGTH,
    TERMINAL_ID_MAX_LENGTH,
    Branch,
    TerminalType,
)
from .exceptions import FieldViolation, ValidationError


_DIGITS = re.compile(r"^[0-9]+$")
_NO_WHITESPACE = re.compile(r"^\S+$")

# Accepted in addition to ISO-8601; the last two match exported reports.
_DATE_FORMATS = (
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


class TerminalState(str, Enum):
    """Lifecycle states a stored terminal record can be in."""

    ACTIVE = "Active"
    RETURNED = "Returned"


@dataclass(frozen=True)
class ValidationRules:
    """Deployment-level switches layered on top of the canonical field rules."""

    terminal_id_prefix: str = ""
    enforce_return_reason: bool = True
    enforce_unique_terminal_id: bool = True


@dataclass(frozen=True)
class DispatchCommand:
    """User intent for dispatching a terminal to a branch.

    Values are loosely typed because they originate from forms, CLI arguments,
    or spreadsheet cells; :func:`validate_dispatch` turns them into a
    :class:`TerminalDraft`.
    """

    name: Any
    terminal_id: Any
    serial_number: Any
    line_serial_number: Any
    type: Any
    branch: Any
    dispatch_date: Any = None
    fedex_tracking_number: Any = None


@dataclass(frozen=True)
class TerminalDraft:
    """Validated creation payload for a terminal that has no id yet."""

    name: str
    terminal_id: str
    serial_number: str
    line_serial_number: str
    type: TerminalType
    branch: Branch
    dispatch_date: datetime
    fedex_tracking_number: Optional[str] = None


@dataclass(frozen=True)
class Terminal:
    """A stored terminal record."""

    id: str
    name: str
    terminal_id: str
    serial_number: str
    line_serial_number: str
    type: TerminalType
    branch: Branch
    dispatch_date: datetime
    fedex_tracking_number: Optional[str] = None
    is_returned: bool = False
    return_date: Optional[datetime] = None
    return_reason: Optional[str] = None

    @property
    def state(self) -> TerminalState:
        return TerminalState.RETURNED if self.is_returned else TerminalState.ACTIVE

    @classmethod
    def from_draft(cls, record_id: str, draft: TerminalDraft) -> "Terminal":
        """Materialize a freshly dispatched record; always starts active."""

        return cls(
            id=record_id,
            name=draft.name,
            terminal_id=draft.terminal_id,
            serial_number=draft.serial_number,
            line_serial_number=draft.line_serial_number,
            type=draft.type,
            branch=draft.branch,
            dispatch_date=draft.dispatch_date,
            fedex_tracking_number=draft.fedex_tracking_number,
        )

    def with_fields(self, **fields: Any) -> "Terminal":
        """Return a copy with ``fields`` replaced; ``id`` and ``dispatch_date`` are fixed."""

        for immutable in ("id", "dispatch_date"):
            if immutable in fields and fields[immutable] != getattr(self, immutable):
                raise ValueError(f"Field '{immutable}' cannot change after creation")
        return replace(self, **fields)


def as_utc(moment: datetime) -> datetime:
    """Normalize a datetime to UTC, treating naive values as already UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` normalized to UTC, or the current UTC time."""

    return as_utc(candidate) if candidate is not None else datetime.now(UTC)


def parse_timestamp(value: Union[str, date, datetime], *, end_of_day: bool = False) -> datetime:
    """Parse a timestamp from a datetime, date, or text value.

    Date-only inputs expand to midnight, or to the last microsecond of the day
    when ``end_of_day`` is set. Naive results are interpreted as UTC.

    Raises:
        ValueError: If ``value`` cannot be interpreted as a point in time.
    """

    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return _expand_date(value, end_of_day=end_of_day)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("Empty timestamp")

    # A bare ISO date (extended or basic form) has no time part; honour end_of_day.
    try:
        return _expand_date(date.fromisoformat(text), end_of_day=end_of_day)
    except ValueError:
        pass
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            parsed_date = datetime.strptime(text, fmt).date()
        except ValueError:
            continue
        return _expand_date(parsed_date, end_of_day=end_of_day)

    raise ValueError(f"Unrecognized timestamp: {value!r}")


def _expand_date(day: date, *, end_of_day: bool) -> datetime:
    return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=UTC)


def _text(value: Any) -> Optional[str]:
    """Coerce a loosely typed value to stripped text, ``None`` when blank."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _check_length(
    violations: List[FieldViolation],
    field: str,
    value: Optional[str],
    *,
    minimum: int = 1,
    maximum: int,
) -> Optional[str]:
    if value is None:
        violations.append(FieldViolation(field, "is required"))
        return None
    if not minimum <= len(value) <= maximum:
        if minimum == 1:
            message = f"must be at most {maximum} characters"
        else:
            message = f"must be between {minimum} and {maximum} characters"
        violations.append(FieldViolation(field, message))
        return None
    return value


def validate_dispatch(
    command: DispatchCommand,
    *,
    rules: Optional[ValidationRules] = None,
    now: Optional[datetime] = None,
) -> TerminalDraft:
    """Validate a dispatch request and return the creation payload.

    Every field is checked before raising so the resulting
    :class:`ValidationError` lists all violated constraints at once.

    Args:
        command (DispatchCommand): Raw field values supplied by the caller.
        rules (ValidationRules | None): Deployment switches; defaults apply
            when omitted.
        now (datetime | None): Submission time used for the future-date check.

    Returns:
        TerminalDraft: Typed payload ready to hand to a gateway.

    Raises:
        ValidationError: If any field violates its constraint.
    """

    rules = rules or ValidationRules()
    now = resolve_timestamp(now)
    violations: List[FieldViolation] = []

    name = _check_length(violations, "name", _text(command.name), maximum=NAME_MAX_LENGTH)

    terminal_id = _check_length(
        violations, "terminal_id", _text(command.terminal_id), maximum=TERMINAL_ID_MAX_LENGTH
    )
    if terminal_id is not None:
        if not _NO_WHITESPACE.match(terminal_id):
            violations.append(FieldViolation("terminal_id", "must not contain whitespace"))
            terminal_id = None
        elif rules.terminal_id_prefix and not terminal_id.startswith(rules.terminal_id_prefix):
            violations.append(
                FieldViolation("terminal_id", f"must start with '{rules.terminal_id_prefix}'")
            )
            terminal_id = None

    serial_number = _check_length(
        violations,
        "serial_number",
        _text(command.serial_number),
        minimum=SERIAL_NUMBER_MIN_LENGTH,
        maximum=SERIAL_NUMBER_MAX_LENGTH,
    )

    line_serial_number = _check_length(
        violations,
        "line_serial_number",
        _text(command.line_serial_number),
        minimum=LINE_SERIAL_MIN_LENGTH,
        maximum=LINE_SERIAL_MAX_LENGTH,
    )
    if line_serial_number is not None and not _DIGITS.match(line_serial_number):
        violations.append(FieldViolation("line_serial_number", "must contain only digits"))
        line_serial_number = None

    terminal_type: Optional[TerminalType] = None
    if _text(command.type) is None:
        violations.append(FieldViolation("type", "is required"))
    else:
        try:
            terminal_type = TerminalType.parse(command.type)
        except ValueError:
            violations.append(FieldViolation("type", f"unknown terminal type '{command.type}'"))

    branch: Optional[Branch] = None
    if _text(command.branch) is None:
        violations.append(FieldViolation("branch", "is required"))
    else:
        try:
            branch = Branch.parse(command.branch)
        except ValueError:
            violations.append(FieldViolation("branch", f"unknown branch '{command.branch}'"))

    dispatch_date: Optional[datetime] = None
    if command.dispatch_date is None or _text(command.dispatch_date) is None:
        violations.append(FieldViolation("dispatch_date", "is required"))
    else:
        try:
            dispatch_date = parse_timestamp(command.dispatch_date)
        except ValueError:
            violations.append(FieldViolation("dispatch_date", "is not a valid date"))
        else:
            if dispatch_date > now:
                violations.append(FieldViolation("dispatch_date", "must not be in the future"))

    if violations:
        raise ValidationError(violations)

    return TerminalDraft(
        name=name,
        terminal_id=terminal_id,
        serial_number=serial_number,
        line_serial_number=line_serial_number,
        type=terminal_type,
        branch=branch,
        dispatch_date=dispatch_date,
        fedex_tracking_number=_text(command.fedex_tracking_number),
    )


def validate_return_reason(reason: Optional[str], *, rules: Optional[ValidationRules] = None) -> Optional[str]:
    """Validate and normalize the reason given for a return.

    When the deployment enforces return reasons the stripped text must be
    3 to 255 characters; otherwise a blank reason is allowed and stored as
    ``None``.

    Raises:
        ValidationError: If the reason violates the configured bounds.
    """

    rules = rules or ValidationRules()
    text = _text(reason)
    if text is None:
        if rules.enforce_return_reason:
            raise ValidationError([FieldViolation("return_reason", "is required")])
        return None

    minimum = RETURN_REASON_MIN_LENGTH if rules.enforce_return_reason else 1
    if not minimum <= len(text) <= RETURN_REASON_MAX_LENGTH:
        raise ValidationError(
            [
                FieldViolation(
                    "return_reason",
                    f"must be between {minimum} and {RETURN_REASON_MAX_LENGTH} characters",
                )
            ]
        )
    return text


def check_invariants(terminal: Terminal) -> List[str]:
    """List lifecycle invariant breaches of a stored record (empty when sound)."""

    problems: List[str] = []
    if not terminal.is_returned and (terminal.return_date is not None or terminal.return_reason is not None):
        problems.append("active terminal carries return details")
    if terminal.is_returned and terminal.return_date is None:
        problems.append("returned terminal has no return date")
    return problems


__all__ = [
    "TerminalState",
    "ValidationRules",
    "DispatchCommand",
    "TerminalDraft",
    "Terminal",
    "as_utc",
    "resolve_timestamp",
    "parse_timestamp",
    "validate_dispatch",
    "validate_return_reason",
    "check_invariants",
]
