"""Filter/query composer for terminal listings.

A :class:`TerminalFilter` holds independently optional criteria. Supplied
criteria are combined with logical AND; the search term itself matches when
it is a case-insensitive substring of the name, terminal id, or serial
number. Omitted criteria do not filter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Union

from .constants import Branch
from .exceptions import FieldViolation, ValidationError
from .model import Terminal, as_utc, parse_timestamp


Predicate = Callable[[Terminal], bool]

STATUS_KEYWORDS = {
    "active": False,
    "returned": True,
}


@dataclass(frozen=True)
class TerminalFilter:
    """Optional criteria for selecting terminal records."""

    branch: Optional[Branch] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_returned: Optional[bool] = None
    search_term: Optional[str] = None

    @property
    def normalized_search(self) -> Optional[str]:
        """Lower-cased search term, or ``None`` when blank."""

        if self.search_term is None:
            return None
        term = self.search_term.strip().lower()
        return term or None

    def predicates(self) -> List[Predicate]:
        """Build one predicate per supplied criterion."""

        checks: List[Predicate] = []
        if self.branch is not None:
            branch = self.branch
            checks.append(lambda terminal: terminal.branch == branch)
        if self.start_date is not None:
            lower = as_utc(self.start_date)
            checks.append(lambda terminal: as_utc(terminal.dispatch_date) >= lower)
        if self.end_date is not None:
            upper = as_utc(self.end_date)
            checks.append(lambda terminal: as_utc(terminal.dispatch_date) <= upper)
        if self.is_returned is not None:
            flag = self.is_returned
            checks.append(lambda terminal: terminal.is_returned is flag)
        term = self.normalized_search
        if term is not None:
            checks.append(lambda terminal: _matches_search(terminal, term))
        return checks

    def matches(self, terminal: Terminal) -> bool:
        return all(check(terminal) for check in self.predicates())

    def is_empty(self) -> bool:
        return not self.predicates()

    @classmethod
    def from_options(
        cls,
        *,
        branch: Optional[str] = None,
        start_date: Optional[Union[str, date, datetime]] = None,
        end_date: Optional[Union[str, date, datetime]] = None,
        status: Optional[str] = None,
        search_term: Optional[str] = None,
    ) -> "TerminalFilter":
        """Build a filter from raw user input, rejecting malformed values.

        Date-only bounds cover the whole day: the start expands to midnight and
        the end to the last instant of that day.

        Raises:
            ValidationError: If the branch, status, or a date bound cannot be
                interpreted.
        """

        violations: List[FieldViolation] = []

        parsed_branch: Optional[Branch] = None
        if branch:
            try:
                parsed_branch = Branch.parse(branch)
            except ValueError:
                violations.append(FieldViolation("branch", f"unknown branch '{branch}'"))

        is_returned: Optional[bool] = None
        if status:
            key = status.strip().lower()
            if key not in STATUS_KEYWORDS:
                violations.append(FieldViolation("status", f"unknown status '{status}'"))
            else:
                is_returned = STATUS_KEYWORDS[key]

        lower = _parse_bound(violations, "start_date", start_date, end_of_day=False)
        upper = _parse_bound(violations, "end_date", end_date, end_of_day=True)

        if violations:
            raise ValidationError(violations)

        return cls(
            branch=parsed_branch,
            start_date=lower,
            end_date=upper,
            is_returned=is_returned,
            search_term=search_term,
        )


def _matches_search(terminal: Terminal, term: str) -> bool:
    return (
        term in terminal.name.lower()
        or term in terminal.terminal_id.lower()
        or term in terminal.serial_number.lower()
    )


def _parse_bound(
    violations: List[FieldViolation],
    field: str,
    value: Optional[Union[str, date, datetime]],
    *,
    end_of_day: bool,
) -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return parse_filter_date(value, end_of_day=end_of_day)
    except ValidationError as exc:
        violations.extend(FieldViolation(field, violation.message) for violation in exc.violations)
        return None


def parse_filter_date(value: Union[str, date, datetime], *, end_of_day: bool = False) -> datetime:
    """Parse a date bound supplied at the boundary of the composer.

    Raises:
        ValidationError: If ``value`` is not a recognizable date.
    """

    try:
        return parse_timestamp(value, end_of_day=end_of_day)
    except ValueError as exc:
        raise ValidationError([FieldViolation("date", f"cannot parse '{value}'")]) from exc


def filter_terminals(terminals: Iterable[Terminal], criteria: Optional[TerminalFilter] = None) -> List[Terminal]:
    """Return the records matching every supplied criterion, in input order.

    Args:
        terminals (Iterable[Terminal]): Candidate records.
        criteria (TerminalFilter | None): Criteria to apply; ``None`` keeps
            everything.

    Returns:
        list[Terminal]: Matching records, stable relative to the input.
    """

    if criteria is None:
        return list(terminals)
    checks = criteria.predicates()
    return [terminal for terminal in terminals if all(check(terminal) for check in checks)]


__all__ = [
    "Predicate",
    "STATUS_KEYWORDS",
    "TerminalFilter",
    "parse_filter_date",
    "filter_terminals",
]
