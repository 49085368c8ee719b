"""Error taxonomy shared by the model, gateway, and business logic layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence


class TerminalTrackerError(Exception):
    """Base class for every error raised by the package."""


class BusinessRuleViolation(TerminalTrackerError):
    """Raised when a requested operation violates a domain constraint."""


@dataclass(frozen=True)
class FieldViolation:
    """One violated constraint, optionally tied to a source row."""

    field: str
    message: str
    row: Optional[int] = None

    def __str__(self) -> str:
        if self.row is None:
            return f"{self.field}: {self.message}"
        return f"row {self.row}: {self.field}: {self.message}"


class ValidationError(BusinessRuleViolation):
    """Raised when input fails model constraints.

    Every violated constraint is collected in :attr:`violations` so callers can
    report all problems at once rather than one per attempt.
    """

    def __init__(self, violations: Iterable[FieldViolation], message: Optional[str] = None) -> None:
        self.violations: List[FieldViolation] = list(violations)
        if message is None:
            message = "; ".join(str(violation) for violation in self.violations) or "Invalid input"
        super().__init__(message)

    @property
    def fields(self) -> List[str]:
        """Return the violated field names in reporting order, without repeats."""

        seen: List[str] = []
        for violation in self.violations:
            if violation.field not in seen:
                seen.append(violation.field)
        return seen


class InvalidStateError(BusinessRuleViolation):
    """Raised when a lifecycle transition is not allowed from the current state."""


class NotFoundError(BusinessRuleViolation):
    """Raised when an operation references a terminal record that does not exist."""


class GatewayError(TerminalTrackerError):
    """Raised when the persistence layer fails for reasons opaque to the core."""


class PartialBatchFailure(GatewayError):
    """Raised when a bulk operation succeeded for some records but not others.

    ``succeeded`` holds the records (or ids) the gateway applied and ``failed``
    the ones it did not, so the caller can decide how to continue.
    """

    def __init__(self, message: str, *, succeeded: Sequence[object], failed: Sequence[object]) -> None:
        super().__init__(message)
        self.succeeded = list(succeeded)
        self.failed = list(failed)


__all__ = [
    "TerminalTrackerError",
    "BusinessRuleViolation",
    "FieldViolation",
    "ValidationError",
    "InvalidStateError",
    "NotFoundError",
    "GatewayError",
    "PartialBatchFailure",
]
