"""
Workflow results — error kinds and the explicit success/failure envelope.

Inside a service, a violated rule is raised as a ``WorkflowError`` subclass
so that the surrounding store transaction rolls back. At the public
boundary the error is folded into an ``OperationResult`` carrying a
structured ``Failure`` (kind + human-readable detail), which is what the
calling layer maps to its own transport signal.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    """Categories of rejected workflow calls."""

    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    WEIGHT_SUM_INVALID = "weight_sum_invalid"
    PERMISSION_DENIED = "permission_denied"
    INVALID_STATE_TRANSITION = "invalid_state_transition"


class WorkflowError(Exception):
    """Base class for rule violations raised inside a workflow operation."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, detail=self.detail)


class NotFoundError(WorkflowError):
    """A referenced resolution, report, group, meeting or actor does not exist."""

    kind = ErrorKind.NOT_FOUND


class ValidationFailedError(WorkflowError):
    """One or more content rules were violated; all of them are listed."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, violations: list[str]) -> None:
        super().__init__("; ".join(violations))
        self.violations = list(violations)

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, detail=self.detail, violations=tuple(self.violations))


class WeightSumInvalidError(WorkflowError):
    """Contribution weights do not add up to exactly 100."""

    kind = ErrorKind.WEIGHT_SUM_INVALID

    def __init__(self, actual: int) -> None:
        super().__init__(
            f"Total contribution percentage must equal 100%, got {actual}%"
        )
        self.actual = actual

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, detail=self.detail, actual=self.actual)


class PermissionDeniedError(WorkflowError):
    """The actor lacks the required privilege or jurisdiction match."""

    kind = ErrorKind.PERMISSION_DENIED


class InvalidStateTransitionError(WorkflowError):
    """The record is not in a state from which the requested step is allowed."""

    kind = ErrorKind.INVALID_STATE_TRANSITION


_ERRORS_BY_KIND: dict[ErrorKind, type[WorkflowError]] = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    ErrorKind.INVALID_STATE_TRANSITION: InvalidStateTransitionError,
}


@dataclass(frozen=True)
class Failure:
    """Structured reason for a rejected call."""

    kind: ErrorKind
    detail: str
    violations: tuple[str, ...] = ()
    actual: int | None = None

    def to_error(self) -> WorkflowError:
        if self.kind == ErrorKind.VALIDATION_FAILED:
            return ValidationFailedError(list(self.violations) or [self.detail])
        if self.kind == ErrorKind.WEIGHT_SUM_INVALID:
            return WeightSumInvalidError(self.actual or 0)
        return _ERRORS_BY_KIND[self.kind](self.detail)


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a public workflow operation: a value or a failure, never both."""

    value: T | None = None
    failure: Failure | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T | None = None) -> OperationResult[T]:
        return cls(value=value)

    @classmethod
    def from_error(cls, error: WorkflowError) -> OperationResult[T]:
        return cls(failure=error.to_failure())

    def unwrap(self) -> T:
        """Return the value, or raise the failure as its ``WorkflowError``."""
        if self.failure is not None:
            raise self.failure.to_error()
        return self.value  # type: ignore[return-value]


def run_operation(name: str, operation: Callable[[], T]) -> OperationResult[T]:
    """
    Execute ``operation`` and fold any ``WorkflowError`` into a failure result.

    Only rule violations are folded; infrastructure errors propagate.
    """
    try:
        return OperationResult.success(operation())
    except WorkflowError as exc:
        logger.info("%s rejected: kind=%s detail=%s", name, exc.kind.value, exc.detail)
        return OperationResult.from_error(exc)
