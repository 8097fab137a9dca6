"""
Weight Validator — the sum law for contribution shares.

A resolution is fully distributed only when the weights of its assignments
add up to exactly 100. The validator enforces that law and nothing else:
it does not look for duplicate groups, since a group may legitimately hold
its share across several rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from pydantic import ValidationError

from resolution_workflow.domain.results import ValidationFailedError, WeightSumInvalidError
from resolution_workflow.domain.schema import AssignmentShare

logger = logging.getLogger(__name__)

REQUIRED_TOTAL = 100


@dataclass(frozen=True)
class WeightCheckResult:
    """Result of validating a set of contribution shares."""

    actual: int

    @property
    def is_valid(self) -> bool:
        return self.actual == REQUIRED_TOTAL

    @property
    def reason(self) -> str:
        if self.is_valid:
            return "Contribution weights sum to 100%"
        return f"Contribution weights sum to {self.actual}%, expected {REQUIRED_TOTAL}%"

    def raise_for_total(self) -> None:
        if not self.is_valid:
            raise WeightSumInvalidError(self.actual)


def as_share(share: Any) -> AssignmentShare:
    """Normalize a share given as a model, a mapping or a ``(group, weight)`` pair."""
    if isinstance(share, AssignmentShare):
        return share
    if isinstance(share, dict):
        return AssignmentShare(group_id=share["group_id"], weight=share["weight"])
    group_id, weight = share
    return AssignmentShare(group_id=group_id, weight=weight)


def coerce_shares(shares: Iterable[Any]) -> list[AssignmentShare]:
    """
    Normalize every proposed share, or fail listing each malformed one.

    Raises:
        ValidationFailedError: A share is missing its group or weight, has
            the wrong shape, or carries a non-integral weight.
    """
    try:
        proposed = list(shares)
    except TypeError:
        raise ValidationFailedError(["Shares must be a list of (group, weight) pairs"]) from None

    normalized: list[AssignmentShare] = []
    problems: list[str] = []
    for position, share in enumerate(proposed, start=1):
        try:
            normalized.append(as_share(share))
        except (ValidationError, KeyError, TypeError, ValueError):
            problems.append(
                f"Share {position} must be a group with a whole-number weight, got {share!r}"
            )
    if problems:
        raise ValidationFailedError(problems)
    return normalized


def _weight_of(share: Any) -> int:
    if isinstance(share, AssignmentShare):
        return share.weight
    if isinstance(share, dict):
        weight = share["weight"]
    else:
        _, weight = share
    integral = isinstance(weight, int) or (isinstance(weight, float) and weight.is_integer())
    if isinstance(weight, bool) or not integral:
        raise ValidationFailedError([f"Contribution weight must be a whole number, got {weight!r}"])
    return int(weight)


def validate(shares: Iterable[Any]) -> WeightCheckResult:
    """
    Check that proposed shares sum to exactly 100.

    Accepts ``AssignmentShare`` models, ``{"group_id", "weight"}`` mappings or
    plain ``(group, weight)`` pairs. An empty collection has a total of 0.
    A non-integral weight fails with ``ValidationFailedError`` rather than
    being rounded into the total.
    """
    total = sum(_weight_of(share) for share in shares)
    result = WeightCheckResult(actual=total)
    if not result.is_valid:
        logger.debug("Weight check failed: %s", result.reason)
    return result
