"""
Progress Aggregator — resolution completion from weighted group reports.

overall = Σ report.performance_percentage × weight(report.group) / 100

Each contribution is a float and is not rounded per term. A report whose
group holds no live assignment contributes nothing. The aggregator trusts
the write-time sum law and never normalizes; it only recomputes the live
weight total so callers can see (``weights_balanced``) when it drifted.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy.orm import Session

from resolution_workflow.domain.results import NotFoundError, OperationResult, run_operation
from resolution_workflow.domain.schema import (
    AssignmentView,
    GroupPerformance,
    PerformanceOverview,
    ProgressSummary,
    ReportStatus,
    ReportView,
)
from resolution_workflow.governance.weights import REQUIRED_TOTAL

logger = logging.getLogger(__name__)


def assignment_view(assignment: Any) -> AssignmentView:
    return AssignmentView(
        id=assignment.id,
        resolution_id=assignment.resolution_id,
        group_id=assignment.group_id,
        group_name=assignment.group.name if assignment.group is not None else "",
        weight=assignment.weight,
        assigned_by_id=assignment.assigned_by_id,
        assigned_at=assignment.assigned_at,
        status=assignment.status,
    )


def weighted_overall(weights_by_group: dict[int, int], reports: list[Any]) -> float:
    overall = 0.0
    for report in reports:
        weight = weights_by_group.get(report.group_id)
        if weight is None:
            continue
        overall += report.performance_percentage * weight / 100
    return overall


class ProgressAggregator:
    """Read-only views over assignments and reports."""

    def __init__(self, store: Any) -> None:
        self.store = store

    def summarize(self, session: Session, resolution_id: int) -> ProgressSummary:
        """Build the summary inside an open session. Raises ``NotFoundError``."""
        if self.store.get_resolution(session, resolution_id) is None:
            raise NotFoundError(f"Resolution {resolution_id} not found")

        assignments = self.store.assignments_for_resolution(session, resolution_id)
        reports = self.store.reports_for_resolution(session, resolution_id)

        # A group split across several rows holds the sum of its rows.
        weights_by_group: dict[int, int] = defaultdict(int)
        for assignment in assignments:
            weights_by_group[assignment.group_id] += assignment.weight

        weight_total = sum(a.weight for a in assignments)
        if assignments and weight_total != REQUIRED_TOTAL:
            logger.warning(
                "Resolution %s assignment weights sum to %d%%, not %d%%; progress not normalized",
                resolution_id, weight_total, REQUIRED_TOTAL,
            )

        return ProgressSummary(
            resolution_id=resolution_id,
            overall=weighted_overall(weights_by_group, reports),
            weight_total=weight_total,
            assignments=[assignment_view(a) for a in assignments],
            reports=[ReportView.model_validate(r) for r in reports],
        )

    def progress(self, resolution_id: int) -> OperationResult[ProgressSummary]:
        def _run() -> ProgressSummary:
            with self.store.transaction() as session:
                return self.summarize(session, resolution_id)

        return run_operation("progress", _run)

    def performance_overview(self) -> PerformanceOverview:
        """Report counts per status and mean self-assessed performance."""
        with self.store.transaction() as session:
            reports = self.store.all_reports(session)

            status_counts = {status: 0 for status in ReportStatus}
            by_group: dict[int, list[int]] = defaultdict(list)
            group_names: dict[int, str] = {}
            for report in reports:
                status_counts[ReportStatus(report.status)] += 1
                by_group[report.group_id].append(report.performance_percentage)
                if report.group_id not in group_names:
                    group = self.store.get_group(session, report.group_id)
                    group_names[report.group_id] = group.name if group else str(report.group_id)

            groups = [
                GroupPerformance(
                    group_id=group_id,
                    group_name=group_names[group_id],
                    report_count=len(values),
                    average_performance=round(sum(values) / len(values), 2),
                )
                for group_id, values in by_group.items()
            ]
            groups.sort(key=lambda g: g.group_name)

            average = (
                round(sum(r.performance_percentage for r in reports) / len(reports), 2)
                if reports
                else 0.0
            )

        return PerformanceOverview(
            total_reports=len(reports),
            status_counts=status_counts,
            average_performance=average,
            groups=groups,
        )
