"""
Report Lifecycle — two-stage approval of group progress reports.

State machine:

    SUBMITTED ──approve──▶ APPROVED_BY_STAGE1 ──approve──▶ APPROVED_BY_STAGE2 (final)
        │                        │
        └──reject──▶ REJECTED_BY_STAGE1      └──reject──▶ REJECTED_BY_STAGE2
                         │                                   │
                         └────────── resubmit ──▶ SUBMITTED ◀┘

Stage 1 is reviewed by whoever currently holds the delegation-head
privilege (leader or deputy of the "Head Of Delegation" group, derived on
every check). Stage 2 belongs to the commissioner general role.

This is the only writer of report status and reviewer fields. Every write
goes through the report's ``row_version`` lock, so two reviewers racing on
the same report cannot both succeed: the slower write is rejected as an
invalid state transition.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from resolution_workflow.config import settings
from resolution_workflow.domain.results import (
    InvalidStateTransitionError,
    NotFoundError,
    OperationResult,
    PermissionDeniedError,
    ValidationFailedError,
    run_operation,
)
from resolution_workflow.domain.schema import (
    PRIVILEGE_BEARING_ROLES,
    REJECTED_REPORT_STATES,
    REPORTABLE_RESOLUTION_STATES,
    STAGE2_REVIEWER_ROLE,
    ReportRevision,
    ReportStatus,
    ReportSubmission,
    ReportView,
    ResolutionStatus,
)
from resolution_workflow.governance.privileges import PrivilegeDeriver
from resolution_workflow.notifications.dispatch import (
    Notice,
    NotificationDispatcher,
    Recipient,
    forwarded_for_final_review_notice,
    report_submitted_notice,
    review_outcome_notice,
)
from resolution_workflow.store.models import ReportDB, utcnow

logger = logging.getLogger(__name__)

Delivery = tuple[list[Recipient], Notice]


def content_violations(
    performance_percentage: int | None,
    progress_details: str | None,
    min_detail_length: int,
) -> list[str]:
    """Every rule the report content breaks, in a stable order."""
    violations = []
    details = (progress_details or "").strip()
    if not details:
        violations.append("Progress details are required")
    elif len(details) < min_detail_length:
        violations.append(
            f"Progress details must be at least {min_detail_length} characters long"
        )

    if performance_percentage is None:
        violations.append("Performance percentage is required")
    elif not 0 <= performance_percentage <= 100:
        violations.append("Performance percentage must be between 0 and 100")
    return violations


class ReportLifecycle:
    """
    Submission, review and resubmission of progress reports.

    Args:
        store: The ``RecordStore``.
        privileges: Derives the stage-1 review privilege.
        dispatcher: Fan-out for review notifications.
        min_detail_length: Minimum trimmed length of progress details.
    """

    def __init__(
        self,
        store: Any,
        privileges: PrivilegeDeriver | None = None,
        dispatcher: NotificationDispatcher | None = None,
        min_detail_length: int | None = None,
    ) -> None:
        self.store = store
        self.privileges = privileges or PrivilegeDeriver(store)
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.min_detail_length = (
            min_detail_length
            if min_detail_length is not None
            else settings.min_progress_detail_length
        )

    # ════════════════════════════════════════════════════════════
    # Transitions
    # ════════════════════════════════════════════════════════════

    def submit(
        self, submission: ReportSubmission, submitter_id: int
    ) -> OperationResult[ReportView]:
        """
        Create a report in SUBMITTED and tell every stage-1 reviewer.

        The submitter must belong to the reporting group, the group must hold
        an assignment on the resolution, and the resolution must still be
        ASSIGNED or IN_PROGRESS.
        """
        deliveries: list[Delivery] = []

        def _run() -> ReportView:
            violations = content_violations(
                submission.performance_percentage,
                submission.progress_details,
                self.min_detail_length,
            )
            if submission.resolution_id is None:
                violations.append("Resolution is required")
            if submission.group_id is None:
                violations.append("Group is required")
            if violations:
                raise ValidationFailedError(violations)

            with self.store.transaction() as session:
                submitter = self._load_actor(session, submitter_id)
                resolution = self.store.get_resolution(session, submission.resolution_id)
                if resolution is None:
                    raise NotFoundError(f"Resolution {submission.resolution_id} not found")
                if self.store.get_group(session, submission.group_id) is None:
                    raise NotFoundError(f"Group {submission.group_id} not found")

                assigned_groups = {
                    a.group_id
                    for a in self.store.assignments_for_resolution(session, resolution.id)
                }
                if submission.group_id not in assigned_groups:
                    raise PermissionDeniedError(
                        f"Group {submission.group_id} holds no assignment "
                        f"on resolution {resolution.id}"
                    )
                self._require_reportable(resolution)
                if submitter.group_id != submission.group_id:
                    raise PermissionDeniedError(
                        f"Actor {submitter_id} is not a member of group {submission.group_id}"
                    )

                report = ReportDB(
                    resolution_id=resolution.id,
                    group_id=submission.group_id,
                    submitted_by_id=submitter.id,
                    performance_percentage=submission.performance_percentage,
                    progress_details=submission.progress_details.strip(),
                    hindrances=submission.hindrances,
                    status=ReportStatus.SUBMITTED,
                    submitted_at=utcnow(),
                    is_final=False,
                    version=1,
                )
                session.add(report)
                session.flush()

                deliveries.append(
                    (
                        self._stage1_recipients(session),
                        report_submitted_notice(report.id, resolution.title, submitter.name),
                    )
                )
                view = ReportView.model_validate(report)

            logger.info(
                "Report %s submitted: resolution=%s group=%s performance=%d%%",
                view.id, view.resolution_id, view.group_id, view.performance_percentage,
            )
            return view

        return self._finish(run_operation("submit", _run), deliveries)

    def review_stage1(
        self,
        report_id: int,
        reviewer_id: int,
        approved: bool,
        comments: str | None = None,
    ) -> OperationResult[ReportView]:
        """First-stage decision by a holder of the delegation-head privilege."""
        deliveries: list[Delivery] = []

        def _run() -> ReportView:
            with self.store.transaction() as session:
                reviewer = self._load_actor(session, reviewer_id)
                if not self.privileges.has_elevated_review_privilege(reviewer):
                    raise PermissionDeniedError(
                        f"Actor {reviewer_id} does not hold the delegation-head review privilege"
                    )
                report = self._load_report(session, report_id)
                if report.status != ReportStatus.SUBMITTED:
                    raise InvalidStateTransitionError(
                        f"Report {report_id} is {report.status.value}; "
                        "stage-1 review needs SUBMITTED"
                    )

                report.status = (
                    ReportStatus.APPROVED_BY_STAGE1 if approved else ReportStatus.REJECTED_BY_STAGE1
                )
                report.stage1_reviewer_id = reviewer.id
                report.stage1_comments = comments
                report.stage1_reviewed_at = utcnow()
                report.updated_at = report.stage1_reviewed_at
                session.flush()

                title = self._resolution_title(session, report)
                if approved:
                    deliveries.append(
                        (
                            [
                                Recipient.of(a)
                                for a in self.store.actors_by_roles(session, {STAGE2_REVIEWER_ROLE})
                            ],
                            forwarded_for_final_review_notice(report.id, title),
                        )
                    )
                deliveries.append(
                    (
                        self._submitter_recipients(session, report),
                        review_outcome_notice(
                            report.id, title, approved, reviewer.name, comments, final=False
                        ),
                    )
                )
                view = ReportView.model_validate(report)

            logger.info(
                "Report %s stage-1 %s by actor %s",
                report_id, "approved" if approved else "rejected", reviewer_id,
            )
            return view

        return self._finish(run_operation("review_stage1", _run), deliveries)

    def review_stage2(
        self,
        report_id: int,
        reviewer_id: int,
        approved: bool,
        comments: str | None = None,
    ) -> OperationResult[ReportView]:
        """Final decision; only reports already approved at stage 1 qualify."""
        deliveries: list[Delivery] = []

        def _run() -> ReportView:
            with self.store.transaction() as session:
                report = self._load_report(session, report_id)
                reviewer = self._load_actor(session, reviewer_id)
                if reviewer.role != STAGE2_REVIEWER_ROLE:
                    raise PermissionDeniedError(
                        f"Stage-2 review requires role '{STAGE2_REVIEWER_ROLE.value}'"
                    )
                if report.status != ReportStatus.APPROVED_BY_STAGE1:
                    raise InvalidStateTransitionError(
                        f"Report {report_id} is {report.status.value}; "
                        "stage-2 review needs APPROVED_BY_STAGE1"
                    )

                report.status = (
                    ReportStatus.APPROVED_BY_STAGE2 if approved else ReportStatus.REJECTED_BY_STAGE2
                )
                report.stage2_reviewer_id = reviewer.id
                report.stage2_comments = comments
                report.stage2_reviewed_at = utcnow()
                report.updated_at = report.stage2_reviewed_at
                report.is_final = approved
                session.flush()

                deliveries.append(
                    (
                        self._submitter_recipients(session, report),
                        review_outcome_notice(
                            report.id,
                            self._resolution_title(session, report),
                            approved,
                            reviewer.name,
                            comments,
                            final=approved,
                        ),
                    )
                )
                view = ReportView.model_validate(report)

            logger.info(
                "Report %s stage-2 %s by actor %s",
                report_id, "approved" if approved else "rejected", reviewer_id,
            )
            return view

        return self._finish(run_operation("review_stage2", _run), deliveries)

    def resubmit(
        self, report_id: int, actor_id: int, revision: ReportRevision
    ) -> OperationResult[ReportView]:
        """
        Send a rejected report back to stage 1 with revised content.

        Clears both stages' reviewer fields and bumps ``version``.
        """
        deliveries: list[Delivery] = []

        def _run() -> ReportView:
            violations = content_violations(
                revision.performance_percentage,
                revision.progress_details,
                self.min_detail_length,
            )
            if violations:
                raise ValidationFailedError(violations)

            with self.store.transaction() as session:
                report = self._load_report(session, report_id)
                if report.submitted_by_id != actor_id:
                    raise PermissionDeniedError(
                        f"Only the original submitter may resubmit report {report_id}"
                    )
                if ReportStatus(report.status) not in REJECTED_REPORT_STATES:
                    raise InvalidStateTransitionError(
                        f"Report {report_id} is {report.status.value}; "
                        "only rejected reports can be resubmitted"
                    )
                resolution = self.store.get_resolution(session, report.resolution_id)
                self._require_reportable(resolution)

                report.performance_percentage = revision.performance_percentage
                report.progress_details = revision.progress_details.strip()
                report.hindrances = revision.hindrances
                report.status = ReportStatus.SUBMITTED
                report.stage1_reviewer_id = None
                report.stage1_comments = None
                report.stage1_reviewed_at = None
                report.stage2_reviewer_id = None
                report.stage2_comments = None
                report.stage2_reviewed_at = None
                report.is_final = False
                report.version = report.version + 1
                report.submitted_at = report.updated_at = utcnow()
                session.flush()

                submitter = self.store.get_actor(session, actor_id)
                deliveries.append(
                    (
                        self._stage1_recipients(session),
                        report_submitted_notice(
                            report.id, resolution.title, submitter.name, resubmission=True
                        ),
                    )
                )
                view = ReportView.model_validate(report)

            logger.info("Report %s resubmitted as version %d", report_id, view.version)
            return view

        return self._finish(run_operation("resubmit", _run), deliveries)

    # ════════════════════════════════════════════════════════════
    # Queries
    # ════════════════════════════════════════════════════════════

    def get_report(self, report_id: int) -> OperationResult[ReportView]:
        def _run() -> ReportView:
            with self.store.transaction() as session:
                return ReportView.model_validate(self._load_report(session, report_id))

        return run_operation("get_report", _run)

    def reports_for_resolution(self, resolution_id: int) -> OperationResult[list[ReportView]]:
        def _run() -> list[ReportView]:
            with self.store.transaction() as session:
                if self.store.get_resolution(session, resolution_id) is None:
                    raise NotFoundError(f"Resolution {resolution_id} not found")
                return self._views(self.store.reports_for_resolution(session, resolution_id))

        return run_operation("reports_for_resolution", _run)

    def reports_for_group(self, group_id: int) -> OperationResult[list[ReportView]]:
        def _run() -> list[ReportView]:
            with self.store.transaction() as session:
                if self.store.get_group(session, group_id) is None:
                    raise NotFoundError(f"Group {group_id} not found")
                return self._views(self.store.reports_for_group(session, group_id))

        return run_operation("reports_for_group", _run)

    def reports_by_submitter(self, actor_id: int) -> OperationResult[list[ReportView]]:
        def _run() -> list[ReportView]:
            with self.store.transaction() as session:
                self._load_actor(session, actor_id)
                return self._views(self.store.reports_by_submitter(session, actor_id))

        return run_operation("reports_by_submitter", _run)

    def reports_by_status(self, status: ReportStatus) -> list[ReportView]:
        with self.store.transaction() as session:
            return self._views(self.store.reports_by_status(session, status))

    def stage1_queue(self) -> list[ReportView]:
        """Reports waiting for a first-stage decision, oldest first."""
        return self.reports_by_status(ReportStatus.SUBMITTED)

    def stage2_queue(self) -> list[ReportView]:
        """Reports waiting for the final decision, oldest first."""
        return self.reports_by_status(ReportStatus.APPROVED_BY_STAGE1)

    # ════════════════════════════════════════════════════════════
    # Internals
    # ════════════════════════════════════════════════════════════

    @staticmethod
    def _views(reports: list[ReportDB]) -> list[ReportView]:
        return [ReportView.model_validate(r) for r in reports]

    def _load_actor(self, session: Session, actor_id: int) -> Any:
        actor = self.store.get_actor(session, actor_id)
        if actor is None:
            raise NotFoundError(f"Actor {actor_id} not found")
        return actor

    def _load_report(self, session: Session, report_id: int) -> ReportDB:
        report = self.store.get_report(session, report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    @staticmethod
    def _require_reportable(resolution: Any) -> None:
        if ResolutionStatus(resolution.status) not in REPORTABLE_RESOLUTION_STATES:
            raise InvalidStateTransitionError(
                f"Resolution {resolution.id} is {resolution.status.value}; "
                "reports are accepted only while ASSIGNED or IN_PROGRESS"
            )

    def _resolution_title(self, session: Session, report: ReportDB) -> str:
        resolution = self.store.get_resolution(session, report.resolution_id)
        return resolution.title if resolution is not None else f"Resolution {report.resolution_id}"

    def _stage1_recipients(self, session: Session) -> list[Recipient]:
        """Leaders and deputies who hold the privilege right now."""
        candidates = self.store.actors_by_roles(session, PRIVILEGE_BEARING_ROLES)
        return [
            Recipient.of(actor)
            for actor in candidates
            if self.privileges.has_elevated_review_privilege(actor)
        ]

    def _submitter_recipients(self, session: Session, report: ReportDB) -> list[Recipient]:
        submitter = self.store.get_actor(session, report.submitted_by_id)
        return [Recipient.of(submitter)] if submitter is not None else []

    def _finish(
        self, result: OperationResult[ReportView], deliveries: list[Delivery]
    ) -> OperationResult[ReportView]:
        """Fan out notifications once the transition has committed."""
        if not result.ok:
            return result
        for recipients, notice in deliveries:
            report = self.dispatcher.fan_out(recipients, notice)
            if report.failures:
                result.warnings.append(
                    f"{len(report.failures)} deliveries failed for '{notice.title}'"
                )
        return result
