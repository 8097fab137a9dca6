"""
Tests for the Report Lifecycle.

Validates:
- Content validation lists every violation
- Submission preconditions (assignment, membership, resolution state)
- Stage-1 review gated on the derived delegation-head privilege
- Stage-2 review only after stage-1 approval
- Resubmission resets reviewer fields and bumps the version
- Stale concurrent writes are rejected
"""

from __future__ import annotations

import pytest

from resolution_workflow.domain.results import ErrorKind, InvalidStateTransitionError
from resolution_workflow.domain.schema import (
    NotificationKind,
    ReportRevision,
    ReportStatus,
    ReportSubmission,
    ResolutionStatus,
)
from resolution_workflow.notifications.dispatch import NotificationDispatcher
from resolution_workflow.workflow.assignments import AssignmentManager
from resolution_workflow.workflow.reports import ReportLifecycle, content_violations

DETAILS = "Licensing forms drafted and shared with both ministries."


class ReportFixtures:

    @pytest.fixture(autouse=True)
    def _setup(self, store, world, dispatcher, notifications, mail):
        self.store = store
        self.world = world
        self.notifications = notifications
        self.mail = mail
        self.lifecycle = ReportLifecycle(store, dispatcher=dispatcher, min_detail_length=10)
        assert AssignmentManager(store, dispatcher=NotificationDispatcher()).assign(
            world.resolution_ug, [(world.fisheries, 70), (world.water, 30)], world.admin
        ).ok

    def submit(self, group_id=None, actor_id=None, performance=80, details=DETAILS):
        return self.lifecycle.submit(
            ReportSubmission(
                resolution_id=self.world.resolution_ug,
                group_id=group_id or self.world.fisheries,
                performance_percentage=performance,
                progress_details=details,
                hindrances="Budget release delayed",
            ),
            actor_id or self.world.fish_member,
        )

    def submitted_id(self) -> int:
        result = self.submit()
        assert result.ok, result.failure
        self.notifications.calls.clear()
        self.mail.sent.clear()
        return result.value.id


class TestContentRules:

    def test_all_violations_listed(self):
        assert content_violations(None, None, 10) == [
            "Progress details are required",
            "Performance percentage is required",
        ]

    def test_short_details_trimmed(self):
        assert content_violations(50, "   short   ", 10) == [
            "Progress details must be at least 10 characters long"
        ]

    @pytest.mark.parametrize("performance", [-1, 101])
    def test_performance_out_of_range(self, performance):
        assert content_violations(performance, DETAILS, 10) == [
            "Performance percentage must be between 0 and 100"
        ]

    @pytest.mark.parametrize("performance", [0, 100])
    def test_performance_bounds_inclusive(self, performance):
        assert content_violations(performance, DETAILS, 10) == []


class TestSubmit(ReportFixtures):

    def test_submit_creates_submitted_report(self):
        result = self.submit()
        assert result.ok, result.failure
        report = result.value
        assert report.status == ReportStatus.SUBMITTED
        assert report.version == 1
        assert report.is_final is False
        assert report.performance_percentage == 80
        assert report.submitted_by_id == self.world.fish_member
        assert report.stage1_reviewer_id is None

    def test_missing_details_and_performance_both_reported(self):
        result = self.lifecycle.submit(
            ReportSubmission(
                resolution_id=self.world.resolution_ug,
                group_id=self.world.fisheries,
                progress_details="too short",
            ),
            self.world.fish_member,
        )
        assert result.failure.kind == ErrorKind.VALIDATION_FAILED
        assert result.failure.violations == (
            "Progress details must be at least 10 characters long",
            "Performance percentage is required",
        )

    def test_missing_references(self):
        result = self.lifecycle.submit(
            ReportSubmission(performance_percentage=10, progress_details=DETAILS),
            self.world.fish_member,
        )
        assert result.failure.violations == ("Resolution is required", "Group is required")

    def test_group_without_assignment_denied(self):
        result = self.submit(group_id=self.world.health, actor_id=self.world.admin)
        assert result.failure.kind == ErrorKind.PERMISSION_DENIED

    def test_submitter_outside_group_denied(self):
        result = self.submit(group_id=self.world.fisheries, actor_id=self.world.water_member)
        assert result.failure.kind == ErrorKind.PERMISSION_DENIED

    def test_completed_resolution_rejects_reports(self):
        with self.store.transaction() as session:
            self.store.get_resolution(session, self.world.resolution_ug).status = (
                ResolutionStatus.COMPLETED
            )
        assert self.submit().failure.kind == ErrorKind.INVALID_STATE_TRANSITION

    def test_missing_resolution(self):
        result = self.lifecycle.submit(
            ReportSubmission(
                resolution_id=31337,
                group_id=self.world.fisheries,
                performance_percentage=50,
                progress_details=DETAILS,
            ),
            self.world.fish_member,
        )
        assert result.failure.kind == ErrorKind.NOT_FOUND

    def test_only_privileged_leaders_notified(self):
        self.submit()
        notified = self.notifications.recipients("New Report Submission")
        assert sorted(notified) == sorted([self.world.hod_chair, self.world.hod_deputy])
        assert self.world.fish_chair not in notified
        assert self.world.legacy_hod not in notified
        assert {c["kind"] for c in self.notifications.calls} == {
            NotificationKind.REPORT_SUBMISSION
        }

    def test_privilege_evaluated_at_submission_time(self):
        self.store.move_actor(self.world.hod_deputy, self.world.water)
        self.submit()
        assert self.notifications.recipients() == [self.world.hod_chair]

    def test_mail_failure_is_swallowed(self):
        self.mail.fail_for.add("hod_chair@example.org")
        result = self.submit()
        assert result.ok
        assert result.warnings
        assert [m["to"] for m in self.mail.sent] == ["hod_deputy@example.org"]


class TestStageOneReview(ReportFixtures):

    def test_privileged_leader_approves(self):
        report_id = self.submitted_id()
        result = self.lifecycle.review_stage1(report_id, self.world.hod_chair, True, "Good work")
        assert result.ok
        report = result.value
        assert report.status == ReportStatus.APPROVED_BY_STAGE1
        assert report.stage1_reviewer_id == self.world.hod_chair
        assert report.stage1_comments == "Good work"
        assert report.stage1_reviewed_at is not None

    def test_approval_notifies_stage_two_and_submitter(self):
        report_id = self.submitted_id()
        self.lifecycle.review_stage1(report_id, self.world.hod_deputy, True)
        assert self.notifications.recipients("Report Approved at First Stage") == [
            self.world.commissioner
        ]
        assert self.notifications.recipients("Report Approved") == [self.world.fish_member]

    def test_rejection_notifies_only_submitter_with_comments(self):
        report_id = self.submitted_id()
        result = self.lifecycle.review_stage1(
            report_id, self.world.hod_chair, False, "Attach the budget table"
        )
        assert result.value.status == ReportStatus.REJECTED_BY_STAGE1
        assert self.notifications.recipients() == [self.world.fish_member]
        assert "Attach the budget table" in self.notifications.calls[0]["message"]
        assert self.notifications.calls[0]["kind"] == NotificationKind.REPORT_REJECTION

    @pytest.mark.parametrize("reviewer", ["fish_chair", "hod_member", "legacy_hod", "commissioner"])
    def test_unprivileged_reviewers_denied(self, reviewer):
        report_id = self.submitted_id()
        result = self.lifecycle.review_stage1(report_id, getattr(self.world, reviewer), True)
        assert result.failure.kind == ErrorKind.PERMISSION_DENIED
        assert self.lifecycle.get_report(report_id).unwrap().status == ReportStatus.SUBMITTED

    def test_leader_who_left_group_loses_privilege(self):
        report_id = self.submitted_id()
        self.store.move_actor(self.world.hod_chair, self.world.health)
        result = self.lifecycle.review_stage1(report_id, self.world.hod_chair, True)
        assert result.failure.kind == ErrorKind.PERMISSION_DENIED

    def test_missing_report(self):
        result = self.lifecycle.review_stage1(4040, self.world.hod_chair, True)
        assert result.failure.kind == ErrorKind.NOT_FOUND

    def test_cannot_review_twice(self):
        report_id = self.submitted_id()
        assert self.lifecycle.review_stage1(report_id, self.world.hod_chair, True).ok
        again = self.lifecycle.review_stage1(report_id, self.world.hod_deputy, False)
        assert again.failure.kind == ErrorKind.INVALID_STATE_TRANSITION


class TestStageTwoReview(ReportFixtures):

    def stage1_approved_id(self) -> int:
        report_id = self.submitted_id()
        assert self.lifecycle.review_stage1(report_id, self.world.hod_chair, True).ok
        self.notifications.calls.clear()
        return report_id

    def test_stage2_on_submitted_report_is_invalid(self):
        report_id = self.submitted_id()
        result = self.lifecycle.review_stage2(report_id, self.world.commissioner, True)
        assert result.failure.kind == ErrorKind.INVALID_STATE_TRANSITION
        assert self.lifecycle.get_report(report_id).unwrap().status == ReportStatus.SUBMITTED

    def test_final_approval(self):
        report_id = self.stage1_approved_id()
        result = self.lifecycle.review_stage2(report_id, self.world.commissioner, True, "Final")
        report = result.value
        assert report.status == ReportStatus.APPROVED_BY_STAGE2
        assert report.is_final is True
        assert report.stage2_reviewer_id == self.world.commissioner
        assert report.stage2_comments == "Final"
        assert self.notifications.recipients() == [self.world.fish_member]

    def test_final_rejection(self):
        report_id = self.stage1_approved_id()
        result = self.lifecycle.review_stage2(report_id, self.world.commissioner, False, "Redo")
        assert result.value.status == ReportStatus.REJECTED_BY_STAGE2
        assert result.value.is_final is False
        assert self.notifications.calls[0]["kind"] == NotificationKind.REPORT_REJECTION

    def test_only_commissioner_reviews_stage2(self):
        report_id = self.stage1_approved_id()
        result = self.lifecycle.review_stage2(report_id, self.world.hod_chair, True)
        assert result.failure.kind == ErrorKind.PERMISSION_DENIED

    def test_approved_report_is_terminal(self):
        report_id = self.stage1_approved_id()
        assert self.lifecycle.review_stage2(report_id, self.world.commissioner, True).ok
        again = self.lifecycle.review_stage2(report_id, self.world.commissioner, False)
        assert again.failure.kind == ErrorKind.INVALID_STATE_TRANSITION
        revision = ReportRevision(performance_percentage=90, progress_details=DETAILS)
        resubmitted = self.lifecycle.resubmit(report_id, self.world.fish_member, revision)
        assert resubmitted.failure.kind == ErrorKind.INVALID_STATE_TRANSITION


class TestResubmit(ReportFixtures):

    REVISION = ReportRevision(
        performance_percentage=85,
        progress_details="Budget table attached; forms circulated.",
        hindrances=None,
    )

    def test_resubmit_after_stage1_rejection(self):
        report_id = self.submitted_id()
        self.lifecycle.review_stage1(report_id, self.world.hod_chair, False, "Attach budget")
        self.notifications.calls.clear()

        result = self.lifecycle.resubmit(report_id, self.world.fish_member, self.REVISION)

        assert result.ok, result.failure
        report = result.value
        assert report.status == ReportStatus.SUBMITTED
        assert report.version == 2
        assert report.performance_percentage == 85
        assert report.stage1_reviewer_id is None
        assert report.stage1_comments is None
        assert report.stage1_reviewed_at is None
        assert report.stage2_reviewer_id is None
        assert report.stage2_comments is None
        assert report.stage2_reviewed_at is None
        assert sorted(self.notifications.recipients("Report Resubmitted")) == sorted(
            [self.world.hod_chair, self.world.hod_deputy]
        )

    def test_resubmit_after_stage2_rejection_clears_both_stages(self):
        report_id = self.submitted_id()
        self.lifecycle.review_stage1(report_id, self.world.hod_chair, True, "ok")
        self.lifecycle.review_stage2(report_id, self.world.commissioner, False, "not yet")

        report = self.lifecycle.resubmit(report_id, self.world.fish_member, self.REVISION).unwrap()

        assert report.status == ReportStatus.SUBMITTED
        assert report.version == 2
        assert report.stage1_reviewer_id is None
        assert report.stage2_reviewer_id is None

    def test_only_submitter_may_resubmit(self):
        report_id = self.submitted_id()
        self.lifecycle.review_stage1(report_id, self.world.hod_chair, False)
        result = self.lifecycle.resubmit(report_id, self.world.fish_chair, self.REVISION)
        assert result.failure.kind == ErrorKind.PERMISSION_DENIED

    def test_cannot_resubmit_pending_report(self):
        report_id = self.submitted_id()
        result = self.lifecycle.resubmit(report_id, self.world.fish_member, self.REVISION)
        assert result.failure.kind == ErrorKind.INVALID_STATE_TRANSITION

    def test_resubmission_content_validated(self):
        report_id = self.submitted_id()
        self.lifecycle.review_stage1(report_id, self.world.hod_chair, False)
        result = self.lifecycle.resubmit(
            report_id, self.world.fish_member, ReportRevision(progress_details="")
        )
        assert result.failure.kind == ErrorKind.VALIDATION_FAILED
        assert "Progress details are required" in result.failure.violations
        assert self.lifecycle.get_report(report_id).unwrap().version == 1

    def test_cancelled_resolution_blocks_resubmission(self):
        report_id = self.submitted_id()
        self.lifecycle.review_stage1(report_id, self.world.hod_chair, False)
        with self.store.transaction() as session:
            self.store.get_resolution(session, self.world.resolution_ug).status = (
                ResolutionStatus.CANCELLED
            )
        result = self.lifecycle.resubmit(report_id, self.world.fish_member, self.REVISION)
        assert result.failure.kind == ErrorKind.INVALID_STATE_TRANSITION

    def test_resubmission_rejoins_queue_behind_newer_reports(self):
        first = self.submitted_id()
        original = self.lifecycle.get_report(first).unwrap().submitted_at
        self.lifecycle.review_stage1(first, self.world.hod_chair, False, "Attach budget")
        second = self.submit(group_id=self.world.water, actor_id=self.world.water_member).value.id

        assert self.lifecycle.resubmit(first, self.world.fish_member, self.REVISION).ok

        assert self.lifecycle.get_report(first).unwrap().submitted_at > original
        assert [r.id for r in self.lifecycle.stage1_queue()] == [second, first]


class TestReportQueries(ReportFixtures):

    def test_queues_and_filters(self):
        first = self.submitted_id()
        second = self.submit(group_id=self.world.water, actor_id=self.world.water_member).value.id
        self.lifecycle.review_stage1(first, self.world.hod_chair, True)

        assert [r.id for r in self.lifecycle.stage1_queue()] == [second]
        assert [r.id for r in self.lifecycle.stage2_queue()] == [first]
        assert [r.id for r in self.lifecycle.reports_by_status(ReportStatus.APPROVED_BY_STAGE1)] == [first]
        assert [
            r.id for r in self.lifecycle.reports_for_resolution(self.world.resolution_ug).unwrap()
        ] == [first, second]
        assert [r.id for r in self.lifecycle.reports_for_group(self.world.water).unwrap()] == [second]
        assert [
            r.id for r in self.lifecycle.reports_by_submitter(self.world.fish_member).unwrap()
        ] == [first]

    def test_missing_parents(self):
        assert self.lifecycle.get_report(1234).failure.kind == ErrorKind.NOT_FOUND
        assert self.lifecycle.reports_for_resolution(1234).failure.kind == ErrorKind.NOT_FOUND
        assert self.lifecycle.reports_for_group(1234).failure.kind == ErrorKind.NOT_FOUND
        assert self.lifecycle.reports_by_submitter(1234).failure.kind == ErrorKind.NOT_FOUND


class TestStaleWrites:
    """Two sessions racing on one report: the slower write loses."""

    def test_stale_review_rejected(self, file_store, file_world):
        w = file_world
        AssignmentManager(file_store).assign(w.resolution_ug, [(w.fisheries, 100)], w.admin).unwrap()
        lifecycle = ReportLifecycle(file_store, min_detail_length=10)
        report_id = lifecycle.submit(
            ReportSubmission(
                resolution_id=w.resolution_ug,
                group_id=w.fisheries,
                performance_percentage=40,
                progress_details=DETAILS,
            ),
            w.fish_member,
        ).unwrap().id

        with pytest.raises(InvalidStateTransitionError):
            with file_store.transaction() as session:
                stale = file_store.get_report(session, report_id)
                assert stale.status == ReportStatus.SUBMITTED
                assert lifecycle.review_stage1(report_id, w.hod_chair, False, "Incomplete").ok
                stale.status = ReportStatus.APPROVED_BY_STAGE1
                stale.stage1_comments = "late approval"

        report = lifecycle.get_report(report_id).unwrap()
        assert report.status == ReportStatus.REJECTED_BY_STAGE1
        assert report.stage1_comments == "Incomplete"
