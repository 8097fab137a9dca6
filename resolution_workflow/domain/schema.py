"""
Workflow Schema — Pydantic models and enumerations for the resolution workflow.

These models are the canonical data shapes that cross the boundary of the
workflow services: inputs (shares, report content, resolution drafts) and
read views (resolutions, assignments, reports, progress summaries). The
persisted representation lives in ``resolution_workflow.store.models``.

Lifecycles:
    Resolution  ASSIGNED → IN_PROGRESS → COMPLETED, or CANCELLED
    Report      SUBMITTED → APPROVED_BY_STAGE1 → APPROVED_BY_STAGE2
                          ↘ REJECTED_BY_STAGE1     ↘ REJECTED_BY_STAGE2
                (rejected reports go back to SUBMITTED on resubmission)
"""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class ActorRole(str, enum.Enum):
    """Declared role tag of an actor. Review privilege is never one of these."""

    ADMIN = "admin"
    SECRETARY = "secretary"
    GROUP_LEADER = "chair"
    GROUP_DEPUTY_LEADER = "vice_chair"
    DELEGATION_HEAD = "hod"  # legacy tag, grants nothing by itself
    COMMISSIONER_GENERAL = "commissioner_general"
    SUBCOMMITTEE_MEMBER = "subcommittee_member"
    DELEGATION_SECRETARY = "delegation_secretary"
    COMMITTEE_SECRETARY = "committee_secretary"
    COMMITTEE_MEMBER = "committee_member"


class ResolutionStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReportStatus(str, enum.Enum):
    """Two-stage approval states of a progress report."""

    SUBMITTED = "SUBMITTED"
    APPROVED_BY_STAGE1 = "APPROVED_BY_STAGE1"
    REJECTED_BY_STAGE1 = "REJECTED_BY_STAGE1"
    APPROVED_BY_STAGE2 = "APPROVED_BY_STAGE2"
    REJECTED_BY_STAGE2 = "REJECTED_BY_STAGE2"


class MeetingType(str, enum.Enum):
    COMMISSIONER_GENERAL_MEETING = "COMMISSIONER_GENERAL_MEETING"
    TECHNICAL_MEETING = "TECHNICAL_MEETING"
    SUBCOMMITTEE_MEETING = "SUBCOMMITTEE_MEETING"


class MeetingStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class NotificationKind(str, enum.Enum):
    """Categories of in-app notification."""

    TASK_ASSIGNMENT = "TASK_ASSIGNMENT"
    REPORT_SUBMISSION = "REPORT_SUBMISSION"
    REPORT_APPROVAL = "REPORT_APPROVAL"
    REPORT_REJECTION = "REPORT_REJECTION"
    GENERAL_ANNOUNCEMENT = "GENERAL_ANNOUNCEMENT"


# ════════════════════════════════════════════════════════════════
# Fixed rules
# ════════════════════════════════════════════════════════════════

DISTINGUISHED_GROUP_NAME = "Head Of Delegation"
ELEVATED_PRIVILEGE_DISPLAY = "Head of Delegation"

# Roles whose leaders/deputies can borrow the delegation-head privilege.
PRIVILEGE_BEARING_ROLES = frozenset(
    {ActorRole.GROUP_LEADER, ActorRole.GROUP_DEPUTY_LEADER}
)

# Secretarial roles are bound to the jurisdiction they are registered in.
JURISDICTION_SCOPED_ROLES = frozenset(
    {
        ActorRole.SECRETARY,
        ActorRole.DELEGATION_SECRETARY,
        ActorRole.COMMITTEE_SECRETARY,
    }
)

# Roles allowed to run meetings and distribute resolutions.
COORDINATOR_ROLES = JURISDICTION_SCOPED_ROLES | {ActorRole.ADMIN}

STAGE2_REVIEWER_ROLE = ActorRole.COMMISSIONER_GENERAL

REPORTABLE_RESOLUTION_STATES = frozenset(
    {ResolutionStatus.ASSIGNED, ResolutionStatus.IN_PROGRESS}
)

REJECTED_REPORT_STATES = frozenset(
    {ReportStatus.REJECTED_BY_STAGE1, ReportStatus.REJECTED_BY_STAGE2}
)


# ════════════════════════════════════════════════════════════════
# Inputs
# ════════════════════════════════════════════════════════════════


class AssignmentShare(BaseModel):
    """One proposed (responsible group, contribution weight) pair."""

    group_id: int = Field(description="Responsible group (subcommittee) ID")
    weight: int = Field(description="Contribution weight in whole percent")


class ReportSubmission(BaseModel):
    """
    Content of a new progress report.

    Every field is optional at the model level so that the lifecycle can
    report all content violations together rather than failing on the first.
    """

    resolution_id: int | None = None
    group_id: int | None = None
    performance_percentage: int | None = Field(
        default=None, description="Group's self-assessed completion, 0–100"
    )
    progress_details: str | None = None
    hindrances: str | None = None


class ReportRevision(BaseModel):
    """Replacement content supplied when resubmitting a rejected report."""

    performance_percentage: int | None = None
    progress_details: str | None = None
    hindrances: str | None = None


class ResolutionDraft(BaseModel):
    """A resolution produced by a meeting, before it is persisted."""

    title: str = ""
    description: str = ""


# ════════════════════════════════════════════════════════════════
# Read views
# ════════════════════════════════════════════════════════════════


class MeetingView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None = None
    meeting_date: datetime
    meeting_type: MeetingType
    status: MeetingStatus
    hosting_jurisdiction_id: int
    created_by_id: int
    minutes: str | None = None


class ResolutionView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None = None
    meeting_id: int
    created_by_id: int
    status: ResolutionStatus
    created_at: datetime
    updated_at: datetime | None = None


class AssignmentView(BaseModel):
    """An assignment row together with the name of its responsible group."""

    id: int
    resolution_id: int
    group_id: int
    group_name: str
    weight: int
    assigned_by_id: int
    assigned_at: datetime
    status: AssignmentStatus


class ReportView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    resolution_id: int
    group_id: int
    submitted_by_id: int
    performance_percentage: int
    progress_details: str
    hindrances: str | None = None
    status: ReportStatus

    stage1_reviewer_id: int | None = None
    stage1_comments: str | None = None
    stage1_reviewed_at: datetime | None = None
    stage2_reviewer_id: int | None = None
    stage2_comments: str | None = None
    stage2_reviewed_at: datetime | None = None

    submitted_at: datetime
    updated_at: datetime | None = None
    is_final: bool = False
    version: int = 1


class ProgressSummary(BaseModel):
    """Resolution-level completion derived from weighted group reports."""

    resolution_id: int
    overall: float = Field(description="Sum of performance × weight / 100 over reports")
    weight_total: int = Field(description="Sum of live assignment weights at query time")
    assignments: list[AssignmentView] = Field(default_factory=list)
    reports: list[ReportView] = Field(default_factory=list)

    @computed_field
    @property
    def total_assignments(self) -> int:
        return len(self.assignments)

    @computed_field
    @property
    def total_reports(self) -> int:
        return len(self.reports)

    @computed_field
    @property
    def weights_balanced(self) -> bool:
        """Whether the assignment weights still sum to exactly 100."""
        return self.weight_total == 100


class GroupPerformance(BaseModel):
    group_id: int
    group_name: str
    report_count: int
    average_performance: float


class PerformanceOverview(BaseModel):
    """Cross-resolution report statistics for dashboards and the CLI."""

    total_reports: int
    status_counts: dict[ReportStatus, int] = Field(default_factory=dict)
    average_performance: float = 0.0
    groups: list[GroupPerformance] = Field(default_factory=list)
