"""
Record Store — SQLAlchemy models for the resolution workflow.

Records are kept arena-style: integer primary keys and foreign keys that
point one way only (an assignment knows its resolution, a resolution does
not hold a list of assignments). Look-ups in the other direction go through
the query helpers of ``RecordStore``.

Only assignments and reports carry workflow rules. Jurisdictions, groups,
actors and meetings are plain records maintained elsewhere.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from resolution_workflow.domain.schema import (
    ActorRole,
    AssignmentStatus,
    MeetingStatus,
    MeetingType,
    NotificationKind,
    ReportStatus,
    ResolutionStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all workflow models."""
    pass


def _enum(enum_cls: type) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=40,
        values_callable=lambda members: [m.value for m in members],
    )


class JurisdictionDB(Base):
    """A country scope that secretarial actors are bound to."""

    __tablename__ = "jurisdictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, unique=True)
    iso_code = Column(String(8), nullable=True)


class GroupDB(Base):
    """A responsible group (subcommittee) that can hold assignments."""

    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True, index=True)


class ActorDB(Base):
    """
    An actor of the workflow.

    ``role`` is the declared tag only. The delegation-head review privilege
    is derived from ``role`` and ``group`` on every check and is never stored.
    """

    __tablename__ = "actors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(254), nullable=False, unique=True)
    role = Column(_enum(ActorRole), nullable=False)
    jurisdiction_id = Column(Integer, ForeignKey("jurisdictions.id"), nullable=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    jurisdiction = relationship(JurisdictionDB)
    group = relationship(GroupDB)

    __table_args__ = (
        Index("ix_actor_role", "role"),
        Index("ix_actor_group", "group_id"),
    )

    def __repr__(self) -> str:
        return f"<Actor id={self.id} role={self.role} group={self.group_id}>"


class MeetingDB(Base):
    """A meeting hosted in one jurisdiction; produces resolutions."""

    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    meeting_date = Column(DateTime(timezone=True), nullable=False)
    meeting_type = Column(
        _enum(MeetingType), nullable=False, default=MeetingType.TECHNICAL_MEETING
    )
    status = Column(_enum(MeetingStatus), nullable=False, default=MeetingStatus.SCHEDULED)
    hosting_jurisdiction_id = Column(
        Integer, ForeignKey("jurisdictions.id"), nullable=False, index=True
    )
    created_by_id = Column(Integer, ForeignKey("actors.id"), nullable=False)
    minutes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    hosting_jurisdiction = relationship(JurisdictionDB)


class ResolutionDB(Base):
    """An actionable decision produced by a meeting."""

    __tablename__ = "resolutions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    meeting_id = Column(Integer, ForeignKey("meetings.id"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("actors.id"), nullable=False)
    status = Column(
        _enum(ResolutionStatus), nullable=False, default=ResolutionStatus.ASSIGNED
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    meeting = relationship(MeetingDB)

    __table_args__ = (Index("ix_resolution_status", "status"),)


class AssignmentDB(Base):
    """
    A (resolution, group, weight) link.

    Written only by the Assignment Manager, always as a whole set per
    resolution, so that the weights of one resolution sum to 100.
    """

    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resolution_id = Column(Integer, ForeignKey("resolutions.id"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False)
    weight = Column(Integer, nullable=False, comment="Contribution percentage, 1–100")
    assigned_by_id = Column(Integer, ForeignKey("actors.id"), nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    status = Column(
        _enum(AssignmentStatus), nullable=False, default=AssignmentStatus.ASSIGNED
    )

    group = relationship(GroupDB)

    __table_args__ = (
        Index("ix_assignment_resolution", "resolution_id"),
        Index("ix_assignment_group", "group_id"),
    )


class ReportDB(Base):
    """
    A group's progress report against its assignment.

    ``version`` counts resubmissions. ``row_version`` is the optimistic lock:
    every UPDATE is conditioned on it, so a transition computed from a stale
    read is rejected by the database instead of overwriting a newer state.
    """

    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resolution_id = Column(Integer, ForeignKey("resolutions.id"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False)
    submitted_by_id = Column(Integer, ForeignKey("actors.id"), nullable=False)

    performance_percentage = Column(Integer, nullable=False)
    progress_details = Column(Text, nullable=False)
    hindrances = Column(Text, nullable=True)
    status = Column(_enum(ReportStatus), nullable=False, default=ReportStatus.SUBMITTED)

    stage1_reviewer_id = Column(Integer, ForeignKey("actors.id"), nullable=True)
    stage1_comments = Column(Text, nullable=True)
    stage1_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    stage2_reviewer_id = Column(Integer, ForeignKey("actors.id"), nullable=True)
    stage2_comments = Column(Text, nullable=True)
    stage2_reviewed_at = Column(DateTime(timezone=True), nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    is_final = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    row_version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    __table_args__ = (
        Index("ix_report_resolution", "resolution_id"),
        Index("ix_report_group", "group_id"),
        Index("ix_report_submitter", "submitted_by_id"),
        Index("ix_report_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Report id={self.id} status={self.status} v{self.version}>"


class NotificationDB(Base):
    """In-app notification for one actor."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, ForeignKey("actors.id"), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    message = Column(Text, nullable=False)
    kind = Column(_enum(NotificationKind), nullable=False)
    related_type = Column(String(50), nullable=True)
    related_id = Column(Integer, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
