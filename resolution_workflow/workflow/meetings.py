"""
Meeting Desk — meetings, minutes and the resolutions they produce.

Coordinators (the secretarial roles and admins) run meetings. Secretarial
roles are bound to their jurisdiction: they can only create, minute and
draw resolutions from meetings hosted in their own country.

Resolutions are born ASSIGNED and then move only through
``set_resolution_status`` (plus the ASSIGNED → IN_PROGRESS step taken by
the Assignment Manager):

    ASSIGNED ──▶ IN_PROGRESS ──▶ COMPLETED
        └──────────┴──────────▶ CANCELLED
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session

from resolution_workflow.domain.results import (
    InvalidStateTransitionError,
    NotFoundError,
    OperationResult,
    PermissionDeniedError,
    ValidationFailedError,
    run_operation,
)
from resolution_workflow.domain.schema import (
    MeetingStatus,
    MeetingType,
    MeetingView,
    ResolutionDraft,
    ResolutionStatus,
    ResolutionView,
)
from resolution_workflow.governance.jurisdiction import (
    LocationScopeGuard,
    is_coordinator,
    is_jurisdiction_scoped,
)
from resolution_workflow.store.models import MeetingDB, ResolutionDB, utcnow

logger = logging.getLogger(__name__)

RESOLUTION_TRANSITIONS: dict[ResolutionStatus, frozenset[ResolutionStatus]] = {
    ResolutionStatus.ASSIGNED: frozenset(
        {ResolutionStatus.IN_PROGRESS, ResolutionStatus.CANCELLED}
    ),
    ResolutionStatus.IN_PROGRESS: frozenset(
        {ResolutionStatus.COMPLETED, ResolutionStatus.CANCELLED}
    ),
    ResolutionStatus.COMPLETED: frozenset(),
    ResolutionStatus.CANCELLED: frozenset(),
}


class MeetingDesk:
    """Location-guarded meeting administration."""

    def __init__(self, store: Any, guard: LocationScopeGuard | None = None) -> None:
        self.store = store
        self.guard = guard or LocationScopeGuard()

    def create_meeting(
        self,
        actor_id: int,
        title: str,
        hosting_jurisdiction_id: int,
        meeting_date: datetime,
        meeting_type: MeetingType = MeetingType.TECHNICAL_MEETING,
        description: str | None = None,
    ) -> OperationResult[MeetingView]:
        def _run() -> MeetingView:
            if not title or not title.strip():
                raise ValidationFailedError(["Meeting title is required"])

            with self.store.transaction() as session:
                actor = self._load_coordinator(session, actor_id)
                jurisdiction = self.store.get_jurisdiction(session, hosting_jurisdiction_id)
                if jurisdiction is None:
                    raise NotFoundError(f"Jurisdiction {hosting_jurisdiction_id} not found")
                if not self.guard.permits_jurisdiction(actor, hosting_jurisdiction_id):
                    actor_place = actor.jurisdiction.name if actor.jurisdiction else None
                    if actor_place is None:
                        detail = "Actor must have a jurisdiction assigned to manage meetings"
                    else:
                        detail = (
                            f"Actor from {actor_place} can only create meetings "
                            f"hosted in {actor_place}"
                        )
                    raise PermissionDeniedError(detail)

                meeting = MeetingDB(
                    title=title.strip(),
                    description=description,
                    meeting_date=meeting_date,
                    meeting_type=meeting_type,
                    status=MeetingStatus.SCHEDULED,
                    hosting_jurisdiction_id=hosting_jurisdiction_id,
                    created_by_id=actor.id,
                )
                session.add(meeting)
                session.flush()
                view = MeetingView.model_validate(meeting)

            logger.info(
                "Meeting %s created in jurisdiction %s by actor %s",
                view.id, hosting_jurisdiction_id, actor_id,
            )
            return view

        return run_operation("create_meeting", _run)

    def record_minutes(
        self, meeting_id: int, actor_id: int, minutes: str
    ) -> OperationResult[MeetingView]:
        """Store the minutes and mark the meeting COMPLETED."""

        def _run() -> MeetingView:
            if not minutes or not minutes.strip():
                raise ValidationFailedError(["Minutes are required"])

            with self.store.transaction() as session:
                meeting = self._guarded_meeting(session, meeting_id, actor_id)
                if meeting.status == MeetingStatus.CANCELLED:
                    raise InvalidStateTransitionError(
                        f"Meeting {meeting_id} was cancelled; minutes cannot be recorded"
                    )
                meeting.minutes = minutes
                meeting.status = MeetingStatus.COMPLETED
                meeting.updated_at = utcnow()
                session.flush()
                view = MeetingView.model_validate(meeting)

            logger.info("Minutes recorded for meeting %s", meeting_id)
            return view

        return run_operation("record_minutes", _run)

    def create_resolutions(
        self, meeting_id: int, actor_id: int, drafts: Iterable[ResolutionDraft]
    ) -> OperationResult[list[ResolutionView]]:
        """
        Persist the resolutions a meeting produced.

        Drafts with an empty title are skipped; at least one must remain.
        The meeting's creator is recorded as the creator of each resolution.
        """
        drafts = [d if isinstance(d, ResolutionDraft) else ResolutionDraft(**d) for d in drafts]

        def _run() -> list[ResolutionView]:
            usable = [d for d in drafts if d.title.strip()]
            if not usable:
                raise ValidationFailedError(["At least one resolution with a title is required"])

            with self.store.transaction() as session:
                meeting = self._guarded_meeting(session, meeting_id, actor_id)
                rows = [
                    ResolutionDB(
                        title=draft.title.strip(),
                        description=draft.description.strip() or None,
                        meeting_id=meeting.id,
                        created_by_id=meeting.created_by_id,
                        status=ResolutionStatus.ASSIGNED,
                    )
                    for draft in usable
                ]
                session.add_all(rows)
                session.flush()
                views = [ResolutionView.model_validate(r) for r in rows]

            logger.info("Meeting %s produced %d resolutions", meeting_id, len(views))
            return views

        return run_operation("create_resolutions", _run)

    def set_resolution_status(
        self, resolution_id: int, actor_id: int, status: ResolutionStatus
    ) -> OperationResult[ResolutionView]:
        def _run() -> ResolutionView:
            target = ResolutionStatus(status)
            with self.store.transaction() as session:
                resolution = self.store.get_resolution(session, resolution_id)
                if resolution is None:
                    raise NotFoundError(f"Resolution {resolution_id} not found")
                self._guarded_meeting(session, resolution.meeting_id, actor_id)

                current = ResolutionStatus(resolution.status)
                if target not in RESOLUTION_TRANSITIONS[current]:
                    raise InvalidStateTransitionError(
                        f"Resolution {resolution_id} cannot move from "
                        f"{current.value} to {target.value}"
                    )
                resolution.status = target
                resolution.updated_at = utcnow()
                session.flush()
                view = ResolutionView.model_validate(resolution)

            logger.info(
                "Resolution %s: %s -> %s by actor %s",
                resolution_id, current.value, target.value, actor_id,
            )
            return view

        return run_operation("set_resolution_status", _run)

    def meetings_for_actor(self, actor_id: int) -> OperationResult[list[MeetingView]]:
        """Meetings the actor may manage: own jurisdiction, or all for unscoped coordinators."""

        def _run() -> list[MeetingView]:
            with self.store.transaction() as session:
                actor = self._load_coordinator(session, actor_id)
                if is_jurisdiction_scoped(actor.role):
                    if actor.jurisdiction_id is None:
                        return []
                    meetings = self.store.meetings_in_jurisdiction(session, actor.jurisdiction_id)
                else:
                    meetings = self.store.meetings_in_jurisdiction(session)
                return [MeetingView.model_validate(m) for m in meetings]

        return run_operation("meetings_for_actor", _run)

    def resolutions_for_meeting(
        self, meeting_id: int, actor_id: int
    ) -> OperationResult[list[ResolutionView]]:
        """Resolutions a meeting produced, for actors allowed to manage that meeting."""

        def _run() -> list[ResolutionView]:
            with self.store.transaction() as session:
                self._guarded_meeting(session, meeting_id, actor_id)
                return [
                    ResolutionView.model_validate(r)
                    for r in self.store.resolutions_for_meeting(session, meeting_id)
                ]

        return run_operation("resolutions_for_meeting", _run)

    def resolutions_by_status(
        self, status: ResolutionStatus
    ) -> OperationResult[list[ResolutionView]]:
        def _run() -> list[ResolutionView]:
            target = ResolutionStatus(status)
            with self.store.transaction() as session:
                return [
                    ResolutionView.model_validate(r)
                    for r in self.store.resolutions_by_status(session, target)
                ]

        return run_operation("resolutions_by_status", _run)

    # ── Internals ──────────────────────────────────────────────

    def _load_coordinator(self, session: Session, actor_id: int) -> Any:
        actor = self.store.get_actor(session, actor_id)
        if actor is None:
            raise NotFoundError(f"Actor {actor_id} not found")
        if not is_coordinator(actor.role):
            raise PermissionDeniedError(f"Role '{actor.role.value}' cannot manage meetings")
        return actor

    def _guarded_meeting(self, session: Session, meeting_id: int, actor_id: int) -> MeetingDB:
        actor = self._load_coordinator(session, actor_id)
        meeting = self.store.get_meeting(session, meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        if not self.guard.permits(actor, meeting):
            raise PermissionDeniedError(self.guard.denial_message(actor, meeting))
        return meeting
