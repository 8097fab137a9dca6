"""
Assignment Manager — distributes a resolution across responsible groups.

Each resolution is split into (group, weight) shares whose weights sum to
exactly 100. The set is always written as a whole: ``assign`` creates the
first set and ``replace_all`` swaps it for a corrected one. Both run in a
single store transaction, so a rejected call leaves no rows behind and the
resolution status untouched.

Members of the assigned groups are told about their new task after the
transaction commits. Delivery is best-effort and never affects the outcome.
"""

from __future__ import annotations

import logging
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
    AssignmentShare,
    AssignmentStatus,
    AssignmentView,
    ProgressSummary,
    ResolutionStatus,
    ResolutionView,
)
from resolution_workflow.governance import weights
from resolution_workflow.governance.jurisdiction import LocationScopeGuard, is_coordinator
from resolution_workflow.notifications.dispatch import (
    Notice,
    NotificationDispatcher,
    Recipient,
    task_assignment_notice,
)
from resolution_workflow.store.models import AssignmentDB, ResolutionDB, utcnow
from resolution_workflow.workflow.progress import ProgressAggregator, assignment_view

logger = logging.getLogger(__name__)

CLOSED_RESOLUTION_STATES = frozenset({ResolutionStatus.COMPLETED, ResolutionStatus.CANCELLED})


class AssignmentManager:
    """
    The only writer of assignment rows.

    Args:
        store: The ``RecordStore`` holding resolutions and assignments.
        guard: Location rule applied to jurisdiction-scoped actors.
        dispatcher: Fan-out used for task-assignment notifications.
        aggregator: Progress view that ``progress`` delegates to.
    """

    def __init__(
        self,
        store: Any,
        guard: LocationScopeGuard | None = None,
        dispatcher: NotificationDispatcher | None = None,
        aggregator: ProgressAggregator | None = None,
    ) -> None:
        self.store = store
        self.guard = guard or LocationScopeGuard()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.aggregator = aggregator or ProgressAggregator(store)

    # ── Writes ─────────────────────────────────────────────────

    def assign(
        self, resolution_id: int, shares: Iterable[Any], actor_id: int
    ) -> OperationResult[list[AssignmentView]]:
        """
        Create the first assignment set of a resolution.

        On success the resolution moves from ASSIGNED to IN_PROGRESS and every
        member of every assigned group is notified.
        """
        deliveries: list[tuple[list[Recipient], Notice]] = []

        def _run() -> list[AssignmentView]:
            proposed = weights.coerce_shares(shares)
            with self.store.transaction() as session:
                resolution = self._load_resolution(session, resolution_id)
                self._authorize(session, actor_id, resolution)

                if ResolutionStatus(resolution.status) in CLOSED_RESOLUTION_STATES:
                    raise InvalidStateTransitionError(
                        f"Resolution {resolution_id} is {resolution.status.value}; "
                        "it can no longer be assigned"
                    )
                if self.store.assignments_for_resolution(session, resolution_id):
                    raise InvalidStateTransitionError(
                        f"Resolution {resolution_id} is already assigned; "
                        "use replace_all to correct the set"
                    )

                rows = self._write_shares(session, resolution, proposed, resolution.created_by_id)

                if resolution.status == ResolutionStatus.ASSIGNED:
                    resolution.status = ResolutionStatus.IN_PROGRESS
                    resolution.updated_at = utcnow()

                deliveries.extend(self._task_deliveries(session, resolution, rows))
                views = [assignment_view(row) for row in rows]

            logger.info(
                "Resolution %s assigned to %d groups by actor %s",
                resolution_id, len(views), actor_id,
            )
            return views

        result = run_operation("assign", _run)
        if result.ok:
            for recipients, notice in deliveries:
                report = self.dispatcher.fan_out(recipients, notice)
                if report.failures:
                    result.warnings.append(
                        f"{len(report.failures)} task notification deliveries failed "
                        f"for '{notice.mail_subject}'"
                    )
        return result

    def replace_all(
        self,
        resolution_id: int,
        shares: Iterable[Any],
        actor_id: int | None = None,
    ) -> OperationResult[list[AssignmentView]]:
        """
        Swap the whole assignment set of a resolution for a corrected one.

        The old rows are deleted and the new ones inserted in one
        transaction: either the full new set exists afterwards or the old
        set is untouched. Resolution status is not changed.
        """
        def _run() -> list[AssignmentView]:
            proposed = weights.coerce_shares(shares)
            with self.store.transaction() as session:
                resolution = self._load_resolution(session, resolution_id)
                if actor_id is not None:
                    self._authorize(session, actor_id, resolution)
                if ResolutionStatus(resolution.status) in CLOSED_RESOLUTION_STATES:
                    raise InvalidStateTransitionError(
                        f"Resolution {resolution_id} is {resolution.status.value}; "
                        "its assignments are frozen"
                    )

                removed = self.store.delete_assignments_for_resolution(session, resolution_id)
                creator_id = actor_id if actor_id is not None else resolution.created_by_id
                rows = self._write_shares(session, resolution, proposed, creator_id)
                views = [assignment_view(row) for row in rows]

            logger.info(
                "Resolution %s assignments replaced: %d removed, %d created",
                resolution_id, removed, len(views),
            )
            return views

        return run_operation("replace_all", _run)

    # ── Reads ──────────────────────────────────────────────────

    def list_assignments(self, resolution_id: int) -> OperationResult[list[AssignmentView]]:
        def _run() -> list[AssignmentView]:
            with self.store.transaction() as session:
                self._load_resolution(session, resolution_id)
                return [
                    assignment_view(a)
                    for a in self.store.assignments_for_resolution(session, resolution_id)
                ]

        return run_operation("list_assignments", _run)

    def progress(self, resolution_id: int) -> OperationResult[ProgressSummary]:
        return self.aggregator.progress(resolution_id)

    def resolutions_for_group(self, group_id: int) -> OperationResult[list[ResolutionView]]:
        """Resolutions the group holds at least one assignment on."""

        def _run() -> list[ResolutionView]:
            with self.store.transaction() as session:
                if self.store.get_group(session, group_id) is None:
                    raise NotFoundError(f"Group {group_id} not found")
                seen: dict[int, ResolutionView] = {}
                for assignment in self.store.assignments_for_group(session, group_id):
                    if assignment.resolution_id in seen:
                        continue
                    resolution = self.store.get_resolution(session, assignment.resolution_id)
                    seen[assignment.resolution_id] = ResolutionView.model_validate(resolution)
                return list(seen.values())

        return run_operation("resolutions_for_group", _run)

    # ── Internals ──────────────────────────────────────────────

    def _load_resolution(self, session: Session, resolution_id: int) -> ResolutionDB:
        resolution = self.store.get_resolution(session, resolution_id)
        if resolution is None:
            raise NotFoundError(f"Resolution {resolution_id} not found")
        return resolution

    def _authorize(self, session: Session, actor_id: int, resolution: ResolutionDB) -> None:
        actor = self.store.get_actor(session, actor_id)
        if actor is None:
            raise NotFoundError(f"Actor {actor_id} not found")
        if not is_coordinator(actor.role):
            raise PermissionDeniedError(
                f"Role '{actor.role.value}' cannot distribute resolutions"
            )
        meeting = resolution.meeting
        if not self.guard.permits(actor, meeting):
            raise PermissionDeniedError(self.guard.denial_message(actor, meeting))

    def _write_shares(
        self,
        session: Session,
        resolution: ResolutionDB,
        shares: list[AssignmentShare],
        creator_id: int,
    ) -> list[AssignmentDB]:
        out_of_range = [
            f"Contribution for group {s.group_id} must be between 1 and 100, got {s.weight}"
            for s in shares
            if not 1 <= s.weight <= 100
        ]
        if out_of_range:
            raise ValidationFailedError(out_of_range)

        weights.validate(shares).raise_for_total()

        for share in shares:
            if self.store.get_group(session, share.group_id) is None:
                raise NotFoundError(f"Group {share.group_id} not found")

        rows = [
            AssignmentDB(
                resolution_id=resolution.id,
                group_id=share.group_id,
                weight=share.weight,
                assigned_by_id=creator_id,
                status=AssignmentStatus.ASSIGNED,
            )
            for share in shares
        ]
        session.add_all(rows)
        session.flush()
        return rows

    def _task_deliveries(
        self, session: Session, resolution: ResolutionDB, rows: list[AssignmentDB]
    ) -> list[tuple[list[Recipient], Notice]]:
        """One notice per assigned group, addressed to each distinct member once."""
        weight_by_group: dict[int, int] = {}
        for row in rows:
            weight_by_group[row.group_id] = weight_by_group.get(row.group_id, 0) + row.weight

        notified: set[int] = set()
        deliveries = []
        for group_id, weight in weight_by_group.items():
            group = self.store.get_group(session, group_id)
            recipients = []
            for member in self.store.actors_in_group(session, group_id):
                if member.id in notified:
                    continue
                notified.add(member.id)
                recipients.append(Recipient.of(member))
            if recipients:
                deliveries.append(
                    (
                        recipients,
                        task_assignment_notice(resolution.id, resolution.title, group.name, weight),
                    )
                )
        return deliveries
