"""
Record Store Service — engine, transactions and look-ups for workflow records.

The workflow services never talk to the database directly; they open a
``transaction()`` and use the helpers below with the session it yields.
Everything a single operation changes is committed together or not at all.

Usage:
    store = RecordStore("sqlite:///workflow.db")
    store.initialize()  # Create tables, seed the distinguished group

    with store.transaction() as session:
        resolution = store.get_resolution(session, resolution_id)
        assignments = store.assignments_for_resolution(session, resolution_id)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from resolution_workflow.domain.results import InvalidStateTransitionError
from resolution_workflow.domain.schema import (
    DISTINGUISHED_GROUP_NAME,
    ActorRole,
    ReportStatus,
    ResolutionStatus,
)
from resolution_workflow.store.models import (
    ActorDB,
    AssignmentDB,
    Base,
    GroupDB,
    JurisdictionDB,
    MeetingDB,
    NotificationDB,
    ReportDB,
    ResolutionDB,
)

logger = logging.getLogger(__name__)


def _is_in_memory_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite") and (
        database_url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in database_url
    )


class RecordStore:
    """
    Persistence boundary for resolutions, assignments, reports and the
    plain records they reference.
    """

    def __init__(self, database_url: str) -> None:
        """
        Initialize the store.

        Args:
            database_url: SQLAlchemy connection string (sync driver).
        """
        if _is_in_memory_sqlite(database_url):
            # One shared connection, otherwise every checkout sees an empty DB.
            self.engine = create_engine(
                database_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def initialize(self, seed_distinguished_group: bool = True) -> None:
        """Create the schema and make sure the distinguished group exists."""
        Base.metadata.create_all(self.engine)

        if seed_distinguished_group:
            with self.transaction() as session:
                if self.group_by_name(session, DISTINGUISHED_GROUP_NAME) is None:
                    session.add(GroupDB(name=DISTINGUISHED_GROUP_NAME))
                    logger.info("Seeded distinguished group '%s'", DISTINGUISHED_GROUP_NAME)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Yield a session whose work is committed on success and rolled back
        on any exception.

        A write based on a stale report row surfaces as an invalid state
        transition rather than as a persistence error.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            logger.warning("Stale write rejected: %s", exc)
            raise InvalidStateTransitionError(
                "Record was changed by a concurrent operation; reload and retry"
            ) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # ── By id ──────────────────────────────────────────────────

    def get_jurisdiction(self, session: Session, jurisdiction_id: int) -> JurisdictionDB | None:
        return session.get(JurisdictionDB, jurisdiction_id)

    def get_group(self, session: Session, group_id: int) -> GroupDB | None:
        return session.get(GroupDB, group_id)

    def get_actor(self, session: Session, actor_id: int) -> ActorDB | None:
        return session.get(ActorDB, actor_id)

    def get_meeting(self, session: Session, meeting_id: int) -> MeetingDB | None:
        return session.get(MeetingDB, meeting_id)

    def get_resolution(self, session: Session, resolution_id: int) -> ResolutionDB | None:
        return session.get(ResolutionDB, resolution_id)

    def get_report(self, session: Session, report_id: int) -> ReportDB | None:
        return session.get(ReportDB, report_id)

    def group_by_name(self, session: Session, name: str) -> GroupDB | None:
        return session.execute(
            select(GroupDB).where(GroupDB.name == name)
        ).scalar_one_or_none()

    # ── By resolution ──────────────────────────────────────────

    def assignments_for_resolution(
        self, session: Session, resolution_id: int
    ) -> list[AssignmentDB]:
        return list(
            session.execute(
                select(AssignmentDB)
                .where(AssignmentDB.resolution_id == resolution_id)
                .order_by(AssignmentDB.id.asc())
            ).scalars().all()
        )

    def delete_assignments_for_resolution(self, session: Session, resolution_id: int) -> int:
        """Remove every assignment row of a resolution; returns the row count."""
        result = session.execute(
            delete(AssignmentDB).where(AssignmentDB.resolution_id == resolution_id)
        )
        return result.rowcount or 0

    def reports_for_resolution(self, session: Session, resolution_id: int) -> list[ReportDB]:
        return list(
            session.execute(
                select(ReportDB)
                .where(ReportDB.resolution_id == resolution_id)
                .order_by(ReportDB.id.asc())
            ).scalars().all()
        )

    # ── By group ───────────────────────────────────────────────

    def actors_in_group(self, session: Session, group_id: int) -> list[ActorDB]:
        return list(
            session.execute(
                select(ActorDB)
                .where(ActorDB.group_id == group_id, ActorDB.is_active.is_(True))
                .order_by(ActorDB.id.asc())
            ).scalars().all()
        )

    def assignments_for_group(self, session: Session, group_id: int) -> list[AssignmentDB]:
        return list(
            session.execute(
                select(AssignmentDB)
                .where(AssignmentDB.group_id == group_id)
                .order_by(AssignmentDB.id.asc())
            ).scalars().all()
        )

    def reports_for_group(self, session: Session, group_id: int) -> list[ReportDB]:
        return list(
            session.execute(
                select(ReportDB)
                .where(ReportDB.group_id == group_id)
                .order_by(ReportDB.id.asc())
            ).scalars().all()
        )

    # ── By actor / status / role ───────────────────────────────

    def reports_by_submitter(self, session: Session, actor_id: int) -> list[ReportDB]:
        return list(
            session.execute(
                select(ReportDB)
                .where(ReportDB.submitted_by_id == actor_id)
                .order_by(ReportDB.id.asc())
            ).scalars().all()
        )

    def reports_by_status(self, session: Session, status: ReportStatus) -> list[ReportDB]:
        return list(
            session.execute(
                select(ReportDB)
                .where(ReportDB.status == status)
                .order_by(ReportDB.submitted_at.asc(), ReportDB.id.asc())
            ).scalars().all()
        )

    def all_reports(self, session: Session) -> list[ReportDB]:
        return list(session.execute(select(ReportDB).order_by(ReportDB.id.asc())).scalars().all())

    def resolutions_by_status(
        self, session: Session, status: ResolutionStatus
    ) -> list[ResolutionDB]:
        return list(
            session.execute(
                select(ResolutionDB)
                .where(ResolutionDB.status == status)
                .order_by(ResolutionDB.id.asc())
            ).scalars().all()
        )

    def resolutions_for_meeting(self, session: Session, meeting_id: int) -> list[ResolutionDB]:
        return list(
            session.execute(
                select(ResolutionDB)
                .where(ResolutionDB.meeting_id == meeting_id)
                .order_by(ResolutionDB.id.asc())
            ).scalars().all()
        )

    def meetings_in_jurisdiction(
        self, session: Session, jurisdiction_id: int | None = None
    ) -> list[MeetingDB]:
        stmt = select(MeetingDB)
        if jurisdiction_id is not None:
            stmt = stmt.where(MeetingDB.hosting_jurisdiction_id == jurisdiction_id)
        return list(session.execute(stmt.order_by(MeetingDB.meeting_date.asc())).scalars().all())

    def actors_by_roles(self, session: Session, roles: set[ActorRole] | frozenset) -> list[ActorDB]:
        return list(
            session.execute(
                select(ActorDB)
                .where(ActorDB.role.in_(list(roles)), ActorDB.is_active.is_(True))
                .order_by(ActorDB.id.asc())
            ).scalars().all()
        )

    def notifications_for_actor(self, session: Session, actor_id: int) -> list[NotificationDB]:
        return list(
            session.execute(
                select(NotificationDB)
                .where(NotificationDB.actor_id == actor_id)
                .order_by(NotificationDB.id.asc())
            ).scalars().all()
        )

    # ── Plain record registration ──────────────────────────────

    def add_jurisdiction(self, name: str, iso_code: str | None = None) -> int:
        with self.transaction() as session:
            jurisdiction = JurisdictionDB(name=name, iso_code=iso_code)
            session.add(jurisdiction)
            session.flush()
            return jurisdiction.id

    def add_group(self, name: str) -> int:
        with self.transaction() as session:
            existing = self.group_by_name(session, name)
            if existing is not None:
                return existing.id
            group = GroupDB(name=name)
            session.add(group)
            session.flush()
            return group.id

    def add_actor(
        self,
        name: str,
        email: str,
        role: ActorRole,
        jurisdiction_id: int | None = None,
        group_id: int | None = None,
    ) -> int:
        with self.transaction() as session:
            actor = ActorDB(
                name=name,
                email=email,
                role=role,
                jurisdiction_id=jurisdiction_id,
                group_id=group_id,
            )
            session.add(actor)
            session.flush()
            return actor.id

    def move_actor(
        self,
        actor_id: int,
        group_id: int | None = None,
        role: ActorRole | None = None,
    ) -> None:
        """Change an actor's group membership (and optionally role tag)."""
        with self.transaction() as session:
            actor = session.get(ActorDB, actor_id)
            if actor is None:
                raise LookupError(f"Actor {actor_id} not found")
            actor.group_id = group_id
            if role is not None:
                actor.role = role
