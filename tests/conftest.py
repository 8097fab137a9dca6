"""
Shared fixtures: an in-memory record store seeded with a small world of
jurisdictions, groups and actors, plus recording notification/mail sinks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest

from resolution_workflow.domain.schema import (
    DISTINGUISHED_GROUP_NAME,
    ActorRole,
    MeetingType,
    ResolutionStatus,
)
from resolution_workflow.notifications.dispatch import NotificationDispatcher
from resolution_workflow.store.models import MeetingDB, ResolutionDB
from resolution_workflow.store.service import RecordStore


class RecordingNotificationSink:
    """In-app sink that remembers every call; fails for selected actors."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.fail_for: set[int] = set()

    def notify(self, actor_id, title, message, kind, related_type, related_id) -> None:
        if actor_id in self.fail_for:
            raise RuntimeError(f"notification store unavailable for {actor_id}")
        self.calls.append(
            {
                "actor_id": actor_id,
                "title": title,
                "message": message,
                "kind": kind,
                "related_type": related_type,
                "related_id": related_id,
            }
        )

    def recipients(self, title: str | None = None) -> list[int]:
        return [c["actor_id"] for c in self.calls if title is None or c["title"] == title]


class RecordingMailSink:
    """Mail sink that remembers every message; fails for selected addresses."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()

    def send_mail(self, to_address, to_name, subject, body) -> None:
        if to_address in self.fail_for:
            raise ConnectionError(f"relay refused {to_address}")
        self.sent.append({"to": to_address, "name": to_name, "subject": subject, "body": body})


@dataclass
class World:
    """Ids of the seeded records."""

    kenya: int = 0
    uganda: int = 0
    hod_group: int = 0
    fisheries: int = 0
    water: int = 0
    health: int = 0
    actors: dict[str, int] = field(default_factory=dict)
    meeting_ug: int = 0
    meeting_ke: int = 0
    resolution_ug: int = 0
    resolution_ke: int = 0

    def __getattr__(self, name: str) -> int:
        actors = self.__dict__.get("actors", {})
        if name in actors:
            return actors[name]
        raise AttributeError(name)


def add_meeting(store: RecordStore, title: str, jurisdiction_id: int, creator_id: int) -> int:
    with store.transaction() as session:
        meeting = MeetingDB(
            title=title,
            meeting_date=datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc),
            meeting_type=MeetingType.TECHNICAL_MEETING,
            hosting_jurisdiction_id=jurisdiction_id,
            created_by_id=creator_id,
        )
        session.add(meeting)
        session.flush()
        return meeting.id


def add_resolution(
    store: RecordStore,
    meeting_id: int,
    creator_id: int,
    title: str = "Harmonize fishing licences",
    status: ResolutionStatus = ResolutionStatus.ASSIGNED,
) -> int:
    with store.transaction() as session:
        resolution = ResolutionDB(
            title=title,
            description="",
            meeting_id=meeting_id,
            created_by_id=creator_id,
            status=status,
        )
        session.add(resolution)
        session.flush()
        return resolution.id


def seed_world(store: RecordStore) -> World:
    world = World()
    world.kenya = store.add_jurisdiction("Kenya", "KE")
    world.uganda = store.add_jurisdiction("Uganda", "UG")
    world.hod_group = store.add_group(DISTINGUISHED_GROUP_NAME)
    world.fisheries = store.add_group("Fisheries Subcommittee")
    world.water = store.add_group("Water Resources Subcommittee")
    world.health = store.add_group("Health Subcommittee")

    people = {
        "admin": ("Ada Admin", ActorRole.ADMIN, None, None),
        "secretary_ke": ("Kamau Secretary", ActorRole.SECRETARY, world.kenya, None),
        "secretary_ug": ("Nakato Secretary", ActorRole.DELEGATION_SECRETARY, world.uganda, None),
        "secretary_nowhere": ("Floating Secretary", ActorRole.COMMITTEE_SECRETARY, None, None),
        "hod_chair": ("Odhiambo Chair", ActorRole.GROUP_LEADER, world.kenya, world.hod_group),
        "hod_deputy": ("Achieng Deputy", ActorRole.GROUP_DEPUTY_LEADER, world.uganda, world.hod_group),
        "hod_member": ("Plain Member", ActorRole.SUBCOMMITTEE_MEMBER, world.kenya, world.hod_group),
        "legacy_hod": ("Legacy Head", ActorRole.DELEGATION_HEAD, world.kenya, world.hod_group),
        "fish_chair": ("Fisheries Chair", ActorRole.GROUP_LEADER, world.kenya, world.fisheries),
        "fish_member": ("Fisheries Member", ActorRole.SUBCOMMITTEE_MEMBER, world.kenya, world.fisheries),
        "fish_member2": ("Second Fisher", ActorRole.SUBCOMMITTEE_MEMBER, world.uganda, world.fisheries),
        "water_member": ("Water Member", ActorRole.SUBCOMMITTEE_MEMBER, world.uganda, world.water),
        "commissioner": ("Commissioner General", ActorRole.COMMISSIONER_GENERAL, None, None),
    }
    for key, (name, role, jurisdiction_id, group_id) in people.items():
        world.actors[key] = store.add_actor(
            name, f"{key}@example.org", role, jurisdiction_id, group_id
        )

    world.meeting_ug = add_meeting(store, "Kampala technical meeting", world.uganda, world.secretary_ug)
    world.meeting_ke = add_meeting(store, "Nairobi technical meeting", world.kenya, world.secretary_ke)
    world.resolution_ug = add_resolution(store, world.meeting_ug, world.secretary_ug)
    world.resolution_ke = add_resolution(
        store, world.meeting_ke, world.secretary_ke, title="Shared water quality monitoring"
    )
    return world


@pytest.fixture
def store() -> RecordStore:
    record_store = RecordStore("sqlite://")
    record_store.initialize()
    yield record_store
    record_store.engine.dispose()


@pytest.fixture
def world(store: RecordStore) -> World:
    return seed_world(store)


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def mail() -> RecordingMailSink:
    return RecordingMailSink()


@pytest.fixture
def dispatcher(notifications, mail) -> NotificationDispatcher:
    return NotificationDispatcher(notification_sink=notifications, mail_sink=mail)


@pytest.fixture
def file_store(tmp_path) -> RecordStore:
    """A store on a SQLite file, so that separate sessions use separate connections."""
    record_store = RecordStore(f"sqlite:///{tmp_path / 'workflow.db'}")
    record_store.initialize()
    yield record_store
    record_store.engine.dispose()


@pytest.fixture
def file_world(file_store: RecordStore) -> World:
    return seed_world(file_store)
