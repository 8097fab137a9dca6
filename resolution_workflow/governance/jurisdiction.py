"""
Location Scope Guard — restricts jurisdiction-bound actors to their own country.

Secretarial roles are registered against a jurisdiction and may only manage
meetings, take minutes and distribute resolutions for records hosted in that
same jurisdiction. A missing jurisdiction on either side is a denial, never
an error; callers surface ``denial_message`` to explain it.
"""

from __future__ import annotations

import logging
from typing import Any

from resolution_workflow.domain.schema import (
    COORDINATOR_ROLES,
    JURISDICTION_SCOPED_ROLES,
    ActorRole,
)

logger = logging.getLogger(__name__)


def can_act(actor_jurisdiction: Any, target_jurisdiction: Any) -> bool:
    """True only if both jurisdictions are present and equal."""
    if actor_jurisdiction is None or target_jurisdiction is None:
        return False
    return actor_jurisdiction == target_jurisdiction


def is_jurisdiction_scoped(role: ActorRole | str) -> bool:
    return ActorRole(role) in JURISDICTION_SCOPED_ROLES


def is_coordinator(role: ActorRole | str) -> bool:
    return ActorRole(role) in COORDINATOR_ROLES


class LocationScopeGuard:
    """
    Applies the location rule to actor and meeting records.

    Works on anything exposing ``role``/``jurisdiction_id``/``jurisdiction``
    (actors) and ``hosting_jurisdiction_id``/``hosting_jurisdiction``
    (meetings), which is what the store models provide.
    """

    def permits(self, actor: Any, meeting: Any) -> bool:
        """
        Decide whether ``actor`` may operate on records tied to ``meeting``.

        Actors whose role is not jurisdiction-scoped are not restricted by
        location; scoped actors need a matching jurisdiction.
        """
        if not is_jurisdiction_scoped(actor.role):
            return True
        allowed = can_act(actor.jurisdiction_id, meeting.hosting_jurisdiction_id)
        if not allowed:
            logger.info(
                "Location denied: actor=%s jurisdiction=%s meeting=%s hosting=%s",
                actor.id, actor.jurisdiction_id, meeting.id, meeting.hosting_jurisdiction_id,
            )
        return allowed

    def permits_jurisdiction(self, actor: Any, jurisdiction_id: int | None) -> bool:
        """Same rule as ``permits`` for a bare target jurisdiction (meeting creation)."""
        if not is_jurisdiction_scoped(actor.role):
            return True
        return can_act(actor.jurisdiction_id, jurisdiction_id)

    @staticmethod
    def denial_message(actor: Any, meeting: Any) -> str:
        """Human-readable reason why ``permits`` refused (or passed)."""
        actor_jurisdiction = getattr(actor, "jurisdiction", None)
        hosting = getattr(meeting, "hosting_jurisdiction", None)

        if actor.jurisdiction_id is None:
            return "Actor must have a jurisdiction assigned to manage meetings"
        if meeting.hosting_jurisdiction_id is None:
            return "Meeting must have a hosting jurisdiction assigned"
        if actor.jurisdiction_id != meeting.hosting_jurisdiction_id:
            actor_name = actor_jurisdiction.name if actor_jurisdiction else actor.jurisdiction_id
            hosting_name = hosting.name if hosting else meeting.hosting_jurisdiction_id
            return (
                f"Actor from {actor_name} cannot manage records of meetings "
                f"hosted in {hosting_name}"
            )
        return "Location validation passed"
