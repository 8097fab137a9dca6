"""
Privilege Deriver — the delegation-head review privilege.

There is no stored "delegation head" privilege. An actor holds it only while
both of these are true:

- their declared role is group leader or deputy group leader, and
- the group they belong to is the distinguished "Head Of Delegation" group.

A role tag that merely looks privileged (the legacy ``hod`` tag) grants
nothing. Group membership is mutable and owned elsewhere, so the answer is
recomputed from the actor record on every check and never cached on it.
"""

from __future__ import annotations

import logging
from typing import Any

from resolution_workflow.domain.schema import (
    DISTINGUISHED_GROUP_NAME,
    ELEVATED_PRIVILEGE_DISPLAY,
    PRIVILEGE_BEARING_ROLES,
    ActorRole,
)

logger = logging.getLogger(__name__)


def holds_elevated_privilege(role: ActorRole | str | None, group_name: str | None) -> bool:
    """Pure form of the rule over a (role tag, group name) pair."""
    if role is None or group_name is None:
        return False
    try:
        role = ActorRole(role)
    except ValueError:
        return False
    return role in PRIVILEGE_BEARING_ROLES and group_name == DISTINGUISHED_GROUP_NAME


class PrivilegeDeriver:
    """
    Derives elevated review privilege from group membership.

    Needs the record store only for the questions about the group itself
    (``id_of_distinguished_group``, ``is_distinguished_group``).
    """

    def __init__(self, store: Any = None, group_name: str = DISTINGUISHED_GROUP_NAME) -> None:
        self.store = store
        self.group_name = group_name

    def has_elevated_review_privilege(self, actor: Any) -> bool:
        """
        Check whether ``actor`` may perform stage-1 review.

        Args:
            actor: Any object exposing ``role`` and ``group`` (with ``name``),
                such as a store ``ActorDB`` loaded in the current session.
        """
        if actor is None:
            return False
        try:
            role = ActorRole(getattr(actor, "role", None))
        except ValueError:
            return False
        if role not in PRIVILEGE_BEARING_ROLES:
            return False
        group = getattr(actor, "group", None)
        if group is None:
            logger.debug("Actor %s has no group; no elevated privilege", actor.id)
            return False
        granted = group.name == self.group_name
        if granted:
            logger.debug(
                "Actor %s leads or deputizes '%s'; elevated privilege granted",
                actor.id, self.group_name,
            )
        return granted

    def id_of_distinguished_group(self) -> int | None:
        """Look the distinguished group up by its fixed name."""
        with self.store.transaction() as session:
            group = self.store.group_by_name(session, self.group_name)
            if group is None:
                logger.warning("Distinguished group '%s' not found", self.group_name)
                return None
            return group.id

    def is_distinguished_group(self, group_id: int) -> bool:
        with self.store.transaction() as session:
            group = self.store.get_group(session, group_id)
            return group is not None and group.name == self.group_name

    def role_display(self, actor: Any) -> str:
        """Display label for an actor, naming the borrowed privilege when held."""
        if self.has_elevated_review_privilege(actor):
            return ELEVATED_PRIVILEGE_DISPLAY
        return ActorRole(actor.role).value
