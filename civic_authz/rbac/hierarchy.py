"""
Structural rank rules for sensitive mutations.

Applied on top of a base permission that has already been granted:

    users   + create/update/delete   subject level must be strictly greater than
                                     the target user's level (or target_level)
    roles   + create/update/delete   subject level >= 2
    tenants + any action             subject level >= 2
    anything else                    base decision stands

A subject without roles has level 0 and never passes a hierarchical check.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from .levels import ADMIN_LEVEL, NO_LEVEL
from .names import normalize_action, normalize_resource
from .snapshot import PermissionStore

logger = logging.getLogger(__name__)

MUTATING_ACTIONS = frozenset({"create", "update", "delete"})
RANKED_RESOURCES = frozenset({"users", "roles", "tenants"})


@dataclass(frozen=True)
class HierarchyDecision:
    allowed: bool
    subject_level: int
    reason: str
    target_level: int | None = None


class HierarchyPolicy:
    def __init__(self, store: PermissionStore) -> None:
        self._store = store

    def subject_level(self, subject_id: int) -> int:
        snapshot = self._store.load_subject_snapshot(subject_id)
        if snapshot is None:
            return NO_LEVEL
        return snapshot.level

    def evaluate(
        self,
        subject_id: int,
        resource: str,
        action: str,
        target_subject_id: int | None = None,
        target_level: int | None = None,
        subject_level: int | None = None,
    ) -> HierarchyDecision:
        """``subject_level`` may be passed when the caller already loaded the subject."""
        resource = normalize_resource(resource)
        action = normalize_action(action)
        level = self.subject_level(subject_id) if subject_level is None else subject_level

        if level <= NO_LEVEL:
            return HierarchyDecision(False, level, "subject has no role and therefore no hierarchy level")

        if resource == "users" and action in MUTATING_ACTIONS:
            if target_subject_id is not None:
                target = self.subject_level(target_subject_id)
                if level <= target:
                    logger.warning(
                        "Hierarchy violation: level %s cannot %s a user at level %s (subject_id=%s target_id=%s)",
                        level,
                        action,
                        target,
                        subject_id,
                        target_subject_id,
                    )
                    return HierarchyDecision(False, level, "target user is at the same or a higher level", target)
            if target_level is not None and level <= target_level:
                logger.warning(
                    "Hierarchy violation: level %s cannot %s a user at level %s (subject_id=%s)",
                    level,
                    action,
                    target_level,
                    subject_id,
                )
                return HierarchyDecision(False, level, "target level is the same or higher", target_level)

        elif resource == "roles" and action in MUTATING_ACTIONS:
            if level < ADMIN_LEVEL:
                logger.warning("Hierarchy violation: level %s cannot %s roles (subject_id=%s)", level, action, subject_id)
                return HierarchyDecision(False, level, f"role management requires level {ADMIN_LEVEL}")

        elif resource == "tenants":
            if level < ADMIN_LEVEL:
                logger.warning("Hierarchy violation: level %s cannot %s tenants (subject_id=%s)", level, action, subject_id)
                return HierarchyDecision(False, level, f"tenant management requires level {ADMIN_LEVEL}")

        return HierarchyDecision(True, level, "allowed", target_level)
