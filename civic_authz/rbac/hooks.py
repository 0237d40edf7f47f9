"""
Cache invalidation hooks for role / user / permission management code.

Any change to a role assignment, a direct grant, a role's grants or a
permission definition must call one of these before the mutating operation
returns. After that the next in-process check for every affected subject goes
back to the store. Propagation to other processes through the shared tier is
best-effort.
"""

from __future__ import annotations

import logging

from .service import AuthorizationService
from .snapshot import PermissionStore

logger = logging.getLogger(__name__)


class InvalidationHooks:
    def __init__(self, authz: AuthorizationService, store: PermissionStore | None = None) -> None:
        self._authz = authz
        self._store = store if store is not None else authz.store

    def assignments_changed(self, *subject_ids: int) -> None:
        """Roles assigned/revoked or direct grants changed for these subjects."""
        for subject_id in dict.fromkeys(subject_ids):
            self._authz.invalidate_user_cache(subject_id)

    def role_changed(self, role_id: int, affected: list[int] | None = None) -> list[int]:
        """
        A role's grants, level or definition changed.

        ``affected`` must be given when the role rows are already gone (role
        deletion), since the store can no longer find its holders.
        """

        subject_ids = affected if affected is not None else self._holders(lambda: self._store.subjects_with_role(role_id))
        if subject_ids is None:
            return []
        self.assignments_changed(*subject_ids)
        logger.info("RBAC: role %s changed, invalidated %s subject(s)", role_id, len(subject_ids))
        return subject_ids

    def permission_changed(self, permission_id: int) -> list[int]:
        """A permission was renamed, re-targeted or removed."""
        subject_ids = self._holders(lambda: self._store.subjects_with_permission(permission_id))
        if subject_ids is None:
            return []
        self.assignments_changed(*subject_ids)
        logger.info("RBAC: permission %s changed, invalidated %s subject(s)", permission_id, len(subject_ids))
        return subject_ids

    def catalog_reset(self) -> None:
        self._authz.clear_all_cache()

    def _holders(self, lookup) -> list[int] | None:
        # If the holders cannot be listed, dropping everything is the only safe option.
        try:
            return lookup()
        except Exception:
            logger.exception("RBAC: could not list affected subjects; clearing the whole cache")
            self._authz.clear_all_cache()
            return None
