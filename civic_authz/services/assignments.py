"""
Role and grant management.

Each operation checks the actor's (hierarchical) permission, commits the
change, and then calls the invalidation hooks for every affected subject
before returning. Assigning a role also counts as managing a user at that
role's level, so an actor can only hand out roles below their own level.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from civic_authz.models.security import Permission, Role, User
from civic_authz.rbac.hooks import InvalidationHooks
from civic_authz.rbac.service import AuthorizationService

logger = logging.getLogger(__name__)


class RecordNotFound(LookupError):
    """The user, role or permission referenced by a management call does not exist."""


def _require(db: Session, model, ident: int):
    obj = db.get(model, ident)
    if obj is None:
        raise RecordNotFound(f"{model.__name__} {ident} not found")
    return obj


class AssignmentService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        authz: AuthorizationService,
        hooks: InvalidationHooks | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._authz = authz
        self._hooks = hooks if hooks is not None else InvalidationHooks(authz)

    # ---- Role assignments ------------------------------------------------------------

    def assign_role(self, actor_id: int, user_id: int, role_id: int) -> bool:
        """Returns False when the user already had the role."""
        self._authz.check_permission(actor_id, "roles", "assign")
        self._authz.check_hierarchical_permission(
            actor_id, "users", "update", target_subject_id=user_id, target_level=self._role_level(role_id)
        )
        with self._session_factory() as db, db.begin():
            user = _require(db, User, user_id)
            role = _require(db, Role, role_id)
            if role in user.roles:
                return False
            user.roles.append(role)

        self._hooks.assignments_changed(user_id)
        logger.info("Role assigned actor_id=%s user_id=%s role_id=%s", actor_id, user_id, role_id)
        return True

    def revoke_role(self, actor_id: int, user_id: int, role_id: int) -> bool:
        """Returns False when the user did not have the role."""
        self._authz.check_permission(actor_id, "roles", "assign")
        self._authz.check_hierarchical_permission(actor_id, "users", "update", target_subject_id=user_id)
        with self._session_factory() as db, db.begin():
            user = _require(db, User, user_id)
            role = _require(db, Role, role_id)
            if role not in user.roles:
                return False
            user.roles.remove(role)

        self._hooks.assignments_changed(user_id)
        logger.info("Role revoked actor_id=%s user_id=%s role_id=%s", actor_id, user_id, role_id)
        return True

    # ---- Direct grants ---------------------------------------------------------------

    def grant_permission(self, actor_id: int, user_id: int, permission_id: int) -> bool:
        self._authz.check_permission(actor_id, "permissions", "assign")
        self._authz.check_hierarchical_permission(actor_id, "users", "update", target_subject_id=user_id)
        with self._session_factory() as db, db.begin():
            user = _require(db, User, user_id)
            permission = _require(db, Permission, permission_id)
            if permission in user.permissions:
                return False
            user.permissions.append(permission)

        self._hooks.assignments_changed(user_id)
        logger.info("Permission granted actor_id=%s user_id=%s permission_id=%s", actor_id, user_id, permission_id)
        return True

    def revoke_permission(self, actor_id: int, user_id: int, permission_id: int) -> bool:
        self._authz.check_permission(actor_id, "permissions", "assign")
        self._authz.check_hierarchical_permission(actor_id, "users", "update", target_subject_id=user_id)
        with self._session_factory() as db, db.begin():
            user = _require(db, User, user_id)
            permission = _require(db, Permission, permission_id)
            if permission not in user.permissions:
                return False
            user.permissions.remove(permission)

        self._hooks.assignments_changed(user_id)
        logger.info("Permission revoked actor_id=%s user_id=%s permission_id=%s", actor_id, user_id, permission_id)
        return True

    # ---- Role definitions ------------------------------------------------------------

    def create_role(
        self,
        actor_id: int,
        name: str,
        *,
        description: str | None = None,
        permission_ids: Iterable[int] = (),
        tenant_id: int | None = None,
        level: int | None = None,
    ) -> int:
        """Create a role. Without an explicit level the name-derived default applies."""
        self._authz.check_hierarchical_permission(actor_id, "roles", "create")
        with self._session_factory() as db, db.begin():
            role = Role(name=name, description=description, tenant_id=tenant_id)
            if level is not None:
                role.level = level
            role.permissions = self._permissions(db, permission_ids)
            db.add(role)
            db.flush()
            role_id = role.id

        logger.info("Role created actor_id=%s role_id=%s name=%s", actor_id, role_id, name)
        return role_id

    def set_role_permissions(self, actor_id: int, role_id: int, permission_ids: Iterable[int]) -> list[int]:
        """Replace a role's grants. Returns the subjects whose cache was invalidated."""
        self._authz.check_hierarchical_permission(actor_id, "roles", "update")
        with self._session_factory() as db, db.begin():
            role = _require(db, Role, role_id)
            role.permissions = self._permissions(db, permission_ids)

        return self._hooks.role_changed(role_id)

    def set_role_level(self, actor_id: int, role_id: int, level: int) -> list[int]:
        self._authz.check_hierarchical_permission(actor_id, "roles", "update")
        with self._session_factory() as db, db.begin():
            role = _require(db, Role, role_id)
            role.level = level

        return self._hooks.role_changed(role_id)

    def delete_role(self, actor_id: int, role_id: int) -> list[int]:
        self._authz.check_hierarchical_permission(actor_id, "roles", "delete")
        with self._session_factory() as db, db.begin():
            role = _require(db, Role, role_id)
            holders = sorted(u.id for u in role.users)
            db.delete(role)

        return self._hooks.role_changed(role_id, affected=holders)

    def _role_level(self, role_id: int) -> int:
        with self._session_factory() as db:
            return _require(db, Role, role_id).level

    @staticmethod
    def _permissions(db: Session, permission_ids: Iterable[int]) -> list[Permission]:
        wanted = set(permission_ids)
        if not wanted:
            return []
        found = list(db.scalars(select(Permission).where(Permission.id.in_(wanted))))
        missing = wanted - {p.id for p in found}
        if missing:
            raise RecordNotFound(f"Permission(s) {sorted(missing)} not found")
        return found
