"""
SQLAlchemy-backed permission store.

A subject snapshot is read with a single SELECT (joined eager loads of
roles -> permissions and direct permissions), so one snapshot never mixes
rows from before and after a concurrent grant change.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import select, union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from civic_authz.models.security import Permission, Role, User, role_permissions, user_permissions, user_roles

from .errors import LookupFailure
from .levels import highest_level
from .snapshot import PermissionRecord, RoleGrant, RoleRecord, SubjectSnapshot

logger = logging.getLogger(__name__)


def _permission_record(permission: Permission) -> PermissionRecord:
    return PermissionRecord(
        id=permission.id,
        name=permission.name,
        resource=permission.resource,
        action=permission.action,
        description=permission.description,
    )


def _role_record(role: Role) -> RoleRecord:
    return RoleRecord(id=role.id, name=role.name, level=role.level, tenant_id=role.tenant_id)


class SqlPermissionStore:
    """
    Read-only queries over users, roles, permissions and their link tables.

    Opens a short-lived session per call from ``session_factory`` so it is
    safe to share between request threads. Every database error is wrapped in
    LookupFailure; callers decide whether that means "deny" or "500".
    """

    def __init__(self, session_factory: Callable[[], Session], admin_role_name: str = "ADMIN") -> None:
        self._session_factory = session_factory
        self._admin_role_name = admin_role_name.lower()

    def load_subject_snapshot(self, subject_id: int) -> SubjectSnapshot | None:
        stmt = (
            select(User)
            .where(User.id == subject_id)
            .options(
                joinedload(User.roles).joinedload(Role.permissions),
                joinedload(User.permissions),
            )
        )
        try:
            with self._session_factory() as db:
                user = db.execute(stmt).unique().scalar_one_or_none()
                if user is None:
                    logger.debug("Store: subject not found subject_id=%s", subject_id)
                    return None
                return self._snapshot(user)
        except SQLAlchemyError as exc:
            logger.error("Store: snapshot query failed subject_id=%s error=%s", subject_id, type(exc).__name__)
            raise LookupFailure(f"could not load permissions for subject {subject_id}") from exc

    def _snapshot(self, user: User) -> SubjectSnapshot:
        grants = tuple(
            RoleGrant(
                role=_role_record(role),
                permissions=tuple(_permission_record(p) for p in role.permissions),
            )
            for role in sorted(user.roles, key=lambda r: r.id)
        )
        return SubjectSnapshot(
            subject_id=user.id,
            tenant_id=user.tenant_id,
            direct=tuple(_permission_record(p) for p in sorted(user.permissions, key=lambda p: p.id)),
            roles=grants,
            is_admin=any(g.role.name.lower() == self._admin_role_name for g in grants),
        )

    def subjects_with_role(self, role_id: int) -> list[int]:
        stmt = select(user_roles.c.user_id).where(user_roles.c.role_id == role_id)
        return self._ids(stmt, "subjects_with_role", role_id)

    def subjects_with_permission(self, permission_id: int) -> list[int]:
        direct = select(user_permissions.c.user_id.label("user_id")).where(
            user_permissions.c.permission_id == permission_id
        )
        via_role = (
            select(user_roles.c.user_id.label("user_id"))
            .join(role_permissions, role_permissions.c.role_id == user_roles.c.role_id)
            .where(role_permissions.c.permission_id == permission_id)
        )
        return self._ids(union(direct, via_role), "subjects_with_permission", permission_id)

    def subject_levels(self) -> list[tuple[int, int]]:
        """(subject_id, level) for every user, level 0 for users without roles."""
        stmt = select(User).options(joinedload(User.roles)).order_by(User.id)
        try:
            with self._session_factory() as db:
                users = db.execute(stmt).unique().scalars().all()
                return [(u.id, highest_level(r.level for r in u.roles)) for u in users]
        except SQLAlchemyError as exc:
            logger.error("Store: subject_levels query failed error=%s", type(exc).__name__)
            raise LookupFailure("could not load subject levels") from exc

    def _ids(self, stmt, label: str, ref: int) -> list[int]:
        try:
            with self._session_factory() as db:
                return sorted({row[0] for row in db.execute(stmt)})
        except SQLAlchemyError as exc:
            logger.error("Store: %s query failed ref=%s error=%s", label, ref, type(exc).__name__)
            raise LookupFailure(f"{label} lookup failed for {ref}") from exc
