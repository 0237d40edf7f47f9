"""
Immutable views of a subject's grants, as read from the permission store.

The resolver and the hierarchy policy only ever see these records, never ORM
objects, so a snapshot can be passed between threads and compared in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Protocol

from .levels import highest_level
from .names import PermissionKey, normalize_name


@dataclass(frozen=True)
class PermissionRecord:
    id: int
    name: str
    resource: str
    action: str
    description: str | None = None

    @property
    def key(self) -> PermissionKey:
        return PermissionKey.of(self.resource, self.action)

    def matches_name(self, name: str) -> bool:
        return normalize_name(self.name) == normalize_name(name)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "resource": self.resource,
            "action": self.action,
            "description": self.description,
        }


@dataclass(frozen=True)
class RoleRecord:
    id: int
    name: str
    level: int
    tenant_id: int | None = None


@dataclass(frozen=True)
class RoleGrant:
    """A role assigned to the subject together with the permissions it grants."""

    role: RoleRecord
    permissions: tuple[PermissionRecord, ...] = ()


@dataclass(frozen=True)
class SubjectSnapshot:
    subject_id: int
    tenant_id: int | None
    direct: tuple[PermissionRecord, ...] = ()
    roles: tuple[RoleGrant, ...] = ()
    is_admin: bool = False

    @property
    def role_names(self) -> frozenset[str]:
        return frozenset(g.role.name for g in self.roles)

    @property
    def level(self) -> int:
        """Highest level among assigned roles; 0 when the subject has none."""
        return highest_level(g.role.level for g in self.roles)

    def role_permissions(self) -> Iterator[PermissionRecord]:
        for grant in self.roles:
            yield from grant.permissions

    def all_permissions(self) -> Iterator[PermissionRecord]:
        """Direct grants first, then role grants (may contain duplicates)."""
        yield from self.direct
        yield from self.role_permissions()


class PermissionStore(Protocol):
    """Read-only access to persisted users, roles and grants."""

    def load_subject_snapshot(self, subject_id: int) -> SubjectSnapshot | None: ...

    def subjects_with_role(self, role_id: int) -> list[int]: ...

    def subjects_with_permission(self, permission_id: int) -> list[int]: ...

    def subject_levels(self) -> list[tuple[int, int]]: ...
