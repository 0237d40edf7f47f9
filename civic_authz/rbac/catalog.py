"""
Predefined permission catalog and default roles, loaded from YAML.

Expected shape (simplified):

    permissions:
      - resource: sites                 # shorthand: one permission per action,
        actions: [create, read, update] # named "sites:create", ...
        module: Asset Management
      - name: VIEW_ALL_USERS            # explicit entry
        resource: users
        action: view_all
        description: View all users in the system

    roles:
      - name: ADMIN
        level: 2
        system: true
        permissions: ["*"]              # every catalog permission
      - name: Editor
        permissions: [sites:read, UPDATE_SITES]

Role permission references accept either name grammar and are resolved
against the catalog; an unknown reference is an error.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import CatalogError, ConfigurationError
from .levels import default_level_for_role_name
from .names import PermissionKey, normalize_name, parse_permission_name

logger = logging.getLogger(__name__)

ALL_PERMISSIONS = "*"


class PermissionEntry(BaseModel):
    resource: str
    name: str | None = None
    action: str | None = None
    actions: list[str] = Field(default_factory=list)
    description: str | None = None
    module: str | None = None


class RoleEntry(BaseModel):
    name: str
    description: str | None = None
    level: int | None = Field(default=None, ge=0)
    system: bool = False
    permissions: list[str] = Field(default_factory=list)


class CatalogModel(BaseModel):
    permissions: list[PermissionEntry] = Field(default_factory=list)
    roles: list[RoleEntry] = Field(default_factory=list)


@dataclass(frozen=True)
class PermissionDef:
    name: str
    resource: str
    action: str
    description: str | None = None
    module: str | None = None

    @property
    def key(self) -> PermissionKey:
        return PermissionKey(self.resource, self.action)


@dataclass(frozen=True)
class RoleDef:
    name: str
    level: int
    permissions: tuple[str, ...]
    description: str | None = None
    is_system: bool = False


@dataclass(frozen=True)
class PermissionCatalog:
    permissions: tuple[PermissionDef, ...]
    roles: tuple[RoleDef, ...]

    def permission(self, name: str) -> PermissionDef | None:
        wanted = normalize_name(name)
        for perm in self.permissions:
            if normalize_name(perm.name) == wanted:
                return perm
        return None

    def role(self, name: str) -> RoleDef | None:
        for role in self.roles:
            if role.name == name:
                return role
        return None

    def modules(self) -> list[str]:
        return sorted({p.module for p in self.permissions if p.module})

    def permissions_for_module(self, module: str) -> list[PermissionDef]:
        return [p for p in self.permissions if p.module == module]


def _expand(entry: PermissionEntry) -> list[PermissionDef]:
    if entry.action and entry.actions:
        raise CatalogError(f"permission entry for {entry.resource!r} sets both action and actions")
    if entry.actions and entry.name:
        raise CatalogError(f"permission entry {entry.name!r} cannot set a name together with actions")
    actions = [entry.action] if entry.action else entry.actions
    if not actions:
        raise CatalogError(f"permission entry for {entry.resource!r} needs action or actions")

    defs: list[PermissionDef] = []
    for action in actions:
        try:
            key = PermissionKey.of(entry.resource, action)
        except ConfigurationError as exc:
            raise CatalogError(str(exc)) from exc
        defs.append(
            PermissionDef(
                name=entry.name or str(key),
                resource=key.resource,
                action=key.action,
                description=entry.description,
                module=entry.module,
            )
        )
    return defs


def _resolve_reference(ref: str, by_name: dict[str, PermissionDef], by_key: dict[PermissionKey, PermissionDef]) -> PermissionDef:
    found = by_name.get(normalize_name(ref))
    if found is not None:
        return found
    try:
        key = parse_permission_name(ref)
    except ConfigurationError as exc:
        raise CatalogError(str(exc)) from exc
    found = by_key.get(key)
    if found is None:
        raise CatalogError(f"unknown permission reference {ref!r}")
    return found


def parse_catalog(raw: dict[str, Any]) -> PermissionCatalog:
    try:
        model = CatalogModel.model_validate(raw)
    except ValidationError as exc:
        raise CatalogError(f"invalid permission catalog: {exc}") from exc

    permissions: list[PermissionDef] = []
    by_name: dict[str, PermissionDef] = {}
    by_key: dict[PermissionKey, PermissionDef] = {}
    for entry in model.permissions:
        for perm in _expand(entry):
            if normalize_name(perm.name) in by_name:
                raise CatalogError(f"duplicate permission name {perm.name!r}")
            if perm.key in by_key:
                raise CatalogError(f"duplicate permission {perm.key} ({perm.name!r} and {by_key[perm.key].name!r})")
            by_name[normalize_name(perm.name)] = perm
            by_key[perm.key] = perm
            permissions.append(perm)

    roles: list[RoleDef] = []
    seen_roles: set[str] = set()
    for entry in model.roles:
        if entry.name in seen_roles:
            raise CatalogError(f"duplicate role {entry.name!r}")
        seen_roles.add(entry.name)

        if ALL_PERMISSIONS in entry.permissions:
            names = tuple(p.name for p in permissions)
        else:
            resolved = [_resolve_reference(ref, by_name, by_key).name for ref in entry.permissions]
            names = tuple(dict.fromkeys(resolved))

        roles.append(
            RoleDef(
                name=entry.name,
                level=entry.level if entry.level is not None else default_level_for_role_name(entry.name),
                permissions=names,
                description=entry.description,
                is_system=entry.system,
            )
        )

    return PermissionCatalog(permissions=tuple(permissions), roles=tuple(roles))


def load_permission_catalog(path: Path) -> PermissionCatalog:
    raw_text = path.read_text(encoding="utf-8")
    raw = yaml.safe_load(raw_text) or {}
    if not isinstance(raw, dict):
        raise CatalogError(f"permission catalog must be a mapping: {path}")
    catalog = parse_catalog(raw)
    logger.debug("Loaded permission catalog %s permissions=%s roles=%s", path, len(catalog.permissions), len(catalog.roles))
    return catalog
