from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    resource: str
    action: str
    description: str | None = None


class CatalogPermissionOut(PermissionOut):
    module: str | None = None


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str


class EffectivePermissionsOut(BaseModel):
    user_id: int
    level: int
    permissions: list[PermissionOut]


class ManageableUsersOut(BaseModel):
    user_id: int
    level: int
    manageable_user_ids: list[int]


class AssignmentOut(BaseModel):
    user_id: int
    role_id: int
    changed: bool


class GrantOut(BaseModel):
    user_id: int
    permission_id: int
    changed: bool


class CacheStatsOut(BaseModel):
    stats: dict[str, Any]
