from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from civic_authz.db.session import get_db
from civic_authz.models.security import Permission, Tenant
from civic_authz.rbac.service import AuthorizationService
from civic_authz.schemas.security import (
    AssignmentOut,
    CacheStatsOut,
    CatalogPermissionOut,
    EffectivePermissionsOut,
    GrantOut,
    ManageableUsersOut,
    PermissionOut,
    TenantOut,
)
from civic_authz.security.decorators import require_permissions
from civic_authz.security.dependencies import (
    get_assignment_service,
    get_authz_service,
    get_current_subject_id,
    require_hierarchical_permission,
    require_permission,
)
from civic_authz.services.assignments import AssignmentService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users/{user_id}/permissions", response_model=EffectivePermissionsOut)
def effective_permissions(
    user_id: int,
    _: int = Depends(require_permission("users", "read")),
    authz: AuthorizationService = Depends(get_authz_service),
) -> EffectivePermissionsOut:
    permissions = authz.get_user_permissions(user_id, fail_closed=False)
    return EffectivePermissionsOut(
        user_id=user_id,
        level=authz.subject_level(user_id),
        permissions=[PermissionOut(**p.to_dict()) for p in permissions],
    )


@router.get("/users/manageable", response_model=ManageableUsersOut)
def manageable_users(
    subject_id: int = Depends(require_permission("users", "list")),
    authz: AuthorizationService = Depends(get_authz_service),
) -> ManageableUsersOut:
    return ManageableUsersOut(
        user_id=subject_id,
        level=authz.subject_level(subject_id),
        manageable_user_ids=authz.get_manageable_users(subject_id, fail_closed=False),
    )


@router.put("/users/{user_id}/roles/{role_id}", response_model=AssignmentOut)
def assign_role(
    user_id: int,
    role_id: int,
    subject_id: int = Depends(get_current_subject_id),
    assignments: AssignmentService = Depends(get_assignment_service),
) -> AssignmentOut:
    changed = assignments.assign_role(subject_id, user_id, role_id)
    return AssignmentOut(user_id=user_id, role_id=role_id, changed=changed)


@router.delete("/users/{user_id}/roles/{role_id}", response_model=AssignmentOut)
def revoke_role(
    user_id: int,
    role_id: int,
    subject_id: int = Depends(get_current_subject_id),
    assignments: AssignmentService = Depends(get_assignment_service),
) -> AssignmentOut:
    changed = assignments.revoke_role(subject_id, user_id, role_id)
    return AssignmentOut(user_id=user_id, role_id=role_id, changed=changed)


@router.put("/users/{user_id}/permissions/{permission_id}", response_model=GrantOut)
def grant_permission(
    user_id: int,
    permission_id: int,
    subject_id: int = Depends(get_current_subject_id),
    assignments: AssignmentService = Depends(get_assignment_service),
) -> GrantOut:
    changed = assignments.grant_permission(subject_id, user_id, permission_id)
    return GrantOut(user_id=user_id, permission_id=permission_id, changed=changed)


@router.delete("/users/{user_id}/permissions/{permission_id}", response_model=GrantOut)
def revoke_permission(
    user_id: int,
    permission_id: int,
    subject_id: int = Depends(get_current_subject_id),
    assignments: AssignmentService = Depends(get_assignment_service),
) -> GrantOut:
    changed = assignments.revoke_permission(subject_id, user_id, permission_id)
    return GrantOut(user_id=user_id, permission_id=permission_id, changed=changed)


@router.get("/permissions", response_model=list[CatalogPermissionOut])
@require_permissions("READ_PERMISSIONS")
def list_permissions(db: Session = Depends(get_db)) -> list[Permission]:
    stmt = select(Permission).order_by(Permission.module, Permission.resource, Permission.action)
    return list(db.scalars(stmt).all())


@router.get("/tenants", response_model=list[TenantOut])
@require_permissions("tenants:read")
def list_tenants(db: Session = Depends(get_db)) -> list[Tenant]:
    return list(db.scalars(select(Tenant).order_by(Tenant.name)).all())


@router.delete("/cache/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def invalidate_user_cache(
    user_id: int,
    _: int = Depends(require_hierarchical_permission("users", "update", target_param="user_id")),
    authz: AuthorizationService = Depends(get_authz_service),
) -> None:
    authz.invalidate_user_cache(user_id)


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
def clear_cache(
    _: int = Depends(require_permission("permissions", "manage")),
    authz: AuthorizationService = Depends(get_authz_service),
) -> None:
    authz.clear_all_cache()


@router.get("/cache/stats", response_model=CacheStatsOut)
def cache_stats(
    _: int = Depends(require_permission("permissions", "read")),
    authz: AuthorizationService = Depends(get_authz_service),
) -> CacheStatsOut:
    return CacheStatsOut(stats=authz.cache_stats())
