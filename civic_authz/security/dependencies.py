from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from civic_authz.db.session import get_db
from civic_authz.rbac.errors import AuthorizationDenied, ConfigurationError
from civic_authz.rbac.hierarchy import RANKED_RESOURCES
from civic_authz.rbac.names import parse_permission_name
from civic_authz.rbac.service import AuthorizationService
from civic_authz.security.auth import load_subject, read_subject_id
from civic_authz.services.assignments import AssignmentService
from civic_authz.settings import Settings, get_settings


def get_authz_service(request: Request) -> AuthorizationService:
    authz = getattr(request.app.state, "authz", None)
    if authz is None:
        raise RuntimeError("Authorization service not initialized. Did app startup run?")
    return authz


def get_assignment_service(request: Request) -> AssignmentService:
    assignments = getattr(request.app.state, "assignments", None)
    if assignments is None:
        raise RuntimeError("Assignment service not initialized. Did app startup run?")
    return assignments


def _authenticate(request: Request, settings: Settings, db: Session) -> int:
    subject_id = getattr(request.state, "subject_id", None)
    if subject_id is not None:
        return subject_id

    subject_id = read_subject_id(request, settings)
    if subject_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    subject = load_subject(db, subject_id)
    request.state.subject_id = subject.subject_id
    request.state.tenant_id = subject.tenant_id
    return subject.subject_id


def get_current_subject_id(
    request: Request,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> int:
    return _authenticate(request, settings, db)


def require_permission(resource: str, action: str) -> Callable[..., int]:
    """Route dependency: 403 unless the caller may perform ``action`` on ``resource``."""

    def dependency(
        subject_id: int = Depends(get_current_subject_id),
        authz: AuthorizationService = Depends(get_authz_service),
    ) -> int:
        authz.check_permission(subject_id, resource, action)
        return subject_id

    return dependency


def require_hierarchical_permission(resource: str, action: str, target_param: str | None = None) -> Callable[..., int]:
    """
    Route dependency for user/role/tenant mutations.

    ``target_param`` names a path parameter holding the target user id; the
    caller must outrank that user.
    """

    def dependency(
        request: Request,
        subject_id: int = Depends(get_current_subject_id),
        authz: AuthorizationService = Depends(get_authz_service),
    ) -> int:
        target_subject_id = None
        if target_param is not None:
            raw = request.path_params.get(target_param)
            try:
                target_subject_id = int(raw)
            except (TypeError, ValueError) as exc:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Path parameter {target_param!r} must be an integer user id",
                ) from exc
        authz.check_hierarchical_permission(subject_id, resource, action, target_subject_id=target_subject_id)
        return subject_id

    return dependency


def enforce_declared_permissions(
    request: Request,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> None:
    """
    Global dependency for endpoints decorated with ``@require_permissions``.

    Each declared name is parsed into (resource, action). Names on users, roles
    or tenants must pass the hierarchical check; any other name passes on an
    exact name grant or a matching key grant.
    Endpoints without the decorator are left alone.
    """

    endpoint = request.scope.get("endpoint")
    names = tuple(getattr(endpoint, "__required_permissions__", ())) if endpoint else ()
    if not names:
        return

    subject_id = _authenticate(request, settings, db)
    authz = get_authz_service(request)

    for name in names:
        try:
            key = parse_permission_name(name)
        except ConfigurationError as exc:
            raise AuthorizationDenied(
                f"Access denied: invalid permission format {name!r}",
                resource=str(name),
                action="",
                reason="invalid permission format",
            ) from exc
        if key.resource in RANKED_RESOURCES:
            authz.check_hierarchical_permission(subject_id, key.resource, key.action)
        else:
            authz.check_permission_by_name(subject_id, name)
