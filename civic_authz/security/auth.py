"""
Caller identity for the admin API.

The bearer token is the user id (demo scheme). In production the identity
middleware in front of this service resolves the token and supplies the
subject id instead; everything after ``read_subject_id`` stays the same.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from fastapi import HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from civic_authz.models.security import User
from civic_authz.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedSubject:
    subject_id: int
    username: str
    tenant_id: int | None
    tenant_code: str | None


def _bad_header(request: Request, detail: str, log_message: str) -> HTTPException:
    logger.warning("%s path=%s method=%s", log_message, request.url.path, request.method)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def read_subject_id(request: Request, settings: Settings) -> int | None:
    """None when no credentials were sent; 400 when they are malformed."""

    header_name = settings.authorization_header
    raw = request.headers.get(header_name)
    if not raw:
        logger.info("No credentials path=%s method=%s", request.url.path, request.method)
        return None

    scheme, _, token = raw.partition(" ")
    if scheme != settings.bearer_prefix:
        raise _bad_header(
            request,
            f"Invalid {header_name}. Expected '{settings.bearer_prefix} <user id>'.",
            "Unsupported authorization scheme",
        )

    token = token.strip()
    if not token:
        raise _bad_header(request, f"Invalid {header_name}. Missing user id.", "Empty bearer token")

    try:
        subject_id = int(token)
    except ValueError as exc:
        raise _bad_header(request, "Bearer token must be an integer user id.", "Non-numeric bearer token") from exc
    if subject_id <= 0:
        raise _bad_header(request, "Bearer token must be a positive user id.", "Non-positive bearer token")
    return subject_id


def load_subject(db: Session, subject_id: int) -> AuthenticatedSubject:
    """Active user with its tenant; 401 for unknown or deactivated accounts."""

    stmt = select(User).options(joinedload(User.tenant)).where(User.id == subject_id)
    user = db.execute(stmt).scalar_one_or_none()

    if user is None or not user.is_active:
        logger.info("Rejected credentials for subject_id=%s", subject_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive user")

    tenant = user.tenant
    logger.debug("Authenticated subject_id=%s tenant_id=%s", user.id, user.tenant_id)
    return AuthenticatedSubject(
        subject_id=user.id,
        username=user.username,
        tenant_id=user.tenant_id,
        tenant_code=tenant.code if tenant is not None else None,
    )
