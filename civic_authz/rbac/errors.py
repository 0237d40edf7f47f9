"""Exception types raised by the authorization core."""

from __future__ import annotations

from typing import Any


class AuthorizationError(Exception):
    """Base class for every error raised by ``civic_authz.rbac``."""


class LookupFailure(AuthorizationError):
    """The permission store could not be read (connection or query error)."""


class ConfigurationError(AuthorizationError, ValueError):
    """A permission name or check argument is malformed."""


class CatalogError(AuthorizationError, ValueError):
    """Raised when the permission catalog YAML is invalid."""


class CacheTierUnavailable(AuthorizationError):
    """The shared cache tier failed. Always absorbed by the layered cache."""


class AuthorizationDenied(AuthorizationError):
    """
    Raised by the ``check_*`` variants when a decision is False.

    Route guards translate this into HTTP 403. ``subject_level`` and
    ``target_level`` are only populated by hierarchical checks.
    """

    def __init__(
        self,
        message: str,
        *,
        resource: str,
        action: str,
        reason: str,
        subject_level: int | None = None,
        target_level: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource = resource
        self.action = action
        self.reason = reason
        self.subject_level = subject_level
        self.target_level = target_level

    def details(self) -> dict[str, Any]:
        details: dict[str, Any] = {
            "resource": self.resource,
            "action": self.action,
            "reason": self.reason,
        }
        if self.subject_level is not None:
            details["userLevel"] = self.subject_level
        if self.target_level is not None:
            details["targetLevel"] = self.target_level
        return details

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "details": self.details()}
