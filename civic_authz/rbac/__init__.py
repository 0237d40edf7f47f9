"""
Permission resolution and hierarchical authorization.

Pure Python on top of SQLAlchemy (store) and redis-py (shared cache tier); no
FastAPI dependency. The facade lives in ``civic_authz.rbac.service`` and the
invalidation hooks in ``civic_authz.rbac.hooks``; they are not re-exported
here because the store imports the ORM models, which in turn import
``civic_authz.rbac.levels``.
"""

from .cache import CacheKey, CacheStrategy, CacheSweeper, CacheTier, InProcessCache, LayeredCache, NoCache, RedisCacheTier
from .errors import (
    AuthorizationDenied,
    AuthorizationError,
    CacheTierUnavailable,
    CatalogError,
    ConfigurationError,
    LookupFailure,
)
from .levels import ADMIN_LEVEL, NO_LEVEL, USER_LEVEL
from .names import PermissionKey, normalize_action, normalize_resource, parse_permission_name
from .snapshot import PermissionRecord, RoleGrant, RoleRecord, SubjectSnapshot

__all__ = [
    "ADMIN_LEVEL",
    "NO_LEVEL",
    "USER_LEVEL",
    "AuthorizationDenied",
    "AuthorizationError",
    "CacheKey",
    "CacheStrategy",
    "CacheSweeper",
    "CacheTier",
    "CacheTierUnavailable",
    "CatalogError",
    "ConfigurationError",
    "InProcessCache",
    "LayeredCache",
    "LookupFailure",
    "NoCache",
    "PermissionKey",
    "PermissionRecord",
    "RedisCacheTier",
    "RoleGrant",
    "RoleRecord",
    "SubjectSnapshot",
    "normalize_action",
    "normalize_resource",
    "parse_permission_name",
]
