"""
Permission name grammar.

Two equivalent spellings are accepted everywhere a permission is named:

    resource:action          sites:update, reports:read
    ACTION_RESOURCE          UPDATE_SITES, READ_REPORTS

plus the guard-style ``manage:resource:action``. All of them parse to the same
normalized ``PermissionKey``. Resources are compared in plural form and
actions case-insensitively, so ``site`` and ``Sites`` both become ``sites``.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

from .errors import ConfigurationError

_SEPARATORS_RE = re.compile(r"[\s\-]+")
_VOWELS = frozenset("aeiou")


@dataclass(frozen=True)
class PermissionKey:
    """Normalized (resource, action) pair."""

    resource: str
    action: str

    @classmethod
    def of(cls, resource: str, action: str) -> PermissionKey:
        return cls(resource=normalize_resource(resource), action=normalize_action(action))

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}"


def normalize_action(action: str) -> str:
    if not isinstance(action, str) or not action.strip():
        raise ConfigurationError(f"permission action must be a non-empty string, got {action!r}")
    return action.strip().lower()


def normalize_resource(resource: str) -> str:
    """
    Lower-case a resource name and bring it to plural form.

        site -> sites, inventory -> inventories, box -> boxes, users -> users
    """

    if not isinstance(resource, str) or not resource.strip():
        raise ConfigurationError(f"permission resource must be a non-empty string, got {resource!r}")

    name = _SEPARATORS_RE.sub("_", resource.strip().lower())
    if name.endswith("s"):
        return name
    if name.endswith("y") and len(name) > 1 and name[-2] not in _VOWELS:
        return f"{name[:-1]}ies"
    if name.endswith(("ch", "sh", "x", "z")):
        return f"{name}es"
    return f"{name}s"


def normalize_name(name: str) -> str:
    """Canonical spelling used for name comparisons and cache keys."""
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"permission name must be a non-empty string, got {name!r}")
    return name.strip().lower()


def parse_permission_name(name: str) -> PermissionKey:
    """
    Parse either name grammar into a normalized ``PermissionKey``.

    Raises ConfigurationError when the name is empty, has an unknown shape or
    is missing its resource or action part. Callers must treat that as a
    denial, never as a pass.
    """

    raw = normalize_name(name)

    if ":" in raw:
        parts = raw.split(":")
        if len(parts) == 3 and parts[0] == "manage":
            resource, action = parts[1], parts[2]
        elif len(parts) == 2:
            resource, action = parts
        else:
            raise ConfigurationError(
                f"invalid permission name {name!r}: expected 'resource:action' or 'manage:resource:action'"
            )
    elif "_" in raw:
        action, _, resource = raw.partition("_")
    else:
        raise ConfigurationError(f"invalid permission name {name!r}: expected 'resource:action' or 'ACTION_RESOURCE'")

    if not resource.strip() or not action.strip():
        raise ConfigurationError(f"invalid permission name {name!r}: resource and action are both required")

    return PermissionKey.of(resource, action)
