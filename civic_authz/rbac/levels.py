"""Hierarchy levels. Higher number = higher privilege."""

from __future__ import annotations

from typing import Iterable

NO_LEVEL = 0
USER_LEVEL = 1
ADMIN_LEVEL = 2


def default_level_for_role_name(name: str) -> int:
    """
    Level assigned to a new role when none is given explicitly.

    Older deployments derived the level from the role name on every check;
    the name pattern is now applied once, at creation time, and the result is
    stored on the role.
    """

    return ADMIN_LEVEL if "admin" in (name or "").lower() else USER_LEVEL


def highest_level(levels: Iterable[int]) -> int:
    return max(levels, default=NO_LEVEL)
