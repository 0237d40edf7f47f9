from __future__ import annotations

from collections.abc import Callable


def require_permissions(*permission_names: str) -> Callable:
    """
    Declare the permissions an endpoint needs, by name.

    Implementation detail:
    - This decorator does NOT perform the check itself.
    - It attaches metadata that the global ``enforce_declared_permissions``
      dependency reads after routing.
    - Names may use either grammar: ``"sites:update"`` or ``"UPDATE_SITES"``.
    """

    def decorator(fn: Callable) -> Callable:
        existing = tuple(getattr(fn, "__required_permissions__", ()))
        setattr(fn, "__required_permissions__", existing + tuple(permission_names))
        return fn

    return decorator
