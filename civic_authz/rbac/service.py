"""
Authorization facade used by route guards and management services.

Every decision path is fail-closed: store errors, malformed permission names
and unexpected exceptions all produce a denial. ``has_*`` variants return
False; ``check_*`` variants raise AuthorizationDenied. A caller that would
rather surface store outages as HTTP 500 passes ``fail_closed=False``, which
lets LookupFailure propagate instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

from redis import Redis
from sqlalchemy.orm import Session

from .cache import CacheStrategy, CacheSweeper, CacheTier, NoCache, build_cache
from .errors import AuthorizationDenied, ConfigurationError, LookupFailure
from .hierarchy import HierarchyDecision, HierarchyPolicy
from .levels import NO_LEVEL
from .names import parse_permission_name
from .resolver import PermissionResolver
from .snapshot import PermissionRecord, PermissionStore
from .store import SqlPermissionStore

if TYPE_CHECKING:
    from civic_authz.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthorizationService:
    def __init__(
        self,
        store: PermissionStore,
        cache: CacheTier | None = None,
        sweep_interval_seconds: float = 300,
    ) -> None:
        self._store = store
        self._cache = cache if cache is not None else NoCache()
        self._resolver = PermissionResolver(store, self._cache)
        self._hierarchy = HierarchyPolicy(store)
        self._sweeper = None if isinstance(self._cache, NoCache) else CacheSweeper(self._cache, sweep_interval_seconds)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Callable[[], Session],
        redis_client: Redis | None = None,
    ) -> AuthorizationService:
        strategy = CacheStrategy(settings.cache_strategy)
        if strategy is CacheStrategy.LAYERED and redis_client is None and settings.redis_url:
            redis_client = Redis.from_url(settings.redis_url, socket_timeout=settings.redis_timeout_seconds)
        cache = build_cache(
            strategy,
            ttl_seconds=settings.cache_ttl_seconds,
            redis_client=redis_client,
            key_prefix=settings.cache_key_prefix,
        )
        store = SqlPermissionStore(session_factory, admin_role_name=settings.admin_role_name)
        logger.info("Authorization service configured cache=%s ttl=%ss", strategy.value, settings.cache_ttl_seconds)
        return cls(store, cache, sweep_interval_seconds=settings.cache_sweep_interval_seconds)

    @property
    def store(self) -> PermissionStore:
        return self._store

    @property
    def cache(self) -> CacheTier:
        return self._cache

    # ---- Lifecycle -------------------------------------------------------------------

    def start(self) -> None:
        if self._sweeper is not None:
            self._sweeper.start()

    def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()

    # ---- Fail-closed wrapper ---------------------------------------------------------

    def _guarded(self, compute: Callable[[], T], denied: T, subject_id: int, check: str, fail_closed: bool) -> T:
        try:
            return compute()
        except LookupFailure:
            logger.error("RBAC: store lookup failed, denying subject_id=%s check=%s", subject_id, check)
            if not fail_closed:
                raise
            return denied
        except ConfigurationError as exc:
            logger.error("RBAC: invalid permission configuration, denying subject_id=%s check=%s: %s", subject_id, check, exc)
            return denied
        except Exception:
            logger.exception("RBAC: unexpected error, denying subject_id=%s check=%s", subject_id, check)
            return denied

    # ---- Base permission -------------------------------------------------------------

    def has_permission(self, subject_id: int, resource: str, action: str, *, fail_closed: bool = True) -> bool:
        return self._guarded(
            lambda: self._resolver.has_permission(subject_id, resource, action),
            False,
            subject_id,
            f"{resource}:{action}",
            fail_closed,
        )

    def check_permission(self, subject_id: int, resource: str, action: str, *, fail_closed: bool = True) -> None:
        if not self.has_permission(subject_id, resource, action, fail_closed=fail_closed):
            logger.warning("RBAC: denied subject_id=%s action=%s resource=%s", subject_id, action, resource)
            raise AuthorizationDenied(
                f"User does not have permission to {action} {resource}",
                resource=resource,
                action=action,
                reason="permission not granted",
            )

    def has_permission_by_name(self, subject_id: int, permission_name: str, *, fail_closed: bool = True) -> bool:
        return self._guarded(
            lambda: self._resolver.has_permission_by_name(subject_id, permission_name),
            False,
            subject_id,
            str(permission_name),
            fail_closed,
        )

    def check_permission_by_name(self, subject_id: int, permission_name: str, *, fail_closed: bool = True) -> None:
        if self.has_permission_by_name(subject_id, permission_name, fail_closed=fail_closed):
            return
        try:
            key = parse_permission_name(permission_name)
            resource, action, reason = key.resource, key.action, "permission not granted"
        except ConfigurationError:
            resource, action, reason = str(permission_name), "", "invalid permission format"
        logger.warning("RBAC: denied subject_id=%s permission=%s", subject_id, permission_name)
        raise AuthorizationDenied(
            f"Access denied: insufficient permissions for {permission_name}",
            resource=resource,
            action=action,
            reason=reason,
        )

    # ---- Hierarchical permission -----------------------------------------------------

    def _hierarchical(
        self,
        subject_id: int,
        resource: str,
        action: str,
        target_subject_id: int | None,
        target_level: int | None,
    ) -> HierarchyDecision:
        loaded = self._resolver.load(subject_id)
        snapshot = loaded[1]
        level = snapshot.level if snapshot is not None else NO_LEVEL
        if not self._resolver.has_permission(subject_id, resource, action, loaded=loaded):
            return HierarchyDecision(False, level, "permission not granted")
        return self._hierarchy.evaluate(
            subject_id, resource, action, target_subject_id, target_level, subject_level=level
        )

    def has_hierarchical_permission(
        self,
        subject_id: int,
        resource: str,
        action: str,
        target_subject_id: int | None = None,
        target_level: int | None = None,
        *,
        fail_closed: bool = True,
    ) -> bool:
        decision = self._guarded(
            lambda: self._hierarchical(subject_id, resource, action, target_subject_id, target_level),
            None,
            subject_id,
            f"{resource}:{action} (hierarchical)",
            fail_closed,
        )
        return decision is not None and decision.allowed

    def check_hierarchical_permission(
        self,
        subject_id: int,
        resource: str,
        action: str,
        target_subject_id: int | None = None,
        target_level: int | None = None,
        *,
        fail_closed: bool = True,
    ) -> None:
        decision = self._guarded(
            lambda: self._hierarchical(subject_id, resource, action, target_subject_id, target_level),
            None,
            subject_id,
            f"{resource}:{action} (hierarchical)",
            fail_closed,
        )
        if decision is not None and decision.allowed:
            return

        if decision is None:
            subject_level, target, reason = self._safe_level(subject_id), target_level, "authorization could not be evaluated"
        else:
            subject_level, target, reason = decision.subject_level, decision.target_level, decision.reason
        raise AuthorizationDenied(
            f"Hierarchical permission denied: {action} {resource}",
            resource=resource,
            action=action,
            reason=reason,
            subject_level=subject_level,
            target_level=target,
        )

    def _safe_level(self, subject_id: int) -> int:
        return self._guarded(lambda: self._hierarchy.subject_level(subject_id), NO_LEVEL, subject_id, "level", True)

    def subject_level(self, subject_id: int) -> int:
        return self._safe_level(subject_id)

    # ---- Admin tooling ---------------------------------------------------------------

    def get_user_permissions(self, subject_id: int, *, fail_closed: bool = True) -> list[PermissionRecord]:
        return self._guarded(
            lambda: self._resolver.effective_permissions(subject_id),
            [],
            subject_id,
            "effective permissions",
            fail_closed,
        )

    def get_manageable_users(self, subject_id: int, *, fail_closed: bool = True) -> list[int]:
        """Subjects whose level is strictly below the caller's."""

        def compute() -> list[int]:
            level = self._hierarchy.subject_level(subject_id)
            if level <= NO_LEVEL:
                return []
            return [sid for sid, lvl in self._store.subject_levels() if sid != subject_id and lvl < level]

        return self._guarded(compute, [], subject_id, "manageable users", fail_closed)

    def warm_up_user_cache(self, subject_id: int, pairs: Iterable[tuple[str, str]]) -> None:
        try:
            count = self._resolver.warm_up(subject_id, pairs)
        except Exception as exc:
            logger.warning("RBAC: cache warm-up failed subject_id=%s: %s", subject_id, exc)
            return
        logger.debug("RBAC: warmed up cache subject_id=%s checks=%s", subject_id, count)

    # ---- Invalidation ----------------------------------------------------------------

    def invalidate_user_cache(self, subject_id: int) -> None:
        self._cache.invalidate_subject(subject_id)
        logger.debug("RBAC: invalidated cache subject_id=%s", subject_id)

    def clear_all_cache(self) -> None:
        self._cache.clear()
        logger.info("RBAC: cache cleared")

    def cache_stats(self) -> dict[str, Any]:
        stats = dict(self._cache.stats())
        stats["sweeper_running"] = self._sweeper is not None and self._sweeper.running
        return stats
