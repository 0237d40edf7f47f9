"""
Base permission resolution: admin override, direct grants, role grants.

Decision for (subject, resource, action):
1. Cached decision -> return it.
2. Load the subject snapshot from the store (single consistent read).
3. Admin -> allow. Admins bypass explicit grants.
4. Any direct or role grant whose normalized (resource, action) matches -> allow.
5. Otherwise deny. Unknown subjects are denied.
6. Cache the decision (unless the subject was invalidated meanwhile).

Store and configuration errors propagate from here; the service facade turns
them into denials.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .cache import CacheKey, CacheTier, NoCache
from .names import PermissionKey, normalize_name, parse_permission_name
from .snapshot import PermissionRecord, PermissionStore, SubjectSnapshot

logger = logging.getLogger(__name__)


def grants_permission(snapshot: SubjectSnapshot, key: PermissionKey) -> bool:
    if snapshot.is_admin:
        return True
    return any(p.key == key for p in snapshot.all_permissions())


def grants_permission_name(snapshot: SubjectSnapshot, name: str, key: PermissionKey) -> bool:
    """Match on the stored permission name first, then on the parsed pair."""
    if snapshot.is_admin:
        return True
    for permission in snapshot.all_permissions():
        if permission.matches_name(name) or permission.key == key:
            return True
    return False


class PermissionResolver:
    def __init__(self, store: PermissionStore, cache: CacheTier | None = None) -> None:
        self._store = store
        self._cache = cache if cache is not None else NoCache()

    @property
    def cache(self) -> CacheTier:
        return self._cache

    def load(self, subject_id: int) -> tuple[int, SubjectSnapshot | None]:
        """Snapshot plus the cache generation read before it, for reuse across one check."""
        generation = self._cache.generation(subject_id)
        return generation, self._store.load_subject_snapshot(subject_id)

    def has_permission(
        self,
        subject_id: int,
        resource: str,
        action: str,
        loaded: tuple[int, SubjectSnapshot | None] | None = None,
    ) -> bool:
        key = PermissionKey.of(resource, action)
        cache_key = CacheKey.for_permission(subject_id, key)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        generation, snapshot = loaded if loaded is not None else self.load(subject_id)
        if snapshot is None:
            decision = False
        else:
            decision = grants_permission(snapshot, key)

        self._cache.set(cache_key, decision, generation=generation)
        logger.debug("RBAC: subject_id=%s %s -> %s", subject_id, key, decision)
        return decision

    def has_permission_by_name(self, subject_id: int, permission_name: str) -> bool:
        # Malformed names raise ConfigurationError before anything is cached.
        key = parse_permission_name(permission_name)
        cache_key = CacheKey.for_name(subject_id, permission_name)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        generation = self._cache.generation(subject_id)
        snapshot = self._store.load_subject_snapshot(subject_id)
        if snapshot is None:
            decision = False
        else:
            decision = grants_permission_name(snapshot, permission_name, key)

        self._cache.set(cache_key, decision, generation=generation)
        logger.debug("RBAC: subject_id=%s name=%s -> %s", subject_id, normalize_name(permission_name), decision)
        return decision

    def effective_permissions(self, subject_id: int) -> list[PermissionRecord]:
        """
        Union of direct and role grants, de-duplicated by normalized
        (resource, action). Direct grants win over role grants for the same pair.
        """

        snapshot = self._store.load_subject_snapshot(subject_id)
        if snapshot is None:
            return []

        seen: set[PermissionKey] = set()
        result: list[PermissionRecord] = []
        for permission in snapshot.all_permissions():
            if permission.key in seen:
                continue
            seen.add(permission.key)
            result.append(permission)

        logger.debug(
            "RBAC: effective permissions subject_id=%s direct=%s via_roles=%s total=%s roles=%s",
            subject_id,
            len(snapshot.direct),
            sum(1 for _ in snapshot.role_permissions()),
            len(result),
            sorted(snapshot.role_names),
        )
        return result

    def warm_up(self, subject_id: int, pairs: Iterable[tuple[str, str]]) -> int:
        """Resolve (and cache) a list of common (resource, action) pairs. Returns how many."""
        count = 0
        for resource, action in pairs:
            self.has_permission(subject_id, resource, action)
            count += 1
        return count
