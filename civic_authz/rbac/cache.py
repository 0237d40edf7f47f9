"""
Decision cache for permission checks.

Background:
    Every protected route asks "may subject S do A on R?". The answer only
    changes when S's roles or grants change, so decisions are cached for a
    short TTL (5 minutes by default) and dropped as soon as a management
    service reports a change for that subject.

Tiers (picked once, at construction time):
    NoCache          every lookup is a miss; each check goes to the store.
    InProcessCache   thread-safe per-process map with TTL + lazy expiry.
    LayeredCache     InProcessCache in front of a shared RedisCacheTier.
                     Shared-tier failures are logged and treated as misses.

Stale writes:
    A check that misses the cache reads the store and then writes its answer
    back. If the subject was invalidated in between, that answer may already
    be outdated. ``generation(subject_id)`` is read before the store query and
    passed to ``set()``; the write is dropped when the generation moved.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
import logging
import threading
import time
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError

from .errors import CacheTierUnavailable
from .names import PermissionKey, normalize_name

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_SWEEP_INTERVAL_SECONDS = 300
_REDIS_BATCH_SIZE = 100


@dataclass(frozen=True)
class CacheKey:
    """Cache key scoped to one subject: a (resource, action) pair or a permission name."""

    subject_id: int
    scope: str
    value: str

    @classmethod
    def for_permission(cls, subject_id: int, key: PermissionKey) -> CacheKey:
        return cls(subject_id=subject_id, scope="perm", value=str(key))

    @classmethod
    def for_name(cls, subject_id: int, name: str) -> CacheKey:
        return cls(subject_id=subject_id, scope="name", value=normalize_name(name))

    def redis_key(self, prefix: str) -> str:
        return f"{prefix}:{self.subject_id}:{self.scope}:{self.value}"


class CacheStrategy(str, Enum):
    NONE = "none"
    IN_PROCESS = "in_process"
    LAYERED = "layered"


class CacheTier(ABC):
    """Interface shared by every cache strategy."""

    @abstractmethod
    def get(self, key: CacheKey) -> bool | None:
        """Cached decision, or None on miss / expiry."""

    @abstractmethod
    def set(self, key: CacheKey, value: bool, generation: int | None = None) -> None: ...

    @abstractmethod
    def invalidate_subject(self, subject_id: int) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...

    def generation(self, subject_id: int) -> int:
        return 0

    def sweep(self) -> int:
        return 0

    def stats(self) -> dict[str, Any]:
        return {"tier": type(self).__name__}


class NoCache(CacheTier):
    def get(self, key: CacheKey) -> bool | None:
        return None

    def set(self, key: CacheKey, value: bool, generation: int | None = None) -> None:
        return None

    def invalidate_subject(self, subject_id: int) -> None:
        return None

    def clear(self) -> None:
        return None

    def stats(self) -> dict[str, Any]:
        return {"tier": "none"}


@dataclass
class _Entry:
    value: bool
    expires_at: float


class InProcessCache(CacheTier):
    """
    Per-process TTL map, bucketed by subject so invalidation is O(entries of
    that subject) and never touches other subjects.

    The lock only guards dictionary operations; it is never held while the
    store is queried.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[int, dict[CacheKey, _Entry]] = {}
        self._generations: dict[int, int] = {}
        self._counter = 0
        self._cleared_at = 0
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: CacheKey) -> bool | None:
        with self._lock:
            bucket = self._entries.get(key.subject_id)
            entry = bucket.get(key) if bucket else None
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del bucket[key]
                if not bucket:
                    del self._entries[key.subject_id]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: CacheKey, value: bool, generation: int | None = None) -> None:
        with self._lock:
            if generation is not None and generation != self._generation_locked(key.subject_id):
                logger.debug("Cache: dropped stale write subject_id=%s key=%s", key.subject_id, key.value)
                return
            bucket = self._entries.setdefault(key.subject_id, {})
            bucket[key] = _Entry(value=bool(value), expires_at=self._clock() + self._ttl)

    def generation(self, subject_id: int) -> int:
        with self._lock:
            return self._generation_locked(subject_id)

    def _generation_locked(self, subject_id: int) -> int:
        return max(self._generations.get(subject_id, 0), self._cleared_at)

    def invalidate_subject(self, subject_id: int) -> None:
        with self._lock:
            dropped = self._entries.pop(subject_id, {})
            self._counter += 1
            self._generations[subject_id] = self._counter
        logger.debug("Cache: invalidated subject_id=%s entries=%s", subject_id, len(dropped))

    def clear(self) -> None:
        with self._lock:
            count = sum(len(bucket) for bucket in self._entries.values())
            self._entries.clear()
            self._counter += 1
            self._cleared_at = self._counter
            self._generations.clear()
        logger.debug("Cache: cleared entries=%s", count)

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for subject_id in list(self._entries):
                bucket = self._entries[subject_id]
                for key in [k for k, e in bucket.items() if now >= e.expires_at]:
                    del bucket[key]
                    removed += 1
                if not bucket:
                    del self._entries[subject_id]
        if removed:
            logger.debug("Cache: swept %s expired entries", removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._entries.values())

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tier": "in_process",
                "entries": sum(len(bucket) for bucket in self._entries.values()),
                "subjects": len(self._entries),
                "generations": len(self._generations),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self._ttl,
            }


class RedisCacheTier(CacheTier):
    """
    Shared tier over redis-py. Keys look like ``rbac:<subject>:perm:sites:update``.

    Every Redis error is re-raised as CacheTierUnavailable; LayeredCache
    absorbs those. build_cache only ever puts it behind a LayeredCache.
    """

    def __init__(self, client: Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS, key_prefix: str = "rbac") -> None:
        self._client = client
        self._ttl = int(ttl_seconds)
        self._prefix = key_prefix

    def get(self, key: CacheKey) -> bool | None:
        try:
            raw = self._client.get(key.redis_key(self._prefix))
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(f"redis get failed: {type(exc).__name__}") from exc
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return raw == "true"

    def set(self, key: CacheKey, value: bool, generation: int | None = None) -> None:
        try:
            self._client.setex(key.redis_key(self._prefix), self._ttl, "true" if value else "false")
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(f"redis setex failed: {type(exc).__name__}") from exc

    def invalidate_subject(self, subject_id: int) -> None:
        self._delete_matching(f"{self._prefix}:{subject_id}:*")

    def clear(self) -> None:
        self._delete_matching(f"{self._prefix}:*")

    def _delete_matching(self, pattern: str) -> None:
        # SCAN instead of KEYS: never blocks the shared server.
        try:
            batch: list[Any] = []
            deleted = 0
            for redis_key in self._client.scan_iter(match=pattern, count=_REDIS_BATCH_SIZE):
                batch.append(redis_key)
                if len(batch) >= _REDIS_BATCH_SIZE:
                    deleted += self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += self._client.delete(*batch)
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(f"redis delete failed: {type(exc).__name__}") from exc
        logger.debug("Cache: redis deleted pattern=%s keys=%s", pattern, deleted)

    def stats(self) -> dict[str, Any]:
        return {"tier": "redis", "key_prefix": self._prefix, "ttl_seconds": self._ttl}


class LayeredCache(CacheTier):
    """In-process map first, shared tier second. Shared failures degrade to a miss."""

    def __init__(self, local: InProcessCache, shared: CacheTier) -> None:
        self._local = local
        self._shared = shared
        self._shared_failures = 0
        self._failure_lock = threading.Lock()

    def _shared_failed(self, operation: str, exc: CacheTierUnavailable) -> None:
        with self._failure_lock:
            self._shared_failures += 1
        logger.warning("Cache: shared tier unavailable during %s; falling back (%s)", operation, exc)

    def get(self, key: CacheKey) -> bool | None:
        value = self._local.get(key)
        if value is not None:
            return value

        generation = self._local.generation(key.subject_id)
        try:
            value = self._shared.get(key)
        except CacheTierUnavailable as exc:
            self._shared_failed("get", exc)
            return None
        if value is not None:
            self._local.set(key, value, generation=generation)
        return value

    def set(self, key: CacheKey, value: bool, generation: int | None = None) -> None:
        self._local.set(key, value, generation=generation)
        if generation is not None and generation != self._local.generation(key.subject_id):
            return
        try:
            self._shared.set(key, value)
        except CacheTierUnavailable as exc:
            self._shared_failed("set", exc)

    def invalidate_subject(self, subject_id: int) -> None:
        # Local is invalidated on both sides of the shared delete: a read that
        # lands in between may copy a stale shared value into the local map.
        self._local.invalidate_subject(subject_id)
        try:
            self._shared.invalidate_subject(subject_id)
        except CacheTierUnavailable as exc:
            self._shared_failed("invalidate", exc)
        self._local.invalidate_subject(subject_id)

    def clear(self) -> None:
        self._local.clear()
        try:
            self._shared.clear()
        except CacheTierUnavailable as exc:
            self._shared_failed("clear", exc)
        self._local.clear()

    def generation(self, subject_id: int) -> int:
        return self._local.generation(subject_id)

    def sweep(self) -> int:
        return self._local.sweep()

    def stats(self) -> dict[str, Any]:
        with self._failure_lock:
            failures = self._shared_failures
        return {
            "tier": "layered",
            "local": self._local.stats(),
            "shared": self._shared.stats(),
            "shared_failures": failures,
        }


class CacheSweeper:
    """
    Background thread that evicts expired entries every ``interval_seconds``.

    Owned by the authorization service: started at application startup and
    stopped from the shutdown hook. Reads never depend on it; expiry is also
    checked lazily on every ``get``.
    """

    def __init__(self, cache: CacheTier, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._cache = cache
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="rbac-cache-sweeper", daemon=True)
        self._thread.start()
        logger.info("Cache sweeper started interval=%ss", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            logger.info("Cache sweeper stopped")

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._cache.sweep()
            except Exception:
                logger.exception("Cache sweep failed; will retry next interval")


def build_cache(
    strategy: CacheStrategy | str,
    *,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    redis_client: Redis | None = None,
    key_prefix: str = "rbac",
    clock: Callable[[], float] = time.monotonic,
) -> CacheTier:
    strategy = CacheStrategy(strategy)
    if strategy is CacheStrategy.NONE:
        return NoCache()
    local = InProcessCache(ttl_seconds=ttl_seconds, clock=clock)
    if strategy is CacheStrategy.IN_PROCESS:
        return local
    if redis_client is None:
        raise ValueError("cache strategy 'layered' requires a redis client (set APP_REDIS_URL)")
    return LayeredCache(local, RedisCacheTier(redis_client, ttl_seconds=int(ttl_seconds), key_prefix=key_prefix))
