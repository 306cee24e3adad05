import asyncio
import json
import logging
import time
import weakref
from typing import Awaitable, Callable, Protocol

import redis.asyncio as redis

from blogrepo.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> dict | None: ...

    async def set(self, key: str, value: dict, ttl: int | None = None) -> None: ...

    async def clear(self) -> None: ...

    async def generation(self, gen_key: str) -> int | None: ...

    async def invalidate(self, key: str, gen_key: str) -> None: ...

    async def set_if_generation(
        self, key: str, value: dict, ttl: int | None, gen_key: str, expected: int
    ) -> bool: ...


class MemoryBackend:
    """
    Process-local backend used when no Redis URL is configured and in tests.

    Expiry uses the monotonic clock; expired entries are dropped lazily on
    read.  Generation counters never expire.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, tuple[float | None, dict]] = {}
        self._generations: dict[str, int] = {}
        self._clock = clock

    async def get(self, key: str) -> dict | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at is not None and expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return dict(value)

    async def set(self, key: str, value: dict, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._store[key] = (expires_at, dict(value))

    async def clear(self) -> None:
        self._store.clear()

    async def generation(self, gen_key: str) -> int | None:
        return self._generations.get(gen_key, 0)

    async def invalidate(self, key: str, gen_key: str) -> None:
        self._generations[gen_key] = self._generations.get(gen_key, 0) + 1
        self._store.pop(key, None)

    async def set_if_generation(
        self, key: str, value: dict, ttl: int | None, gen_key: str, expected: int
    ) -> bool:
        if self._generations.get(gen_key, 0) != expected:
            return False
        await self.set(key, value, ttl)
        return True


# Store the value only while the generation still matches the one read
# before loading.  KEYS: value key, generation key.  ARGV: expected
# generation, JSON value, ttl in seconds (0 for none).
_SET_IF_GENERATION_LUA = """
if tonumber(redis.call('GET', KEYS[2]) or '0') ~= tonumber(ARGV[1]) then
    return 0
end
if tonumber(ARGV[3]) > 0 then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
else
    redis.call('SET', KEYS[1], ARGV[2])
end
return 1
"""


class RedisBackend:
    """
    Redis-backed storage for cache entries, shared by every worker.

    Read and write failures are logged and degrade to a miss / no-op so a
    Redis outage never breaks a request.  Each key has a generation
    counter: invalidation bumps it before deleting, and a loaded value is
    stored only if the counter has not moved since the load began.
    """

    def __init__(self, url: str) -> None:
        self._url = url
        self._redis: redis.Redis | None = None
        self._set_if_generation = None

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        self._set_if_generation = self._redis.register_script(_SET_IF_GENERATION_LUA)
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", self._url)
        except redis.RedisError as exc:
            logger.warning("Redis ping failed, cache reads will miss: %s", exc)

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._set_if_generation = None

    async def get(self, key: str) -> dict | None:
        if not self._redis:
            return None
        try:
            data = await self._redis.get(key)
        except redis.RedisError as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value: dict, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except redis.RedisError as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def clear(self) -> None:
        if not self._redis:
            return
        try:
            # Generation counters are kept so in-flight loads stay detectable.
            keys = [
                key async for key in self._redis.scan_iter(match=f"{settings.CACHE_KEY_PREFIX}:*")
                if ":gen:" not in key
            ]
            if keys:
                await self._redis.delete(*keys)
        except redis.RedisError as exc:
            logger.warning("Cache CLEAR error: %s", exc)

    async def generation(self, gen_key: str) -> int | None:
        """Current generation, or None when it cannot be read (do not store)."""
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(gen_key)
        except redis.RedisError as exc:
            logger.debug("Cache generation GET error for key=%r: %s", gen_key, exc)
            return None
        return int(raw) if raw is not None else 0

    async def invalidate(self, key: str, gen_key: str) -> None:
        if not self._redis:
            return
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(gen_key)
                pipe.delete(key)
                await pipe.execute()
        except redis.RedisError as exc:
            # The TTL bounds how long the stale entry can survive.
            logger.warning("Cache INVALIDATE error for key=%r: %s", key, exc)

    async def set_if_generation(
        self, key: str, value: dict, ttl: int | None, gen_key: str, expected: int
    ) -> bool:
        if not self._redis:
            return False
        try:
            stored = await self._set_if_generation(
                keys=[key, gen_key],
                args=[expected, json.dumps(value, default=str), ttl or 0],
            )
        except redis.RedisError as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)
            return False
        return bool(stored)


class LookupCache:
    """
    Read-through id -> entity cache for one entity type.

    Hits are served without locking.  A miss takes the per-key lock, so
    concurrent misses in one process load once.  Across processes the
    backend's generation counter decides: the generation is read before
    loading, ``invalidate`` bumps it, and the loaded value is stored only
    if it is unchanged.  An entry loaded before a write can therefore
    never be stored after that write's invalidation, whichever worker
    performed it.
    """

    def __init__(
        self,
        backend: CacheBackend,
        namespace: str,
        ttl: int | None = None,
    ) -> None:
        self.backend = backend
        self.namespace = namespace
        self.ttl = ttl
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()
        self._hits: int = 0
        self._misses: int = 0
        self._stale_loads: int = 0

    def _key(self, entity_id: int) -> str:
        return f"{settings.CACHE_KEY_PREFIX}:{self.namespace}:{entity_id}"

    def _gen_key(self, entity_id: int) -> str:
        return f"{settings.CACHE_KEY_PREFIX}:{self.namespace}:gen:{entity_id}"

    def _lock_for(self, entity_id: int) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[entity_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if isinstance(self.backend, RedisBackend):
            await self.backend.connect()

    async def disconnect(self) -> None:
        if isinstance(self.backend, RedisBackend):
            await self.backend.disconnect()

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get_or_load(
        self,
        entity_id: int,
        loader: Callable[[], Awaitable[dict | None]],
    ) -> dict | None:
        """
        Return the cached value for *entity_id*, calling *loader* on a miss.

        A loader result of None (entity does not exist) is not cached, and
        neither is a value whose generation moved while it was loading.
        """
        key = self._key(entity_id)
        cached = await self.backend.get(key)
        if cached is not None:
            self._hits += 1
            return cached

        async with self._lock_for(entity_id):
            # Another task may have populated the entry while we waited.
            cached = await self.backend.get(key)
            if cached is not None:
                self._hits += 1
                return cached
            self._misses += 1
            gen_key = self._gen_key(entity_id)
            generation = await self.backend.generation(gen_key)
            value = await loader()
            if value is not None and generation is not None:
                stored = await self.backend.set_if_generation(key, value, self.ttl, gen_key, generation)
                if not stored:
                    self._stale_loads += 1
                    logger.debug("Discarded stale load for %s:%s", self.namespace, entity_id)
            return value

    async def invalidate(self, entity_id: int) -> None:
        async with self._lock_for(entity_id):
            await self.backend.invalidate(self._key(entity_id), self._gen_key(entity_id))
        logger.debug("Cache invalidated %s:%s", self.namespace, entity_id)

    async def clear(self) -> None:
        await self.backend.clear()

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict:
        """Return a snapshot of hit/miss counters for metrics endpoints."""
        total = self._hits + self._misses
        return {
            "namespace": self.namespace,
            "hits": self._hits,
            "misses": self._misses,
            "stale_loads": self._stale_loads,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


def build_author_cache() -> LookupCache:
    """Create the author lookup cache from settings."""
    backend: CacheBackend
    if settings.REDIS_URL:
        backend = RedisBackend(settings.REDIS_URL)
    else:
        backend = MemoryBackend()
    return LookupCache(backend, namespace="authors", ttl=settings.CACHE_TTL_AUTHOR)
