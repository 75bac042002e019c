import asyncio
import json
import logging
from typing import Any, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from taskhub.core.config import get_settings

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier read-through cache.

    L1: Process-local TTLCache (fast, limited size)
    L2: Redis (shared between workers)

    Missing or failing Redis degrades to L1 only; callers never see
    RedisError. Concurrent misses on one key are collapsed onto a single
    loader call.
    """

    def __init__(self):
        self._settings = None
        self._redis: Redis | None = None
        self.l1: TTLCache | None = None
        self._initialized = False

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
        }

    async def init_cache(self):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()
        settings = self._settings

        if self.l1 is None:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        if settings.redis_enabled and self._redis is None:
            redis = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            try:
                await redis.ping()
                self._redis = redis
                logger.info("Redis connection established")
            except RedisError as e:
                logger.error(f"Redis unavailable, running L1 only: {e}")
                await redis.aclose()

        self._initialized = True
        logger.info(f"Cache layer initialized (l2={'on' if self._redis else 'off'})")

    def _key(self, tier: str, key: str) -> str:
        return f"{self._settings.cache_namespace}{tier}:{key}"

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Any]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            loader: Async function to load value on cache miss
            l2_ttl: TTL for L2 cache in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()

        hit, value = await self._lookup(key)
        if hit:
            return value

        if loader is None:
            self.stats["misses"] += 1
            return None

        async with _get_lock_for_key(key):
            # another waiter may have filled it while we were blocked
            hit, value = await self._lookup(key, count=False)
            if hit:
                return value

            self.stats["misses"] += 1
            logger.debug(f"Cache miss, loading {key}")
            value = await loader()
            if value is None:
                return None

            await self._store(key, value, l2_ttl)
            return value

    async def _lookup(self, key: str, count: bool = True) -> tuple[bool, Any]:
        l1_key = self._key("l1", key)
        if l1_key in self.l1:
            if count:
                self.stats["l1_hits"] += 1
            return True, self.l1[l1_key]

        if self._redis:
            try:
                raw = await self._redis.get(self._key("l2", key))
            except RedisError as e:
                logger.error(f"Redis GET error for {key}: {e}")
                self.stats["errors"] += 1
                return False, None
            if raw is not None:
                if count:
                    self.stats["l2_hits"] += 1
                value = _deserialize(raw)
                self.l1[l1_key] = value
                return True, value

        return False, None

    async def _store(self, key: str, value: Any, l2_ttl: int | None = None):
        self.l1[self._key("l1", key)] = value

        if not self._redis:
            return
        try:
            ttl = l2_ttl or self._settings.l2_ttl_seconds
            await self._redis.set(self._key("l2", key), _serialize(value), ex=ttl)
        except RedisError as e:
            logger.error(f"Redis SET error for {key}: {e}")
            self.stats["errors"] += 1

    async def set(self, key: str, value: Any, l2_ttl: Optional[int] = None):
        """Explicitly set a value in both cache layers."""
        await self.init_cache()
        await self._store(key, value, l2_ttl)

    async def delete(self, key: str):
        """
        Delete a key from both cache layers.

        Redis is always cleared too, otherwise another worker would refill
        its L1 from the stale L2 copy.
        """
        await self.init_cache()

        self.l1.pop(self._key("l1", key), None)

        if self._redis:
            try:
                await self._redis.delete(self._key("l2", key))
            except RedisError as e:
                logger.error(f"Redis DELETE error for {key}: {e}")
                self.stats["errors"] += 1

    def clear_local(self):
        if self.l1 is not None:
            self.l1.clear()

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")
            self._redis = None
        self._initialized = False

    def get_stats(self) -> dict:
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 else 0,
            "l2_enabled": self._redis is not None,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total else 0
            ),
        }


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str)


def _deserialize(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


# Per-key locks for stampede protection. setdefault hands every concurrent
# caller the same lock; entries expire 300s after creation, well past any
# loader call.
_locks = TTLCache(maxsize=10_000, ttl=300)


def _get_lock_for_key(key: str) -> asyncio.Lock:
    return _locks.setdefault(key, asyncio.Lock())


# Cache layer instance (singleton per worker)
cache_layer = CacheLayer()
