"""Redis client configuration, cache store and rate limiting."""

import json
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any

import structlog
from redis import asyncio as redis

from healthnexus.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class CacheStore:
    """
    Best-effort key/value cache on top of Redis.

    Every operation swallows Redis failures: reads come back absent, writes
    and deletes report ``False``. Callers treat an unavailable cache as a
    slower path, never as an error.
    """

    HEALTH_CHECK_KEY = "health:check"

    def __init__(
        self,
        redis_client: redis.Redis,
        environment: str | None = None,
        enabled: bool = True,
    ):
        """Initialize cache store with Redis client and key namespace."""
        self.redis = redis_client
        self.environment = environment or settings.environment
        self.enabled = enabled

    def generate_key(
        self,
        kind: str,
        identifier: str,
        params: dict[str, Any] | None = None,
    ) -> str:
        """
        Build a namespaced cache key.

        Args:
            kind: Entity type (e.g. ``services``, ``appointments``)
            identifier: Entity or caller identifier
            params: Optional filter parameters, serialized in sorted order

        Returns:
            Key of the form ``{environment}:{kind}:{identifier}[:{k=v&...}]``
        """
        key = f"{self.environment}:{kind}:{identifier}"
        if params:
            serialized = "&".join(
                f"{name}={params[name]}" for name in sorted(params) if params[name] is not None
            )
            if serialized:
                key = f"{key}:{serialized}"
        return key

    async def get(self, key: str) -> str | None:
        """Get raw value from cache."""
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            if ttl:
                await self.redis.set(key, value, ex=ttl)
            else:
                await self.redis.set(key, value)
            return True
        except Exception as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        try:
            await self.redis.delete(key)
            return True
        except Exception as e:
            logger.warning("cache_delete_failed", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        try:
            return bool(await self.redis.exists(key))
        except Exception as e:
            logger.warning("cache_exists_failed", key=key, error=str(e))
            return False

    async def get_json(self, key: str) -> Any | None:
        """Get JSON value from cache and deserialize."""
        value = await self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except ValueError:
            logger.warning("cache_value_not_json", key=key)
            return None

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Serialize and set JSON value in cache."""
        return await self.set(key, json.dumps(value, default=str), ttl=ttl)

    async def keys_matching(self, pattern: str) -> list[str]:
        """
        List keys matching a glob pattern.

        Args:
            pattern: Redis key pattern (e.g. ``*:services:*``)

        Returns:
            Matching keys, empty if the cache is unreachable
        """
        try:
            return list(await self.redis.keys(pattern))
        except Exception as e:
            logger.warning("cache_keys_failed", pattern=pattern, error=str(e))
            return []

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern, one key at a time.

        Args:
            pattern: Redis key pattern

        Returns:
            Number of keys deleted
        """
        deleted = 0
        for key in await self.keys_matching(pattern):
            if await self.delete(key):
                deleted += 1
        return deleted

    async def increment(self, key: str, window: int) -> int | None:
        """
        Increment a counter, starting its expiry window on first use.

        Returns:
            New counter value, or None if the cache is unreachable
        """
        try:
            current = int(await self.redis.incr(key))
            # Re-arm an expiry lost to an earlier failed EXPIRE
            if current == 1 or int(await self.redis.ttl(key)) == -1:
                await self.redis.expire(key, window)
            return current
        except Exception as e:
            logger.warning("cache_increment_failed", key=key, error=str(e))
            return None

    async def ttl(self, key: str) -> int | None:
        """Get remaining time to live of a key in seconds."""
        try:
            remaining = int(await self.redis.ttl(key))
        except Exception as e:
            logger.warning("cache_ttl_failed", key=key, error=str(e))
            return None
        return remaining if remaining >= 0 else None

    async def clear(self) -> int:
        """Delete every key of the current environment."""
        return await self.delete_pattern(f"{self.environment}:*")

    async def health_check(self) -> bool:
        """Write, read back and delete a probe key."""
        try:
            probe = json.dumps({"timestamp": time.time()})
            await self.redis.set(self.HEALTH_CHECK_KEY, probe, ex=10)
            result = await self.redis.get(self.HEALTH_CHECK_KEY)
            await self.redis.delete(self.HEALTH_CHECK_KEY)
            return result == probe
        except Exception as e:
            logger.warning("cache_health_check_failed", error=str(e))
            return False

    async def stats(self) -> dict[str, Any]:
        """Summarize cached keys of the current environment by entity type."""
        keys = await self.keys_matching(f"{self.environment}:*")
        keys_by_type: dict[str, int] = {}
        for key in keys:
            parts = key.split(":")
            if len(parts) >= 2:
                keys_by_type[parts[1]] = keys_by_type.get(parts[1], 0) + 1

        return {
            "environment": self.environment,
            "enabled": self.enabled,
            "total_keys": len(keys),
            "keys_by_type": keys_by_type,
            "healthy": await self.health_check(),
        }


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class LocalSlidingWindow:
    """
    In-process sliding window counters with bounded memory.

    Tracks recent request timestamps per identity; the least recently seen
    identity is evicted once ``max_identities`` is reached.
    """

    def __init__(self, window: int, max_identities: int):
        """Initialize with window length in seconds and tracked identity cap."""
        self.window = window
        self.max_identities = max_identities
        self._history: OrderedDict[str, deque[float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._history)

    def __contains__(self, identity: object) -> bool:
        return identity in self._history

    def hit(self, identity: str, now: float | None = None) -> tuple[int, float]:
        """
        Record a request.

        Returns:
            Tuple of (requests in the current window, oldest timestamp in window)
        """
        now = time.monotonic() if now is None else now
        history = self._history.pop(identity, None) or deque()

        cutoff = now - self.window
        while history and history[0] <= cutoff:
            history.popleft()

        history.append(now)
        self._history[identity] = history

        while len(self._history) > self.max_identities:
            self._history.popitem(last=False)

        return len(history), history[0]


class RateLimiter:
    """Fixed-window rate limiter on Redis counters with an in-process fallback."""

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        cache: CacheStore,
        limit: int,
        window: int = 60,
        max_identities: int = 10_000,
        scope: str = "default",
        local: LocalSlidingWindow | None = None,
    ):
        """Initialize rate limiter with cache store, limits and fallback window."""
        self.cache = cache
        self.limit = limit
        self.window = window
        self.scope = scope
        self.local = local or LocalSlidingWindow(window, max_identities)

    def key_for(self, identity: str) -> str:
        """
        Counter key for an identity.

        Counters live under ``ratelimit:{environment}:``, outside the
        response cache namespace that invalidation and
        :meth:`CacheStore.clear` operate on.
        """
        return f"{self.KEY_PREFIX}:{self.cache.environment}:{self.scope}:{identity}"

    async def hit(self, identity: str) -> RateLimitResult:
        """
        Count a request for an identity and decide whether it may proceed.

        Args:
            identity: Caller identity (user id or client address)

        Returns:
            Rate limit decision with remaining quota and retry-after hint
        """
        key = self.key_for(identity)
        count = await self.cache.increment(key, self.window)

        if count is None:
            # Redis unavailable: degrade to process-local counting
            now = time.monotonic()
            count, oldest = self.local.hit(identity, now)
            retry_after = max(1, int(oldest + self.window - now) + 1)
        else:
            retry_after = await self.cache.ttl(key) or self.window

        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            retry_after=retry_after,
        )
