"""
Keyed counters with expiry.

Attempt throttling (for example failed admin key checks per client) counts
through a ``KeyedCounter`` handed in by the caller instead of a module-level
dict, so tests can swap in the in-memory version and several API processes
can share the Redis one.
"""
from __future__ import annotations

import abc
import time
from typing import Callable

from app.core.logging import get_logger

logger = get_logger(__name__)


class KeyedCounter(abc.ABC):
    """Counter per key; a key's count resets once its TTL elapses."""

    @abc.abstractmethod
    async def increment(self, key: str, ttl_seconds: int) -> int:
        """Add one and return the new count. The TTL starts at the first increment."""

    @abc.abstractmethod
    async def get(self, key: str) -> int:
        """Current count, 0 for unknown or expired keys."""

    @abc.abstractmethod
    async def reset(self, key: str) -> None:
        ...


class RedisKeyedCounter(KeyedCounter):
    """INCR + EXPIRE on a shared Redis."""

    def __init__(self, redis, prefix: str = "counter"):
        self._redis = redis
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def increment(self, key: str, ttl_seconds: int) -> int:
        redis_key = self._key(key)
        count = await self._redis.incr(redis_key)
        if count == 1:
            await self._redis.expire(redis_key, ttl_seconds)
        return int(count)

    async def get(self, key: str) -> int:
        value = await self._redis.get(self._key(key))
        return int(value) if value is not None else 0

    async def reset(self, key: str) -> None:
        await self._redis.delete(self._key(key))


class InMemoryKeyedCounter(KeyedCounter):
    """Single-process counter; expired keys are dropped lazily on access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        # key -> (count, expires_at)
        self._entries: dict[str, tuple[int, float]] = {}

    def _live_entry(self, key: str) -> tuple[int, float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def increment(self, key: str, ttl_seconds: int) -> int:
        entry = self._live_entry(key)
        if entry is None:
            self._entries[key] = (1, self._clock() + ttl_seconds)
            return 1
        count, expires_at = entry
        self._entries[key] = (count + 1, expires_at)
        return count + 1

    async def get(self, key: str) -> int:
        entry = self._live_entry(key)
        return entry[0] if entry else 0

    async def reset(self, key: str) -> None:
        self._entries.pop(key, None)


async def get_keyed_counter() -> KeyedCounter:
    """FastAPI dependency: the Redis-backed counter shared by all API workers."""
    from app.core.redis_client import get_redis

    return RedisKeyedCounter(await get_redis())
