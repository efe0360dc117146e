"""
Remote Cache Tier

The second, shared lookup tier of MultiLevelCache. Two implementations:

- RedisRemoteTier: production backend over the pooled RedisClient
- InMemoryRemoteTier: process-local stand-in for tests and single-node dev

Both store the serialized payload only; TTL bookkeeping is delegated to the
backend (Redis PX expiry, or an explicit deadline for the in-memory one).
Failures surface as CacheError subclasses; MultiLevelCache decides what a
failure means for the caller.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from coverline.core.clock import Clock, get_clock
from coverline.infrastructure.cache.redis_client import RedisClient


@dataclass(frozen=True)
class RemoteValue:
    """A payload read from the remote tier and how long it has left (seconds)."""

    payload: str
    ttl_remaining: float | None


class RemoteTier(Protocol):
    """Contract every remote backend satisfies."""

    async def get(self, key: str) -> RemoteValue | None: ...

    async def set(self, key: str, payload: str, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> int: ...

    async def health_check(self) -> dict[str, Any]: ...


class RedisRemoteTier:
    """
    Remote tier backed by Redis.

    STAGE-C.2: Remote tier

    Keys are namespaced under `key_prefix`, so clear() can remove this
    cache's keys with a SCAN without touching anything else in the database.
    """

    def __init__(self, redis_client: RedisClient, key_prefix: str):
        self._redis = redis_client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> RemoteValue | None:
        payload, pttl = await self._redis.get_with_ttl(self._key(key))
        if payload is None:
            return None
        # -1 means the key has no expiry
        ttl_remaining = pttl / 1000 if pttl >= 0 else None
        return RemoteValue(payload=payload, ttl_remaining=ttl_remaining)

    async def set(self, key: str, payload: str, ttl: float) -> None:
        await self._redis.set(self._key(key), payload, ttl_ms=max(1, int(ttl * 1000)))

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def clear(self) -> int:
        return await self._redis.delete_matching(f"{self._prefix}:*")

    async def health_check(self) -> dict[str, Any]:
        health = await self._redis.health_check()
        health["backend"] = "redis"
        return health


class InMemoryRemoteTier:
    """
    Remote tier kept in a dict, with expiry read from an injected clock.

    Useful for tests and for running a single node without Redis. Calling
    `fail_with(exc)` makes every subsequent operation raise `exc`, which is
    how outage handling is exercised; `delay` simulates a slow backend.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or get_clock()
        self._store: dict[str, tuple[str, float]] = {}
        self._failure: Exception | None = None
        self.delay: float = 0.0
        self.calls = 0

    def fail_with(self, exc: Exception | None = None) -> None:
        """Make every operation raise; pass None to recover."""
        self._failure = exc

    async def _enter(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._failure is not None:
            raise self._failure

    async def get(self, key: str) -> RemoteValue | None:
        await self._enter()
        item = self._store.get(key)
        if item is None:
            return None
        payload, expires_at = item
        now = self._clock.now()
        if now >= expires_at:
            del self._store[key]
            return None
        return RemoteValue(payload=payload, ttl_remaining=expires_at - now)

    async def set(self, key: str, payload: str, ttl: float) -> None:
        await self._enter()
        self._store[key] = (payload, self._clock.now() + ttl)

    async def delete(self, key: str) -> None:
        await self._enter()
        self._store.pop(key, None)

    async def clear(self) -> int:
        await self._enter()
        count = len(self._store)
        self._store.clear()
        return count

    async def health_check(self) -> dict[str, Any]:
        try:
            await self._enter()
        except Exception as e:
            return {"status": "unhealthy", "backend": "memory", "error": str(e)}
        return {"status": "healthy", "backend": "memory", "keys": len(self._store)}

    def __len__(self) -> int:
        return len(self._store)

