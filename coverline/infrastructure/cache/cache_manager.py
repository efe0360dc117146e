#!/usr/bin/env python3
"""
Multi-Level Cache

Architecture:
    MultiLevelCache (Public API)
        ├── MemoryTier (sharded in-process LRU, per-entry TTL)
        ├── RemoteTier (Redis, or an in-memory stand-in)
        └── CacheObserver (hit/miss counters, logging, Prometheus)

Algorithm:
    GET:    memory → remote → miss (backfill memory on a remote hit)
    SET:    memory + remote (write-through, independent TTL per tier)
    DELETE: memory (guaranteed) + remote (best effort)

Failure Semantics:
    Every remote call runs under a timeout. A timeout or a CacheError from
    the remote tier is logged as CACHE_DEGRADED and treated as a miss (for
    reads) or ignored (for writes). The caller's request never fails because
    the remote tier is down; the cache just becomes memory-only until it
    recovers.

Staleness bound:
    A value served from memory is at most min(memory TTL, remaining remote
    TTL) old relative to the remote tier. Backfills copy the remaining
    remote TTL, capped at the memory tier's own maximum.

Values are stored as JSON text (orjson). Anything orjson can serialize is
cacheable except None, which is reserved to mean "absent".

Author: Platform Team
Date: 2025-12-13
"""

import asyncio
import hashlib
import inspect
import threading
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import orjson

from coverline.core.clock import Clock, get_clock
from coverline.core.config.constants import (
    CACHE_KEY_CONFIG,
    CACHE_KEY_COVER_LETTER,
    CACHE_KEY_COVER_LETTERS,
    CACHE_KEY_HEALTH,
    CACHE_KEY_SESSION,
    CacheTier,
    ErrorCode,
    Stage,
)
from coverline.core.config.settings import Settings, get_settings
from coverline.core.exceptions import CacheConnectionError, CacheError, CacheTimeoutError
from coverline.core.logging.logger import get_logger, log_stage
from coverline.infrastructure.cache.memory_tier import CacheEntry, CacheTTL, MemoryTier
from coverline.infrastructure.cache.redis_client import close_redis, get_redis_client, init_redis
from coverline.infrastructure.cache.remote_tier import (
    InMemoryRemoteTier,
    RedisRemoteTier,
    RemoteTier,
    RemoteValue,
)
from coverline.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from coverline.infrastructure.monitoring.metrics_recorder import CacheOperationSample

logger = get_logger(__name__)

# Remote failures that degrade the cache instead of failing the caller
_REMOTE_FAILURES = (CacheError, OSError)


# =============================================================================
# LAYER 1: OBSERVABILITY
# Tracks counters, logs operations, mirrors lookups to Prometheus
# =============================================================================


class CacheObserver:
    """
    Tracks cache performance counters and logs operations.

    Responsibility: All side effects of a cache operation that are not the
    storage itself (counters, logging, metrics).

    Counters are guarded by a plain lock: increments happen from many
    concurrent requests and `get_stats` must never read a half-updated set.

    Metrics Tracked:
    - memory hits, remote hits, misses
    - remote tier errors (degradations) and backfills
    - remote call count and average latency
    """

    def __init__(self, metrics: MetricsCollector | None = None):
        self._metrics = metrics or get_metrics_collector()
        self._lock = threading.Lock()
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._memory_hits = 0
        self._remote_hits = 0
        self._misses = 0
        self._remote_errors = 0
        self._backfills = 0
        self._skipped_backfills = 0
        self._remote_calls = 0
        self._remote_time_ms = 0.0

    def record_lookup(self, tier: CacheTier, key: str) -> None:
        """
        Record which tier answered a lookup.

        Logging Strategy:
        - memory hit / remote hit / miss: STAGE-C at debug level
        """
        with self._lock:
            if tier is CacheTier.MEMORY:
                self._memory_hits += 1
            elif tier is CacheTier.REMOTE:
                self._remote_hits += 1
            else:
                self._misses += 1

        self._metrics.record_cache_lookup(tier.value)
        log_stage(logger, Stage.CACHE, f"Cache lookup: {tier.value}", level="debug", cache_key=key[:40])

    def record_backfill(self, applied: bool = True) -> None:
        with self._lock:
            if applied:
                self._backfills += 1
            else:
                self._skipped_backfills += 1

    def record_remote_latency(self, operation: str, seconds: float) -> None:
        """Time spent in one remote tier call, successful or not."""
        with self._lock:
            self._remote_calls += 1
            self._remote_time_ms += seconds * 1000

        self._metrics.record_cache_remote_latency(operation, seconds)

    def record_degraded(self, operation: str, key: str | None, error: BaseException) -> None:
        """
        Record a remote tier failure that was absorbed.

        Logged with code CACHE_DEGRADED. This signal is internal: it shows up
        in logs, stats and Prometheus, never in an API response.
        """
        with self._lock:
            self._remote_errors += 1

        self._metrics.record_cache_degraded(operation)
        log_stage(
            logger,
            Stage.CACHE,
            "Remote cache tier unavailable, serving memory-only",
            level="warning",
            code=ErrorCode.CACHE_DEGRADED.value,
            operation=operation,
            cache_key=key[:40] if key else None,
            error_type=type(error).__name__,
            error=str(error),
        )

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache performance statistics.

        Returns:
            Dict with counters and computed hit rates (0.0 when idle)
        """
        with self._lock:
            memory_hits = self._memory_hits
            remote_hits = self._remote_hits
            misses = self._misses
            remote_errors = self._remote_errors
            backfills = self._backfills
            skipped_backfills = self._skipped_backfills
            remote_calls = self._remote_calls
            remote_time_ms = self._remote_time_ms

        total = memory_hits + remote_hits + misses
        return {
            "memory_hits": memory_hits,
            "remote_hits": remote_hits,
            "misses": misses,
            "total_requests": total,
            "hit_rate": round((memory_hits + remote_hits) / total, 4) if total else 0.0,
            "memory_hit_rate": round(memory_hits / total, 4) if total else 0.0,
            "remote_errors": remote_errors,
            "backfills": backfills,
            "skipped_backfills": skipped_backfills,
            "remote_calls": remote_calls,
            "remote_avg_response_ms": round(remote_time_ms / remote_calls, 3) if remote_calls else 0.0,
        }

    def reset(self) -> None:
        with self._lock:
            self._reset_counters()


# =============================================================================
# LAYER 2: PUBLIC API
# =============================================================================


class MultiLevelCache:
    """
    Two-tier cache with independent TTLs per tier.

    Usage:
        cache = MultiLevelCache(InMemoryRemoteTier(clock), clock=clock)

        await cache.set("cover_letters:u1", letters, CacheTTL(memory=60, remote=900))
        letters = await cache.get("cover_letters:u1")

        value, hit = await cache.get_or_compute(key, load_from_db)

        await cache.delete("cover_letters:u1")
        stats = cache.get_stats()

    Args:
        remote: Remote tier implementation
        clock: Time source for every TTL decision (injectable for tests)
        memory_max_size: Memory tier entry budget
        shards: Memory tier partitions (lock granularity)
        memory_max_ttl: Cap on any memory TTL, including backfills
        default_ttl: TTL pair used when set() is called without one
        remote_timeout: Budget for each remote call, in seconds
        clear_timeout: Budget for the remote part of clear()
        enabled: When False, get() always misses and set() is a no-op
    """

    def __init__(
        self,
        remote: RemoteTier,
        clock: Clock | None = None,
        memory_max_size: int = 5000,
        shards: int = 16,
        memory_max_ttl: float = 300.0,
        default_ttl: CacheTTL | None = None,
        remote_timeout: float = 0.25,
        clear_timeout: float = 5.0,
        enabled: bool = True,
        metrics: MetricsCollector | None = None,
    ):
        if memory_max_ttl <= 0:
            raise ValueError("memory_max_ttl must be positive")
        if remote_timeout <= 0:
            raise ValueError("remote_timeout must be positive")

        self._remote = remote
        self._clock = clock or get_clock()
        self._memory = MemoryTier(max_size=memory_max_size, shards=shards)
        self._memory_max_ttl = memory_max_ttl
        self._default_ttl = default_ttl or CacheTTL(memory=min(300.0, memory_max_ttl), remote=900.0)
        self._remote_timeout = remote_timeout
        self._clear_timeout = clear_timeout
        self._enabled = enabled
        self._observer = CacheObserver(metrics)
        self._listeners: list[Callable[[CacheOperationSample], None]] = []

        logger.info(
            "Multi-level cache initialized",
            stage=Stage.CACHE.value,
            memory_max_size=self._memory.max_size(),
            shards=self._memory.shard_count(),
            remote=type(remote).__name__,
            caching_enabled=enabled,
        )

    # -------------------------------------------------------------------------
    # Remote tier guard
    # -------------------------------------------------------------------------

    async def _remote_call(
        self,
        operation: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
        key: str | None = None,
        timeout: float | None = None,
    ) -> tuple[bool, Any]:
        """
        Run one remote tier call under a timeout.

        Every call is timed into the remote latency stats, including failures.

        Returns:
            (ok, result). ok is False when the call failed or timed out; the
            failure has already been recorded as a degradation.
        """
        budget = timeout or self._remote_timeout
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(call(*args), timeout=budget)
        except TimeoutError:
            error = CacheTimeoutError(
                f"Remote cache {operation} exceeded {budget}s", details={"operation": operation}
            )
            self._observer.record_degraded(operation, key, error)
            return False, None
        except _REMOTE_FAILURES as e:
            self._observer.record_degraded(operation, key, e)
            return False, None
        finally:
            self._observer.record_remote_latency(operation, time.perf_counter() - started)
        return True, result

    def add_operation_listener(self, listener: Callable[[CacheOperationSample], None]) -> None:
        """
        Receive one CacheOperationSample per get/set/delete/clear.

        The application wires MetricsRecorder.record_cache_operation here so
        the dashboard can report cache response times.
        """
        self._listeners.append(listener)

    def remove_operation_listener(self, listener: Callable[[CacheOperationSample], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, operation: str, key: str, started: float, hit: bool | None = None, level: str = "multi") -> None:
        if not self._listeners:
            return
        sample = CacheOperationSample(
            operation=operation,
            key=key[:40],
            hit=hit,
            level=level,
            duration_ms=(time.perf_counter() - started) * 1000,
            timestamp=self._clock.now(),
        )
        for listener in self._listeners:
            listener(sample)

    # -------------------------------------------------------------------------
    # Core Cache Operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """
        Read-through lookup.

        STAGE-C.1: memory lookup
        STAGE-C.2: remote lookup (on memory miss or expiry)

        Returns:
            The cached value (a fresh copy), or None if absent everywhere
        """
        if not self._enabled:
            return None

        started = time.perf_counter()
        # Taken before the lookup so a set/delete racing the remote call
        # wins over our backfill
        generation = self._memory.generation(key)

        now = self._clock.now()
        entry = self._memory.get(key, now)
        if entry is not None:
            self._observer.record_lookup(CacheTier.MEMORY, key)
            self._emit("get", key, started, hit=True, level=CacheTier.MEMORY.value)
            return orjson.loads(entry.payload)

        ok, remote_value = await self._remote_call("get", self._remote.get, key, key=key)
        if not ok or remote_value is None:
            self._observer.record_lookup(CacheTier.MISS, key)
            self._emit("get", key, started, hit=False, level=CacheTier.MISS.value)
            return None

        try:
            value = orjson.loads(remote_value.payload)
        except orjson.JSONDecodeError:
            log_stage(logger, Stage.CACHE, "Undecodable remote payload, treating as miss", level="warning", cache_key=key[:40])
            self._observer.record_lookup(CacheTier.MISS, key)
            self._emit("get", key, started, hit=False, level=CacheTier.MISS.value)
            return None

        self._backfill(key, remote_value, generation)
        self._observer.record_lookup(CacheTier.REMOTE, key)
        self._emit("get", key, started, hit=True, level=CacheTier.REMOTE.value)
        return value

    def _backfill(self, key: str, remote_value: RemoteValue, generation: int) -> None:
        """
        Copy a remote hit into memory for the remaining remote TTL (capped).

        Skipped when the key was set, deleted or cleared after `generation`
        was taken: the remote value may already be invalidated.
        """
        now = self._clock.now()
        remaining = remote_value.ttl_remaining
        memory_ttl = min(remaining, self._memory_max_ttl) if remaining is not None else self._memory_max_ttl
        if memory_ttl <= 0:
            return

        applied = self._memory.set_if_unchanged(
            CacheEntry(
                key=key,
                payload=remote_value.payload,
                created_at=now,
                expires_at_memory=now + memory_ttl,
                expires_at_remote=now + (remaining if remaining is not None else memory_ttl),
            ),
            generation,
        )
        self._observer.record_backfill(applied)
        if not applied:
            log_stage(logger, Stage.CACHE, "Backfill skipped, key changed during lookup", level="debug", cache_key=key[:40])

    async def set(self, key: str, value: Any, ttl: CacheTTL | None = None) -> None:
        """
        Write-through to both tiers.

        STAGE-C.3: Cache population

        The memory write happens first and without suspending, so a get()
        that follows on the same flow observes the new value even when the
        remote write is slow or failing.

        Raises:
            ValueError: If value is None
            TypeError: If value is not JSON-serializable
        """
        if not self._enabled:
            return
        if value is None:
            raise ValueError("None cannot be cached; use delete() to remove a key")

        started = time.perf_counter()
        ttl = ttl or self._default_ttl
        payload = orjson.dumps(value).decode("utf-8")
        now = self._clock.now()

        memory_ttl = min(ttl.memory, self._memory_max_ttl)
        if memory_ttl > 0:
            self._memory.set(
                CacheEntry(
                    key=key,
                    payload=payload,
                    created_at=now,
                    expires_at_memory=now + memory_ttl,
                    expires_at_remote=now + ttl.remote,
                )
            )
        else:
            self._memory.delete(key)

        if ttl.remote > 0:
            await self._remote_call("set", self._remote.set, key, payload, ttl.remote, key=key)
        else:
            await self._remote_call("delete", self._remote.delete, key, key=key)

        if memory_ttl <= 0:
            # A reader may have backfilled the previous remote value while
            # the remote write was in flight
            self._memory.delete(key)

        log_stage(logger, Stage.CACHE, "Cache set", level="debug", cache_key=key[:40])
        self._emit("set", key, started)

    async def delete(self, key: str) -> None:
        """
        Invalidate a key in both tiers.

        STAGE-C.4: Cache invalidation

        The memory delete always happens; the remote delete is best effort.
        Memory is cleared again once the remote delete returns, so nothing
        backfilled from the old remote value survives the call.
        """
        started = time.perf_counter()
        self._memory.delete(key)
        await self._remote_call("delete", self._remote.delete, key, key=key)
        self._memory.delete(key)
        log_stage(logger, Stage.CACHE, "Cache invalidated", level="debug", cache_key=key[:40])
        self._emit("delete", key, started)

    async def delete_many(self, keys: list[str]) -> None:
        """Invalidate several keys; remote deletes run concurrently."""
        started = time.perf_counter()
        for key in keys:
            self._memory.delete(key)
        await asyncio.gather(
            *(self._remote_call("delete", self._remote.delete, key, key=key) for key in keys)
        )
        for key in keys:
            self._memory.delete(key)
        self._emit("delete", ",".join(keys), started)

    async def clear(self) -> dict[str, int | None]:
        """
        Flush both tiers. Administrative; never on a request hot path.

        Returns:
            Entries removed per tier (remote is None if the flush failed)
        """
        started = time.perf_counter()
        memory_removed = self._memory.clear()
        ok, remote_removed = await self._remote_call(
            "clear", self._remote.clear, timeout=self._clear_timeout
        )
        # Backfills that raced the remote flush
        memory_removed += self._memory.clear()

        logger.info(
            "Cache cleared",
            stage=Stage.CACHE.value,
            memory_removed=memory_removed,
            remote_removed=remote_removed if ok else None,
        )
        self._emit("clear", "*", started)
        return {"memory": memory_removed, "remote": remote_removed if ok else None}

    # -------------------------------------------------------------------------
    # Advanced Patterns
    # -------------------------------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl: CacheTTL | None = None,
    ) -> tuple[Any, bool]:
        """
        Get from cache or compute and cache the result (cache-aside pattern).

        STAGE-C.5: Cache-aside

        compute_fn may be sync or async. A None result is returned but not
        cached, so "not found" is never remembered.

        Returns:
            (value, cache_hit)
        """
        cached = await self.get(key)
        if cached is not None:
            return cached, True

        value = compute_fn()
        if inspect.isawaitable(value):
            value = await value

        if value is not None:
            await self.set(key, value, ttl)
        return value, False

    def purge_expired(self) -> int:
        """Reclaim memory held by expired entries nobody has read."""
        return self._memory.purge_expired(self._clock.now())

    # -------------------------------------------------------------------------
    # Key helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def cover_letters_key(user_id: str) -> str:
        """Key of a user's full cover-letter list (paginated after the read)."""
        return f"{CACHE_KEY_COVER_LETTERS}:{user_id}"

    @staticmethod
    def cover_letter_key(letter_id: str) -> str:
        return f"{CACHE_KEY_COVER_LETTER}:{letter_id}"

    @staticmethod
    def session_key(token: str) -> str:
        """
        Key of a resolved session.

        The token is hashed so bearer credentials never appear in Redis keys.
        """
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return f"{CACHE_KEY_SESSION}:{digest}"

    @staticmethod
    def config_key(name: str) -> str:
        return f"{CACHE_KEY_CONFIG}:{name}"

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """
        Cumulative counters since start or the last reset_stats().

        Returns:
            Dict with hits per tier, misses, hit rates, sizes and timestamp
        """
        stats = self._observer.get_stats()
        stats.update(
            {
                "memory_size": self._memory.size(),
                "memory_max_size": self._memory.max_size(),
                "evictions": self._memory.evictions(),
                "caching_enabled": self._enabled,
                "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            }
        )
        return stats

    def reset_stats(self) -> None:
        self._observer.reset()

    async def health_check(self) -> dict[str, Any]:
        """
        Round-trip a sentinel value through the cache and ask the remote tier
        for its own health.

        Status:
        - healthy: round trip OK and remote tier healthy
        - degraded: round trip OK (memory) but remote tier unhealthy
        - unhealthy: the round trip itself failed
        """
        sentinel_key = f"{CACHE_KEY_HEALTH}:{self._clock.now()}"
        sentinel = {"ok": True}

        await self.set(sentinel_key, sentinel, CacheTTL(memory=10, remote=10))
        round_trip_ok = await self.get(sentinel_key) == sentinel
        await self.delete(sentinel_key)

        ok, remote_health = await self._remote_call("health", self._remote.health_check)
        if not ok:
            remote_health = {"status": "unhealthy", "error": "health check failed"}

        if not round_trip_ok and self._enabled:
            status = "unhealthy"
        elif remote_health.get("status") != "healthy":
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "round_trip": round_trip_ok,
            "memory": {
                "status": "healthy",
                "size": self._memory.size(),
                "max_size": self._memory.max_size(),
            },
            "remote": remote_health,
        }


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_cache: MultiLevelCache | None = None


def build_cache(
    settings: Settings,
    remote: RemoteTier,
    clock: Clock | None = None,
) -> MultiLevelCache:
    """Construct a MultiLevelCache from the cache settings group."""
    cache_settings = settings.cache
    return MultiLevelCache(
        remote=remote,
        clock=clock,
        memory_max_size=cache_settings.CACHE_MEMORY_MAX_SIZE,
        shards=cache_settings.CACHE_MEMORY_SHARDS,
        memory_max_ttl=cache_settings.CACHE_MEMORY_MAX_TTL,
        default_ttl=CacheTTL(
            memory=cache_settings.CACHE_DEFAULT_MEMORY_TTL,
            remote=cache_settings.CACHE_DEFAULT_REMOTE_TTL,
        ),
        remote_timeout=cache_settings.CACHE_REMOTE_TIMEOUT,
        enabled=cache_settings.CACHE_ENABLED,
    )


def get_cache() -> MultiLevelCache:
    """
    Get the global cache instance (singleton).

    Before init_cache() runs, this builds a cache over the in-memory remote
    tier so scripts and tests work without Redis.
    """
    global _cache

    if _cache is None:
        _cache = build_cache(get_settings(), InMemoryRemoteTier())

    return _cache


async def init_cache(settings: Settings | None = None) -> MultiLevelCache:
    """
    Initialize the global cache with the configured remote backend.

    If Redis cannot be reached after the connect retries, the cache still
    starts: remote calls fail fast with CacheConnectionError and are absorbed
    as degradations until the process restarts with Redis available.
    """
    global _cache

    settings = settings or get_settings()

    if settings.cache.CACHE_REMOTE_BACKEND == "redis":
        try:
            client = await init_redis()
        except CacheConnectionError as e:
            logger.warning(
                "Redis unavailable at startup, cache running memory-only",
                stage=Stage.CACHE.value,
                code=ErrorCode.CACHE_DEGRADED.value,
                error=str(e),
            )
            client = get_redis_client()
        remote: RemoteTier = RedisRemoteTier(client, settings.cache.CACHE_KEY_PREFIX)
    else:
        remote = InMemoryRemoteTier()

    _cache = build_cache(settings, remote)
    return _cache


async def close_cache() -> None:
    """Drop the global cache and close its Redis connection."""
    global _cache

    _cache = None

    await close_redis()
    logger.info("Cache closed", stage=Stage.SHUTDOWN.value)
