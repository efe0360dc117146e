"""
Memory Cache Tier

Process-local, bounded, TTL-aware storage used as the first lookup tier of
MultiLevelCache.

Architecture:
    MemoryTier
        └── MemoryShard × N (OrderedDict LRU + its own lock)

Why shards?
- Operations on one key only lock the shard that owns the key
- Unrelated keys never contend on a single process-wide lock
- Each shard enforces its share of the global max size

Why threading.Lock and not asyncio.Lock?
- No method here awaits anything: a get/set finishes without suspending
- A plain mutex is held only for a few dict operations, so it never
  blocks the event loop for long, and stays correct if a worker thread
  (e.g. run_in_executor) touches the cache

Expiry is lazy: an expired entry is dropped when it is read. purge_expired()
reclaims entries nobody reads any more.
"""

import threading
import zlib
from collections import OrderedDict
from dataclasses import dataclass

from coverline.core.logging.logger import get_logger

logger = get_logger(__name__)

# Invalidation stamps kept per cache slot before the oldest are forgotten
_STAMPS_PER_ENTRY = 2


@dataclass(frozen=True)
class CacheTTL:
    """
    Independent time-to-live per tier, in seconds.

    The memory tier holds a faster, shorter-lived copy of the remote value,
    so `memory` may never exceed `remote`.

    Usage:
        CacheTTL(memory=60, remote=900)
    """

    memory: float
    remote: float

    def __post_init__(self):
        if self.memory < 0 or self.remote < 0:
            raise ValueError("Cache TTLs must be non-negative")
        if self.memory > self.remote:
            raise ValueError(
                f"Memory TTL ({self.memory}s) must not exceed remote TTL ({self.remote}s)"
            )


@dataclass
class CacheEntry:
    """
    One cached value as held by the memory tier.

    `payload` is the serialized (JSON text) form of the value, so callers
    always receive a fresh object and can never mutate what the cache holds.
    """

    key: str
    payload: str
    created_at: float
    expires_at_memory: float
    expires_at_remote: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at_memory

    def remaining_memory_ttl(self, now: float) -> float:
        return max(0.0, self.expires_at_memory - now)


class MemoryShard:
    """
    One LRU partition of the memory tier.

    Implementation Details:
    - OrderedDict gives O(1) lookup and O(1) LRU reordering
    - move_to_end on read marks an entry as recently used
    - popitem(last=False) evicts the least recently used entry

    Write generations:
    Every set/delete/clear advances the shard's `_version` and stamps the
    key with it. A reader takes generation(key) before a slow remote lookup
    and passes it back to set_if_unchanged(); the write is refused if the
    key was written or invalidated in between. Stamps are kept for a bounded
    number of keys; forgetting one raises `_floor`, so a forgotten key is
    treated as changed.
    """

    def __init__(self, max_size: int):
        self._max_size = max_size
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

        self._version = 0
        self._floor = 0
        self._stamps: OrderedDict[str, int] = OrderedDict()
        self._max_stamps = max_size * _STAMPS_PER_ENTRY

    def _bump(self, key: str) -> None:
        # Caller holds the lock
        self._version += 1
        self._stamps[key] = self._version
        self._stamps.move_to_end(key)
        while len(self._stamps) > self._max_stamps:
            _, forgotten = self._stamps.popitem(last=False)
            self._floor = max(self._floor, forgotten)

    def generation(self) -> int:
        with self._lock:
            return self._version

    def _changed_since(self, key: str, generation: int) -> bool:
        return self._stamps.get(key, self._floor) > generation

    def get(self, key: str, now: float) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                # Lazy expiry
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def _store(self, entry: CacheEntry) -> None:
        # Caller holds the lock
        if entry.key in self._entries:
            self._entries.move_to_end(entry.key)
        self._entries[entry.key] = entry

        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)
            self.evictions += 1

    def set(self, entry: CacheEntry) -> None:
        with self._lock:
            self._bump(entry.key)
            self._store(entry)

    def set_if_unchanged(self, entry: CacheEntry, generation: int) -> bool:
        with self._lock:
            if self._changed_since(entry.key, generation):
                return False
            self._store(entry)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._bump(key)
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._version += 1
            self._stamps.clear()
            self._floor = self._version
            return count

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class MemoryTier:
    """
    Sharded in-memory LRU with per-entry expiry.

    STAGE-C.1: Memory tier

    This is a per-process cache, not shared across workers or instances.
    Cross-instance visibility comes from the remote tier.

    Args:
        max_size: Total entry budget across all shards
        shards: Number of independent partitions
    """

    def __init__(self, max_size: int = 5000, shards: int = 16):
        if max_size <= 0 or shards <= 0:
            raise ValueError("max_size and shards must be positive")

        shards = min(shards, max_size)
        per_shard = -(-max_size // shards)  # ceil division
        self._shards = [MemoryShard(per_shard) for _ in range(shards)]
        self._max_size = per_shard * shards

    def _shard_for(self, key: str) -> MemoryShard:
        # crc32 keeps shard placement stable across processes (hash() is salted)
        return self._shards[zlib.crc32(key.encode("utf-8")) % len(self._shards)]

    def get(self, key: str, now: float) -> CacheEntry | None:
        """Return the live entry for key, or None if absent or expired."""
        return self._shard_for(key).get(key, now)

    def set(self, entry: CacheEntry) -> None:
        """Insert or replace an entry, evicting the shard's LRU entry when full."""
        self._shard_for(entry.key).set(entry)

    def generation(self, key: str) -> int:
        """Token for set_if_unchanged(); take it before a slow lookup of key."""
        return self._shard_for(key).generation()

    def set_if_unchanged(self, entry: CacheEntry, generation: int) -> bool:
        """
        Insert an entry only if its key was not set, deleted or cleared since
        `generation` was taken. Returns False when the write was refused.
        """
        return self._shard_for(entry.key).set_if_unchanged(entry, generation)

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if an entry was removed."""
        return self._shard_for(key).delete(key)

    def clear(self) -> int:
        """Drop every entry. Returns the number of entries removed."""
        return sum(shard.clear() for shard in self._shards)

    def purge_expired(self, now: float) -> int:
        """Remove expired entries from every shard."""
        removed = sum(shard.purge_expired(now) for shard in self._shards)
        if removed:
            logger.debug("Memory tier purged expired entries", removed=removed)
        return removed

    def size(self) -> int:
        return sum(len(shard) for shard in self._shards)

    def max_size(self) -> int:
        return self._max_size

    def evictions(self) -> int:
        return sum(shard.evictions for shard in self._shards)

    def shard_count(self) -> int:
        return len(self._shards)
