"""
Cache Module

Provides the multi-level cache (memory tier + remote tier).
"""

from .cache_manager import (
    CacheObserver,
    MultiLevelCache,
    build_cache,
    close_cache,
    get_cache,
    init_cache,
)
from .memory_tier import CacheEntry, CacheTTL, MemoryTier
from .remote_tier import InMemoryRemoteTier, RedisRemoteTier, RemoteTier, RemoteValue

__all__ = [
    "CacheEntry",
    "CacheObserver",
    "CacheTTL",
    "InMemoryRemoteTier",
    "MemoryTier",
    "MultiLevelCache",
    "RedisRemoteTier",
    "RemoteTier",
    "RemoteValue",
    "build_cache",
    "close_cache",
    "get_cache",
    "init_cache",
]
