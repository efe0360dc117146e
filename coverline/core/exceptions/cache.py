"""
Cache-Related Exceptions

All exceptions related to caching operations (Redis, in-memory tier, etc.)

None of these reach an API client: MultiLevelCache absorbs remote-tier
failures and degrades to memory-only.

Author: Platform Team
Date: 2025-12-08
"""

from coverline.core.exceptions.base import CoverlineError


class CacheError(CoverlineError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to the remote cache (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect host/port configuration
    - Authentication failure
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a remote cache key operation fails.

    Common causes:
    - Connection dropped mid-command
    - Memory limit exceeded on the server
    - Value could not be serialized
    """
    pass


class CacheTimeoutError(CacheError):
    """Raised when a remote cache call exceeds its time budget."""
    pass
