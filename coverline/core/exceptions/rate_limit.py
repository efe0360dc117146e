"""
Rate Limiting Exceptions

All exceptions related to rate limiting operations

Author: Platform Team
Date: 2025-12-08
"""

from coverline.core.exceptions.base import ConfigurationError, CoverlineError


class RateLimitError(CoverlineError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised when a caller exceeds their quota.

    RateLimiter.check never raises this for normal quota exhaustion; it
    returns a decision with allowed=False. The exception exists for callers
    that prefer to enforce a decision by raising (see RateLimiter.enforce).

    The response should include:
    - X-RateLimit-Limit: Maximum requests allowed
    - X-RateLimit-Remaining: Requests remaining
    - X-RateLimit-Reset: Time when limit resets (Unix timestamp)
    - Retry-After: Seconds until the window resets
    """
    pass


class QuotaConfigurationError(ConfigurationError):
    """Raised when a tier × route class quota string cannot be parsed."""
    pass
