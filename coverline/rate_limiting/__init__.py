"""
Rate Limiting Module

Tiered fixed-window limiter keyed by (identity, route class).
"""

from .rate_limiter import (
    Quota,
    RateLimitDecision,
    RateLimiter,
    RateLimitWindow,
    effective_tier,
    get_rate_limiter,
    identity_for,
)

__all__ = [
    "Quota",
    "RateLimitDecision",
    "RateLimitWindow",
    "RateLimiter",
    "effective_tier",
    "get_rate_limiter",
    "identity_for",
]
