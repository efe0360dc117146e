"""
Configuration Module

This module provides centralized, type-safe configuration management
for the cover-letter API core.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: System-wide constants, enums, and thresholds

Architecture:
------------
1. **Constants Layer** (`constants.py`):
   - Immutable system constants
   - Type-safe enums (Stage, UserTier, RouteClass, ErrorCode, etc.)
   - Dashboard thresholds
   - HTTP header names and cache key prefixes

2. **Settings Layer** (`settings.py`):
   - Environment-based configuration
   - Pydantic validation (quota strings and TTL ordering checked at startup)
   - Grouped settings views (redis, cache, rate_limit, metrics, auth, ...)
   - Singleton pattern for global access
"""

from .settings import Settings, get_settings, reload_settings

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
]
