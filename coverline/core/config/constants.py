"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the cover-letter API core (cache, rate limiter, pipeline, metrics).

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for tiers, route classes and error codes
- Values double as log/metric labels, so they are plain strings

Author: Platform Team
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Request processing stages for structured logging.

    Format: {SEQUENCE}_{DESCRIPTIVE_NAME}
    - SEQUENCE: Numeric order (0.0, 1.0, 2.0) or alphabetic prefix (C, M)
    - DESCRIPTIVE_NAME: Clear, uppercase description with underscores

    The numeric stages follow the pipeline order, so a request's log lines
    sort into the order in which they were produced.

    Examples:
        log_stage(logger, Stage.RATE_LIMITING, "Quota exhausted", identity="user:42")
        log_stage(logger, Stage.CACHE, "Remote tier degraded", level="warning")
    """

    # Main Request Lifecycle (Sequential 0.0 - 5.0)
    INITIALIZATION = "0.0_INITIALIZATION"
    REQUEST_VALIDATION = "1.0_REQUEST_VALIDATION"
    AUTHENTICATION = "2.0_AUTHENTICATION"
    RATE_LIMITING = "3.0_RATE_LIMITING"
    HANDLER = "4.0_HANDLER"
    RESPONSE = "5.0_RESPONSE"

    # Cross-Cutting Concerns (Alphabetic Prefixes)
    CACHE = "C_CACHE"
    REDIS = "R_REDIS"
    METRICS = "M_METRICS_COLLECTION"
    SECURITY = "S_SECURITY"
    SHUTDOWN = "X_SHUTDOWN"


# ============================================================================
# User Tiers and Route Classes
# ============================================================================


class UserTier(str, Enum):
    """
    Subscription level of the caller. Determines rate-limit quotas.

    FREE is also the effective tier of any paid user whose subscription
    has lapsed.
    """

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class RouteClass(str, Enum):
    """
    Endpoint category with its own rate-limit policy.

    GENERAL: reads and cheap operations
    SAVE: persistence writes
    GENERATE: expensive AI generation requests
    """

    GENERAL = "general"
    SAVE = "save"
    GENERATE = "generate"


# ============================================================================
# Cache Tiers
# ============================================================================


class CacheTier(str, Enum):
    """
    Multi-tier caching levels.

    MEMORY: Process-local sharded LRU (fastest, no I/O)
    REMOTE: Shared store (Redis), visible to every instance
    """

    MEMORY = "memory"
    REMOTE = "remote"
    MISS = "miss"


# ============================================================================
# Request Outcome Classification
# ============================================================================


class StatusCategory(str, Enum):
    """HTTP status bucket used by the dashboard."""

    SUCCESS = "success"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"

    @classmethod
    def from_status_code(cls, status_code: int) -> "StatusCategory":
        if status_code >= 500:
            return cls.SERVER_ERROR
        if status_code >= 400:
            return cls.CLIENT_ERROR
        return cls.SUCCESS


class RejectedStage(str, Enum):
    """Pipeline stage that short-circuited a request before the handler ran."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"


class ErrorCode(str, Enum):
    """
    Stable error codes carried in every JSON error body.

    CACHE_DEGRADED is an internal log signal and is never returned to a client.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CACHE_DEGRADED = "CACHE_DEGRADED"


# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_RESPONSE_TIME = "X-Response-Time"
HEADER_HANDLER_TIME = "X-Handler-Time"
HEADER_RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_USER_TIER = "X-User-Tier"
HEADER_USER_ID = "X-User-ID"
HEADER_CACHE = "X-Cache"

# ============================================================================
# Cache Key Prefixes
# ============================================================================

CACHE_KEY_COVER_LETTERS = "cover_letters"
CACHE_KEY_COVER_LETTER = "cover_letter"
CACHE_KEY_SESSION = "session"
CACHE_KEY_CONFIG = "config"
CACHE_KEY_HEALTH = "health_check"

# ============================================================================
# Dashboard Thresholds
# ============================================================================

# API error-rate classification (fractions, not percentages)
ERROR_RATE_HEALTHY = 0.01
ERROR_RATE_WARNING = 0.05

# Cache hit-rate classification
CACHE_HIT_RATE_HEALTHY = 0.8
CACHE_HIT_RATE_WARNING = 0.5

# Alert triggers
ALERT_ERROR_RATE = 0.05
ALERT_AVG_RESPONSE_MS = 1000.0
ALERT_CACHE_HIT_RATE = 0.5

# Percentiles reported by the dashboard
DASHBOARD_PERCENTILES = (0.5, 0.95, 0.99)

# Buffer defaults
METRICS_MAX_SAMPLES = 10000
METRICS_MAX_ACTIVITY_EVENTS = 10000
METRICS_MAX_AI_EVENTS = 10000
METRICS_MAX_CACHE_OPERATIONS = 10000
METRICS_MAX_SYSTEM_SNAPSHOTS = 120
