"""
Rate Limiter

Tiered fixed-window rate limiting keyed by (identity, route class).

Features:
- Quota per user tier × route class, written in `limits` notation
  ("20/day", "100/15 minutes") and parsed once at startup
- Lazy window reset at check time; a periodic sweep only reclaims memory
- Per-window locking: two requests from the same identity serialize, two
  different identities never contend
- Rate limit headers (X-RateLimit-*, Retry-After) built from the decision

Fixed-window caveat: a client can spend its full quota at the end of one
window and again at the start of the next, so up to 2x the limit may pass
within one window length around a boundary. This is accepted behaviour.

Algorithm (check):
1. Find or create the window for (identity, route class)
2. Lock it
3. If now >= window_start + window length: count = 0, window_start = now
4. If count >= limit: reject with remaining=0 and reset_at
5. Else increment and allow with remaining = limit - count
"""

import math
import threading
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import Request
from limits import parse as parse_limit
from slowapi.util import get_remote_address

from coverline.core.clock import Clock, get_clock
from coverline.core.config.constants import (
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_RETRY_AFTER,
    RouteClass,
    Stage,
    UserTier,
)
from coverline.core.config.settings import Settings, get_settings
from coverline.core.exceptions import QuotaConfigurationError, RateLimitExceededError
from coverline.core.logging.logger import get_logger, log_stage
from coverline.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class Quota:
    """How many requests fit in one window of `window_seconds`."""

    amount: int
    window_seconds: float

    @classmethod
    def parse(cls, limit_string: str) -> "Quota":
        """
        Parse `limits` notation.

        Example:
            Quota.parse("100/15 minutes") == Quota(amount=100, window_seconds=900)
        """
        try:
            item = parse_limit(limit_string)
        except ValueError as e:
            raise QuotaConfigurationError(
                f"Invalid quota '{limit_string}'", details={"quota": limit_string}
            ) from e
        return cls(amount=item.amount, window_seconds=float(item.get_expiry()))


@dataclass(frozen=True)
class RateLimitDecision:
    """
    Result of one rate-limit check.

    `reset_at` is a Unix timestamp (seconds) at which the current window
    ends; `checked_at` is when the decision was taken.
    """

    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    tier: UserTier
    route_class: RouteClass
    checked_at: float

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (0 when allowed)."""
        if self.allowed:
            return 0
        return max(1, math.ceil(self.reset_at - self.checked_at))

    def headers(self) -> dict[str, str]:
        """Response headers describing this decision."""
        headers = {
            HEADER_RATE_LIMIT_LIMIT: str(self.limit),
            HEADER_RATE_LIMIT_REMAINING: str(self.remaining),
            HEADER_RATE_LIMIT_RESET: str(math.ceil(self.reset_at)),
        }
        if not self.allowed:
            headers[HEADER_RETRY_AFTER] = str(self.retry_after)
        return headers


@dataclass
class RateLimitWindow:
    """
    Counter for one (identity, route class) pair.

    `retired` is set by the sweep when the window is removed from the table;
    a checker that raced the sweep and still holds a reference sees the flag
    under the lock and starts over with a fresh window.
    """

    identity: str
    route_class: RouteClass
    window_start: float
    count: int = 0
    retired: bool = False
    window_seconds: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class RateLimiter:
    """
    Tiered fixed-window rate limiter.

    STAGE-3: Rate limiting

    Usage:
        limiter = RateLimiter.from_settings(get_settings())

        decision = limiter.check("user:42", UserTier.FREE, RouteClass.SAVE)
        if not decision.allowed:
            ...  # respond 429 with decision.headers()

    check() never raises for quota exhaustion; enforce() does, for callers
    that prefer exceptions.

    Args:
        quotas: Quota for every (tier, route class) pair
        clock: Time source (injectable for tests)
        enabled: When False every check is allowed
    """

    def __init__(
        self,
        quotas: dict[tuple[UserTier, RouteClass], Quota],
        clock: Clock | None = None,
        enabled: bool = True,
        metrics: MetricsCollector | None = None,
    ):
        missing = [
            f"{tier.value}/{route_class.value}"
            for tier in UserTier
            for route_class in RouteClass
            if (tier, route_class) not in quotas
        ]
        if missing:
            raise QuotaConfigurationError(
                "Quota table is incomplete", details={"missing": missing}
            )

        self._quotas = dict(quotas)
        self._clock = clock or get_clock()
        self._enabled = enabled
        self._metrics = metrics or get_metrics_collector()
        self._windows: dict[tuple[str, RouteClass], RateLimitWindow] = {}

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> "RateLimiter":
        """Build a limiter from the RATE_LIMIT_* settings."""
        rate_settings = settings.rate_limit
        quotas = {pair: Quota.parse(text) for pair, text in rate_settings.quota_table().items()}

        logger.info(
            "Rate limiter initialized",
            stage=Stage.RATE_LIMITING.value,
            enabled=rate_settings.RATE_LIMIT_ENABLED,
            quotas={f"{t.value}/{r.value}": text for (t, r), text in rate_settings.quota_table().items()},
        )
        return cls(quotas, clock=clock, enabled=rate_settings.RATE_LIMIT_ENABLED)

    def quota_for(self, tier: UserTier, route_class: RouteClass) -> Quota:
        return self._quotas[(tier, route_class)]

    def _window_for(self, identity: str, route_class: RouteClass, now: float) -> RateLimitWindow:
        key = (identity, route_class)
        window = self._windows.get(key)
        if window is None:
            # setdefault is atomic on dict: concurrent creators agree on one window
            window = self._windows.setdefault(
                key, RateLimitWindow(identity=identity, route_class=route_class, window_start=now)
            )
        return window

    def check(self, identity: str, tier: UserTier, route_class: RouteClass) -> RateLimitDecision:
        """
        Count one request against the caller's quota.

        STAGE-3.1: Quota check

        Returns:
            RateLimitDecision with allowed, remaining and reset_at
        """
        quota = self.quota_for(tier, route_class)

        if not self._enabled:
            now = self._clock.now()
            return RateLimitDecision(
                allowed=True,
                remaining=quota.amount,
                reset_at=now + quota.window_seconds,
                limit=quota.amount,
                tier=tier,
                route_class=route_class,
                checked_at=now,
            )

        while True:
            window = self._window_for(identity, route_class, self._clock.now())
            with window.lock:
                if window.retired:
                    continue

                now = self._clock.now()
                # A tier change can shorten or lengthen the window; the
                # current tier's length always applies
                if window.count == 0 or now >= window.window_start + quota.window_seconds:
                    window.count = 0
                    window.window_start = now
                window.window_seconds = quota.window_seconds

                reset_at = window.window_start + quota.window_seconds
                if window.count >= quota.amount:
                    allowed = False
                    remaining = 0
                else:
                    window.count += 1
                    allowed = True
                    remaining = quota.amount - window.count
                break

        decision = RateLimitDecision(
            allowed=allowed,
            remaining=remaining,
            reset_at=reset_at,
            limit=quota.amount,
            tier=tier,
            route_class=route_class,
            checked_at=now,
        )

        if not allowed:
            self._metrics.record_rate_limited(tier.value, route_class.value)
            log_stage(
                logger,
                Stage.RATE_LIMITING,
                "Rate limit exceeded",
                level="warning",
                identity=identity,
                tier=tier.value,
                route_class=route_class.value,
                limit=quota.amount,
                retry_after=decision.retry_after,
            )

        return decision

    def enforce(self, identity: str, tier: UserTier, route_class: RouteClass) -> RateLimitDecision:
        """
        Like check(), but raise when the quota is exhausted.

        Raises:
            RateLimitExceededError: With limit, reset_at and retry_after in details
        """
        decision = self.check(identity, tier, route_class)
        if not decision.allowed:
            raise RateLimitExceededError(
                "Rate limit exceeded",
                details={
                    "limit": decision.limit,
                    "reset_at": decision.reset_at,
                    "retry_after": decision.retry_after,
                    "tier": tier.value,
                    "route_class": route_class.value,
                },
            )
        return decision

    def sweep(self) -> int:
        """
        Drop windows whose period has ended.

        Not needed for correctness (resets are lazy); it only bounds memory
        for identities that stopped sending requests.

        Returns:
            Number of windows removed
        """
        now = self._clock.now()
        removed = 0

        for key, window in list(self._windows.items()):
            with window.lock:
                if window.retired or now < window.window_start + window.window_seconds:
                    continue
                window.retired = True
                if self._windows.get(key) is window:
                    del self._windows[key]
                    removed += 1

        if removed:
            log_stage(logger, Stage.RATE_LIMITING, "Swept idle rate limit windows", level="debug", removed=removed)
        return removed

    def reset(self) -> None:
        """Forget every window."""
        self._windows.clear()

    def active_windows(self) -> int:
        return len(self._windows)


def effective_tier(
    tier: UserTier,
    subscription_expires_at: datetime | None,
    now: float,
) -> UserTier:
    """
    The tier a user is rate-limited as.

    A paid tier whose subscription has lapsed falls back to FREE.
    """
    if tier is UserTier.FREE or subscription_expires_at is None:
        return tier
    if subscription_expires_at.timestamp() <= now:
        return UserTier.FREE
    return tier


def identity_for(request: Request, user_id: str | None) -> str:
    """
    Extract the rate-limit identity for a request.

    Priority: authenticated user id > remote IP
    """
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


# Global rate limiter
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter.from_settings(get_settings())
    return _rate_limiter
