"""
Unit Tests for RateLimiter

Tests the tiered fixed-window algorithm, thread safety, header
construction, tier fallback and identity extraction.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from coverline.core.config.constants import RouteClass, UserTier
from coverline.core.exceptions import QuotaConfigurationError, RateLimitExceededError
from coverline.rate_limiting.rate_limiter import (
    Quota,
    RateLimiter,
    effective_tier,
    identity_for,
)
from tests.test_fixtures import make_request, quota_table


@pytest.mark.unit
class TestQuota:
    """Test quota parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("100/15 minutes", Quota(100, 900.0)),
            ("20/day", Quota(20, 86400.0)),
            ("10/hour", Quota(10, 3600.0)),
            ("5/second", Quota(5, 1.0)),
        ],
    )
    def test_parse(self, text, expected):
        assert Quota.parse(text) == expected

    def test_parse_invalid(self):
        with pytest.raises(QuotaConfigurationError):
            Quota.parse("lots per day")


@pytest.mark.unit
class TestRateLimiter:
    """Test suite for RateLimiter."""

    def test_allows_up_to_limit_then_denies(self, rate_limiter, fake_clock):
        """free/save allows 3 per minute; the fourth is denied."""
        decisions = [rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE) for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[3].reset_at > fake_clock.now()

    def test_window_resets_after_period(self, rate_limiter, fake_clock):
        for _ in range(3):
            rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)
        assert not rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE).allowed

        fake_clock.advance(60)

        decision = rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)
        assert decision.allowed
        assert decision.remaining == 2

    def test_identities_are_isolated(self, rate_limiter):
        for _ in range(3):
            rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)

        assert rate_limiter.check("user:u2", UserTier.FREE, RouteClass.SAVE).allowed
        assert not rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE).allowed

    def test_route_classes_are_isolated(self, rate_limiter):
        for _ in range(3):
            rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)

        assert rate_limiter.check("user:u1", UserTier.FREE, RouteClass.GENERAL).allowed

    def test_reset_at_is_end_of_window(self, rate_limiter, fake_clock):
        start = fake_clock.now()

        decision = rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)

        assert decision.reset_at == start + 60

    def test_denied_headers_include_retry_after(self, rate_limiter, fake_clock):
        for _ in range(3):
            rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)
        fake_clock.advance(20)

        decision = rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)
        headers = decision.headers()

        assert decision.retry_after == 40
        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["Retry-After"] == "40"

    def test_allowed_headers_have_no_retry_after(self, rate_limiter):
        headers = rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE).headers()

        assert "Retry-After" not in headers
        assert headers["X-RateLimit-Remaining"] == "2"

    def test_enforce_raises_when_exhausted(self, rate_limiter):
        for _ in range(3):
            rate_limiter.enforce("user:u1", UserTier.FREE, RouteClass.SAVE)

        with pytest.raises(RateLimitExceededError) as exc_info:
            rate_limiter.enforce("user:u1", UserTier.FREE, RouteClass.SAVE)

        assert exc_info.value.details["limit"] == 3
        assert exc_info.value.details["retry_after"] == 60

    def test_disabled_limiter_always_allows(self, quotas, fake_clock):
        limiter = RateLimiter(quotas, clock=fake_clock, enabled=False)

        decisions = [limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE) for _ in range(10)]

        assert all(d.allowed for d in decisions)
        assert limiter.active_windows() == 0

    def test_incomplete_quota_table_is_rejected(self, fake_clock):
        table = quota_table()
        del table[(UserTier.PRO, RouteClass.SAVE)]

        with pytest.raises(QuotaConfigurationError):
            RateLimiter(table, clock=fake_clock)

    def test_current_tier_window_applies(self, fake_clock):
        limiter = RateLimiter(
            quota_table(free_general=Quota(1, 60), pro_general=Quota(1, 10)), clock=fake_clock
        )
        limiter.check("user:u1", UserTier.FREE, RouteClass.GENERAL)
        fake_clock.advance(15)

        # Upgraded user: the pro window (10s) has already elapsed
        assert limiter.check("user:u1", UserTier.PRO, RouteClass.GENERAL).allowed

    def test_from_settings(self, test_settings, fake_clock):
        limiter = RateLimiter.from_settings(test_settings, clock=fake_clock)

        assert limiter.quota_for(UserTier.FREE, RouteClass.GENERATE) == Quota(10, 3600.0)


@pytest.mark.unit
class TestConcurrentChecks:
    """check() from many threads at once."""

    def test_same_identity_allows_exactly_the_limit(self, rate_limiter):
        """free/save allows 3 per minute; 64 racing checks let exactly 3 through."""
        with ThreadPoolExecutor(max_workers=16) as executor:
            decisions = list(
                executor.map(lambda _: rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE), range(64))
            )

        allowed = [d for d in decisions if d.allowed]
        assert len(allowed) == 3
        assert sorted(d.remaining for d in allowed) == [0, 1, 2]
        assert rate_limiter.active_windows() == 1

    def test_large_limit_is_exact_under_contention(self, fake_clock):
        limiter = RateLimiter(quota_table(default=Quota(amount=500, window_seconds=60.0)), clock=fake_clock)

        with ThreadPoolExecutor(max_workers=32) as executor:
            decisions = list(
                executor.map(lambda _: limiter.check("ip:10.0.0.1", UserTier.PRO, RouteClass.GENERAL), range(800))
            )

        assert sum(1 for d in decisions if d.allowed) == 500

    def test_identities_do_not_block_each_other(self, rate_limiter):
        identities = [f"user:u{i}" for i in range(8)]

        def exhaust(identity):
            return [rate_limiter.check(identity, UserTier.FREE, RouteClass.SAVE).allowed for _ in range(5)]

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = dict(zip(identities, executor.map(exhaust, identities)))

        for identity, allowed in results.items():
            assert allowed == [True, True, True, False, False], identity
        assert rate_limiter.active_windows() == 8


@pytest.mark.unit
class TestSweep:
    """Idle window reclamation."""

    def test_sweep_removes_only_finished_windows(self, rate_limiter, fake_clock):
        rate_limiter.check("user:old", UserTier.FREE, RouteClass.SAVE)
        fake_clock.advance(45)
        rate_limiter.check("user:new", UserTier.FREE, RouteClass.SAVE)
        fake_clock.advance(20)

        removed = rate_limiter.sweep()

        assert removed == 1
        assert rate_limiter.active_windows() == 1

    def test_swept_identity_starts_fresh(self, rate_limiter, fake_clock):
        for _ in range(3):
            rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)
        fake_clock.advance(61)
        rate_limiter.sweep()

        decision = rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)

        assert decision.allowed
        assert decision.remaining == 2

    def test_reset_forgets_everything(self, rate_limiter):
        rate_limiter.check("user:u1", UserTier.FREE, RouteClass.SAVE)

        rate_limiter.reset()

        assert rate_limiter.active_windows() == 0


@pytest.mark.unit
class TestEffectiveTier:
    """Subscription expiry fallback."""

    NOW = datetime(2025, 12, 1, tzinfo=timezone.utc)

    def test_active_subscription_keeps_tier(self):
        expires = self.NOW + timedelta(days=30)

        assert effective_tier(UserTier.PRO, expires, self.NOW.timestamp()) is UserTier.PRO

    def test_lapsed_subscription_falls_back_to_free(self):
        expires = self.NOW - timedelta(seconds=1)

        assert effective_tier(UserTier.ENTERPRISE, expires, self.NOW.timestamp()) is UserTier.FREE

    def test_no_expiry_keeps_tier(self):
        assert effective_tier(UserTier.PRO, None, self.NOW.timestamp()) is UserTier.PRO


@pytest.mark.unit
class TestIdentity:
    """Rate-limit identity extraction."""

    def test_user_id_wins(self):
        assert identity_for(make_request(), "u1") == "user:u1"

    def test_falls_back_to_remote_address(self):
        request = make_request(client_host="203.0.113.7")

        assert identity_for(request, None) == "ip:203.0.113.7"
