"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.

Every time-dependent component gets the same FakeClock, so tests move time
with `fake_clock.advance(seconds)` instead of sleeping.
"""

import os
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tests.test_fixtures.cache_factory import CacheTestFactory, quota_table  # noqa: E402

# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio runs in auto mode (pyproject.toml); async tests still carry
# @pytest.mark.asyncio for readability


# ============================================================================
# Time and Configuration Fixtures
# ============================================================================


@pytest.fixture
def fake_clock():
    """Manually advanced clock shared by cache, limiter and recorder."""
    from coverline.core.clock import FakeClock

    return FakeClock()


@pytest.fixture
def test_settings():
    """
    Settings for tests: in-memory remote tier, header authentication, no .env.
    """
    from coverline.core.config.settings import Settings

    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        CACHE_REMOTE_BACKEND="memory",
        AUTH_MODE="header",
        LOG_FORMAT="console",
    )


# ============================================================================
# Cache Fixtures
# ============================================================================


@pytest.fixture
def remote_tier(fake_clock):
    """In-memory remote tier reading expiry from the fake clock."""
    from coverline.infrastructure.cache.remote_tier import InMemoryRemoteTier

    return InMemoryRemoteTier(clock=fake_clock)


@pytest.fixture
def failing_remote_tier(fake_clock):
    """Remote tier whose every operation raises CacheConnectionError."""
    return CacheTestFactory.failing_remote(fake_clock)


@pytest.fixture
def cache(remote_tier, fake_clock):
    """MultiLevelCache over the in-memory remote tier."""
    return CacheTestFactory.cache(remote_tier, fake_clock)


# ============================================================================
# Rate Limiting and Metrics Fixtures
# ============================================================================


@pytest.fixture
def quotas():
    """Generous quotas everywhere except free/save, which allows 3 per minute."""
    return quota_table()


@pytest.fixture
def rate_limiter(quotas, fake_clock):
    from coverline.rate_limiting.rate_limiter import RateLimiter

    return RateLimiter(quotas, clock=fake_clock)


@pytest.fixture
def recorder(fake_clock):
    from coverline.infrastructure.monitoring.metrics_recorder import MetricsRecorder

    return MetricsRecorder(max_samples=1000, clock=fake_clock)


# ============================================================================
# Pipeline and Application Fixtures
# ============================================================================


@pytest.fixture
def pipeline(rate_limiter, recorder, fake_clock):
    """ApiPipeline trusting X-User-ID / X-User-Tier headers."""
    from coverline.application.api.middleware.authentication import HeaderAuthenticator
    from coverline.application.api.middleware.pipeline import ApiPipeline

    return ApiPipeline(HeaderAuthenticator(), rate_limiter, recorder, fake_clock)


@pytest.fixture
def repository(fake_clock):
    from coverline.application.repositories.cover_letters import InMemoryCoverLetterRepository

    return InMemoryCoverLetterRepository(clock=fake_clock)


@pytest.fixture
def app_client(test_settings, fake_clock, cache, rate_limiter, recorder, repository):
    """
    TestClient over a fully wired app whose components are the fixtures
    above, so tests can inspect cache, limiter and recorder directly.
    """
    from fastapi.testclient import TestClient

    from coverline.application.api.dependencies import AppComponents
    from coverline.application.api.middleware.authentication import HeaderAuthenticator
    from coverline.application.app import create_app

    app = create_app(
        test_settings,
        AppComponents(
            clock=fake_clock,
            cache=cache,
            rate_limiter=rate_limiter,
            recorder=recorder,
            repository=repository,
            authenticator=HeaderAuthenticator(),
        ),
    )
    with TestClient(app) as client:
        yield client
