"""
Unit Tests for the Application Factory

Tests authenticator selection, the background task loop and lifespan
wiring of default and injected components.
"""

import asyncio
from contextlib import suppress

import pytest
from fastapi.testclient import TestClient

from coverline.application.api.middleware.authentication import (
    HeaderAuthenticator,
    SessionTokenAuthenticator,
)
from coverline.application.app import build_authenticator, create_app, run_periodically
from coverline.application.repositories import InMemorySessionStore
from coverline.core.config.settings import Settings


@pytest.mark.unit
class TestBuildAuthenticator:
    def test_header_mode(self, test_settings, cache):
        authenticator = build_authenticator(test_settings, InMemorySessionStore(), cache)

        assert isinstance(authenticator, HeaderAuthenticator)

    def test_session_mode(self, cache):
        settings = Settings(_env_file=None, AUTH_MODE="session")

        authenticator = build_authenticator(settings, InMemorySessionStore(), cache)

        assert isinstance(authenticator, SessionTokenAuthenticator)


@pytest.mark.unit
class TestRunPeriodically:
    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_loop(self):
        calls = []

        def action():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first run fails")

        task = asyncio.create_task(run_periodically("test", 0.01, action))
        await asyncio.sleep(0.1)
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

        assert len(calls) >= 2


@pytest.mark.unit
class TestLifespan:
    def test_default_components_are_built(self, test_settings):
        app = create_app(test_settings)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert app.state.pipeline is not None
            assert app.state.rate_limiter.active_windows() == 0

    def test_session_mode_end_to_end(self, cache):
        from coverline.application.api.dependencies import AppComponents
        from coverline.application.api.middleware.authentication import AuthenticatedUser
        from coverline.core.config.constants import UserTier

        settings = Settings(_env_file=None, AUTH_MODE="session", CACHE_REMOTE_BACKEND="memory")
        store = InMemorySessionStore()
        token = store.create_session(AuthenticatedUser(id="u1", tier=UserTier.PRO))
        app = create_app(settings, AppComponents(cache=cache, session_store=store))

        with TestClient(app) as client:
            authorized = client.get("/api/cover-letters", headers={"Authorization": f"Bearer {token}"})
            anonymous = client.get("/api/cover-letters")

        assert authorized.status_code == 200
        assert authorized.headers["X-User-Tier"] == "pro"
        assert anonymous.status_code == 401

    def test_empty_injected_components_are_kept(self, test_settings, cache, fake_clock):
        from coverline.application.api.dependencies import AppComponents
        from coverline.application.repositories import InMemoryCoverLetterRepository
        from coverline.infrastructure.monitoring.metrics_recorder import MetricsRecorder

        recorder = MetricsRecorder(clock=fake_clock)
        repository = InMemoryCoverLetterRepository(fake_clock)
        store = InMemorySessionStore()
        assert len(recorder) == len(repository) == len(store) == 0

        app = create_app(
            test_settings,
            AppComponents(
                clock=fake_clock,
                cache=cache,
                recorder=recorder,
                repository=repository,
                session_store=store,
            ),
        )

        with TestClient(app) as client:
            client.get("/health")
            assert app.state.recorder is recorder
            assert app.state.repository is repository
            assert app.state.session_store is store
            assert app.state.cache is cache

    def test_cache_operations_reach_the_recorder(self, test_settings, cache, fake_clock):
        from coverline.application.api.dependencies import AppComponents
        from coverline.infrastructure.monitoring.metrics_recorder import MetricsRecorder

        recorder = MetricsRecorder(clock=fake_clock)
        app = create_app(test_settings, AppComponents(clock=fake_clock, cache=cache, recorder=recorder))

        with TestClient(app) as client:
            client.get("/api/cover-letters", headers={"X-User-Id": "u1", "X-User-Tier": "pro"})

        assert recorder.get_cache_operation_summary(60)["by_operation"]["get"]["count"] >= 1
        # Detached at shutdown
        before = recorder.get_cache_operation_summary(60)["total_operations"]
        asyncio.run(cache.get("cover_letters:u1"))
        assert recorder.get_cache_operation_summary(60)["total_operations"] == before
