#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Main entry point for the Coverline API core. Configures the FastAPI
application, builds the cache, rate limiter, metrics recorder and request
pipeline during startup, and registers the routes.

Author: Platform Team
Date: 2025-12-10
"""

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coverline.application.api.dependencies import AppComponents
from coverline.application.api.middleware.authentication import (
    Authenticator,
    HeaderAuthenticator,
    SessionTokenAuthenticator,
)
from coverline.application.api.middleware.pipeline import ApiPipeline
from coverline.application.api.routes.admin import router as admin_router
from coverline.application.api.routes.cover_letters import router as cover_letters_router
from coverline.application.api.routes.health import router as health_router
from coverline.application.repositories.cover_letters import InMemoryCoverLetterRepository
from coverline.application.repositories.sessions import InMemorySessionStore
from coverline.core.clock import get_clock
from coverline.core.config.constants import (
    HEADER_HANDLER_TIME,
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_REQUEST_ID,
    HEADER_RESPONSE_TIME,
    HEADER_RETRY_AFTER,
    HEADER_USER_TIER,
    Stage,
)
from coverline.core.config.settings import Settings, get_settings
from coverline.core.logging.logger import get_logger, log_stage, setup_logging
from coverline.infrastructure.cache.cache_manager import MultiLevelCache, close_cache, init_cache
from coverline.infrastructure.monitoring.metrics_recorder import MetricsRecorder
from coverline.infrastructure.monitoring.system_health import collect_system_health
from coverline.rate_limiting.rate_limiter import RateLimiter

logger = get_logger(__name__)


# ============================================================================
# Background maintenance
# ============================================================================


async def run_periodically(name: str, interval: float, action: Callable[[], object]) -> None:
    """
    Call `action` every `interval` seconds until cancelled.

    A failing run is logged and the loop continues with the next one.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            action()
        except Exception as e:
            logger.error(
                "Background task failed",
                task=name,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )


def build_authenticator(
    settings: Settings,
    session_store: InMemorySessionStore,
    cache: MultiLevelCache,
) -> Authenticator:
    """Session tokens by default; trusted gateway headers when AUTH_MODE=header."""
    if settings.auth.AUTH_MODE == "header":
        return HeaderAuthenticator()
    return SessionTokenAuthenticator(session_store, cache, session_ttl=settings.auth.AUTH_SESSION_TTL)


# ============================================================================
# Application Lifespan
# ============================================================================


def _make_lifespan(settings: Settings, components: AppComponents):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle (startup and shutdown).
        """
        setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

        log_stage(
            logger,
            Stage.INITIALIZATION,
            "Starting Coverline API",
            environment=settings.app.ENVIRONMENT,
            version=settings.app.APP_VERSION,
        )

        owns_cache = components.cache is None
        tasks: list[asyncio.Task] = []
        listening: tuple[MultiLevelCache, Callable] | None = None

        try:
            clock = components.clock if components.clock is not None else get_clock()

            # Cache (Redis remote tier degrades to memory-only if unreachable)
            cache = components.cache if components.cache is not None else await init_cache(settings)
            logger.info("Cache initialized", stage=Stage.CACHE.value)

            rate_limiter = (
                components.rate_limiter
                if components.rate_limiter is not None
                else RateLimiter.from_settings(settings, clock)
            )
            recorder = (
                components.recorder
                if components.recorder is not None
                else MetricsRecorder.from_settings(settings, clock)
            )
            repository = (
                components.repository
                if components.repository is not None
                else InMemoryCoverLetterRepository(clock)
            )
            session_store = (
                components.session_store
                if components.session_store is not None
                else InMemorySessionStore()
            )
            authenticator = (
                components.authenticator
                if components.authenticator is not None
                else build_authenticator(settings, session_store, cache)
            )

            pipeline = ApiPipeline(authenticator, rate_limiter, recorder, clock)
            cache.add_operation_listener(recorder.record_cache_operation)
            listening = (cache, recorder.record_cache_operation)

            # Store in app state for dependencies.py
            app.state.settings = settings
            app.state.cache = cache
            app.state.rate_limiter = rate_limiter
            app.state.recorder = recorder
            app.state.repository = repository
            app.state.session_store = session_store
            app.state.pipeline = pipeline
            logger.info("Request pipeline ready", auth_mode=type(authenticator).__name__)

            def sweep() -> None:
                rate_limiter.sweep()
                cache.purge_expired()

            tasks.append(
                asyncio.create_task(
                    run_periodically("sweep", settings.rate_limit.RATE_LIMIT_SWEEP_INTERVAL, sweep)
                )
            )
            tasks.append(
                asyncio.create_task(
                    run_periodically(
                        "metrics_summary", settings.metrics.METRICS_SUMMARY_INTERVAL, recorder.log_summary
                    )
                )
            )

            def snapshot_system() -> None:
                recorder.record_system_health(
                    collect_system_health(pipeline.in_flight, cache.get_stats(), clock)
                )

            tasks.append(
                asyncio.create_task(
                    run_periodically(
                        "system_health", settings.metrics.METRICS_SYSTEM_HEALTH_INTERVAL, snapshot_system
                    )
                )
            )

            logger.info("Application startup complete")

            yield

        finally:
            # Shutdown
            log_stage(logger, Stage.SHUTDOWN, "Shutting down application")

            for task in tasks:
                task.cancel()
            for task in tasks:
                with suppress(asyncio.CancelledError):
                    await task

            if listening is not None:
                listening_cache, listener = listening
                listening_cache.remove_operation_listener(listener)

            if owns_cache:
                await close_cache()

            logger.info("Application shutdown complete")

    return lifespan


# ============================================================================
# Application Factory
# ============================================================================


def create_app(settings: Settings | None = None, components: AppComponents | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Defaults to the global settings
        components: Pre-built components (tests); missing ones are built at startup

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    components = components or AppComponents()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Cover-letter API core: multi-level cache, tiered rate limiting, request metrics",
        lifespan=_make_lifespan(settings, components),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            HEADER_REQUEST_ID,
            HEADER_RESPONSE_TIME,
            HEADER_HANDLER_TIME,
            HEADER_RATE_LIMIT_LIMIT,
            HEADER_RATE_LIMIT_REMAINING,
            HEADER_RATE_LIMIT_RESET,
            HEADER_RETRY_AFTER,
            HEADER_USER_TIER,
        ],
    )

    app.include_router(health_router)
    app.include_router(cover_letters_router)
    app.include_router(admin_router)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "coverline.application.app:create_app",
        factory=True,
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )
