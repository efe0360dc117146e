"""
FastAPI Dependency Injection Module
===================================

Route handlers receive the application's components through FastAPI's
`Depends()` system. Every component is created ONCE in the lifespan manager
(coverline.application.app) and stored on `app.state`; the provider
functions below only read it back.

WHY app.state?
--------------
- It is tied to one app instance, so tests can build isolated apps with
  their own cache, limiter and recorder (see AppComponents)
- It is populated in the lifespan manager, so startup order is explicit
- Any request reaches it via `request.app.state`

Example:
    @router.get("/api/cover-letters")
    async def list_cover_letters(request: Request, pipeline: PipelineDep, cache: CacheDep):
        ...
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from coverline.application.api.middleware.authentication import Authenticator
from coverline.application.api.middleware.pipeline import ApiPipeline
from coverline.application.repositories.cover_letters import CoverLetterRepository
from coverline.application.repositories.sessions import InMemorySessionStore
from coverline.core.clock import Clock
from coverline.core.config.settings import Settings
from coverline.infrastructure.cache.cache_manager import MultiLevelCache
from coverline.infrastructure.monitoring.metrics_recorder import MetricsRecorder
from coverline.rate_limiting.rate_limiter import RateLimiter

# ============================================================================
# COMPONENT OVERRIDES
# ============================================================================


@dataclass
class AppComponents:
    """
    Pre-built components handed to create_app().

    Any field left as None is built from settings during startup. Tests pass
    a fake clock, an in-memory cache and a header authenticator here.
    """

    clock: Clock | None = None
    cache: MultiLevelCache | None = None
    rate_limiter: RateLimiter | None = None
    recorder: MetricsRecorder | None = None
    repository: CoverLetterRepository | None = None
    session_store: InMemorySessionStore | None = None
    authenticator: Authenticator | None = None


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def _state(request: Request, name: str):
    try:
        return getattr(request.app.state, name)
    except AttributeError as e:
        raise RuntimeError(
            f"'{name}' not initialized in app.state. "
            "This indicates the application lifespan startup didn't complete properly."
        ) from e


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with (not necessarily the global ones)."""
    return _state(request, "settings")


def get_pipeline(request: Request) -> ApiPipeline:
    return _state(request, "pipeline")


def get_app_cache(request: Request) -> MultiLevelCache:
    return _state(request, "cache")


def get_recorder(request: Request) -> MetricsRecorder:
    return _state(request, "recorder")


def get_limiter(request: Request) -> RateLimiter:
    return _state(request, "rate_limiter")


def get_repository(request: Request) -> CoverLetterRepository:
    return _state(request, "repository")


# ============================================================================
# TYPE ALIASES FOR CLEANER ROUTE SIGNATURES
# ============================================================================

SettingsDep = Annotated[Settings, Depends(get_app_settings)]
PipelineDep = Annotated[ApiPipeline, Depends(get_pipeline)]
CacheDep = Annotated[MultiLevelCache, Depends(get_app_cache)]
RecorderDep = Annotated[MetricsRecorder, Depends(get_recorder)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_limiter)]
RepositoryDep = Annotated[CoverLetterRepository, Depends(get_repository)]
