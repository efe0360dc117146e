"""
Health and Metrics Routes
=========================

Unauthenticated operational endpoints. They bypass ApiPipeline: load
balancers and Prometheus scrapers carry no credentials and must never be
rate-limited.

HEALTH STATUS CODES:
--------------------
- 200: cache round trip OK ("healthy", or "degraded" when only the remote
       tier is down and requests are served memory-only)
- 503: the cache round trip itself failed, so the instance should leave
       the load balancer
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from coverline.application.api.dependencies import CacheDep, RateLimiterDep, RecorderDep, SettingsDep
from coverline.core.config.constants import Stage
from coverline.core.logging.logger import get_logger, log_stage
from coverline.infrastructure.monitoring.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response (documented in OpenAPI)."""

    status: str  # "healthy", "degraded", "unhealthy"
    timestamp: str
    version: str
    components: dict | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(
    cache: CacheDep,
    rate_limiter: RateLimiterDep,
    recorder: RecorderDep,
    settings: SettingsDep,
):
    """
    Readiness check: round-trips a sentinel value through the cache.

    Returns:
        200 with status healthy/degraded, or 503 when unhealthy
    """
    cache_health = await cache.health_check()
    status = cache_health["status"]

    body = HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        version=settings.app.APP_VERSION,
        components={
            "cache": cache_health,
            "rate_limiter": {"status": "healthy", "active_windows": rate_limiter.active_windows()},
            "metrics": {"status": "healthy", "buffered_samples": len(recorder)},
        },
    )

    if status == "unhealthy":
        log_stage(logger, Stage.CACHE, "Health check failed", level="error", cache=cache_health)
        return JSONResponse(status_code=503, content=body.model_dump())
    return body


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """Prometheus exposition of the process-wide registry."""
    collector = get_metrics_collector()
    return Response(content=collector.get_prometheus_metrics(), media_type=collector.get_content_type())
