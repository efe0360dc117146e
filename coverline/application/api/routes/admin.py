"""
Admin Routes
============

Operational endpoints for enterprise accounts: the metrics dashboard and
cache administration. Both routes run through ApiPipeline like every other
API route, so they are authenticated, rate-limited (general class) and
counted in the very dashboard they serve.

ACCESS CONTROL:
---------------
The caller's EFFECTIVE tier must equal AUTH_ADMIN_TIER (enterprise by
default). An enterprise user whose subscription has lapsed is treated as
free and gets FORBIDDEN.

DASHBOARD RESPONSE:
-------------------
"system" is the latest periodic snapshot, or one taken on the spot when the
background task has not run yet.

    {
        "timeRange": 3600,
        "dashboard": {...DashboardMetrics...},
        "cache": {...MultiLevelCache.get_stats()...},
        "activity": {...MetricsRecorder.get_activity_summary()...},
        "aiGeneration": {...MetricsRecorder.get_ai_generation_summary()...},
        "cacheOperations": {...MetricsRecorder.get_cache_operation_summary()...},
        "system": {"memory_rss_mb": 81.4, "active_connections": 3, ...},
        "health": {"overall": "healthy", "api": "healthy", "cache": "warning"},
        "alerts": [{"type": "cache_hit_rate_low", "severity": "warning", ...}]
    }
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from coverline.application.api.dependencies import CacheDep, PipelineDep, RecorderDep, SettingsDep
from coverline.application.api.middleware.outcomes import Success
from coverline.application.api.middleware.pipeline import MiddlewareContext, RoutePolicy
from coverline.application.api.models.admin import AdminAction, AdminActionRequest, MetricsQuery
from coverline.core.config.constants import RouteClass, UserTier
from coverline.core.exceptions import AuthorizationError
from coverline.core.logging.logger import get_logger
from coverline.infrastructure.monitoring.metrics_recorder import evaluate_health
from coverline.infrastructure.monitoring.system_health import collect_system_health

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])

METRICS_POLICY = RoutePolicy(
    route="/api/admin/metrics",
    route_class=RouteClass.GENERAL,
    query_schema=MetricsQuery,
)
ACTIONS_POLICY = RoutePolicy(
    route="/api/admin/actions",
    route_class=RouteClass.GENERAL,
    body_schema=AdminActionRequest,
)


def require_admin(context: MiddlewareContext, admin_tier: UserTier) -> None:
    """
    Raises:
        AuthorizationError: Effective tier is not the admin tier
    """
    user = context.require_user()
    if context.effective_tier is not admin_tier:
        logger.warning(
            "Admin access denied",
            user_id=user.id,
            tier=context.effective_tier.value if context.effective_tier else None,
        )
        raise AuthorizationError(
            "Admin access required", details={"requiredTier": admin_tier.value}
        )


@router.get("/metrics")
async def get_admin_metrics(
    request: Request,
    pipeline: PipelineDep,
    cache: CacheDep,
    recorder: RecorderDep,
    settings: SettingsDep,
) -> JSONResponse:
    """Dashboard, cache stats, activity, AI generation and system usage, health and alerts."""

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        require_admin(context, settings.auth.AUTH_ADMIN_TIER)
        query: MetricsQuery = context.query

        dashboard = recorder.get_dashboard(query.range)
        health = evaluate_health(dashboard, now=dashboard.period_end)
        cache_stats = cache.get_stats()

        system = recorder.latest_system_health()
        if system is None:
            system = collect_system_health(pipeline.in_flight, cache_stats, pipeline.clock)
            recorder.record_system_health(system)

        return Success(
            body={
                "timeRange": dashboard.time_range_seconds,
                "dashboard": dashboard.to_dict(),
                "cache": cache_stats,
                "activity": recorder.get_activity_summary(query.range),
                "aiGeneration": recorder.get_ai_generation_summary(query.range),
                "cacheOperations": recorder.get_cache_operation_summary(query.range),
                "system": system.to_dict(),
                **health,
            }
        )

    return await pipeline.handle(request, METRICS_POLICY, handler)


@router.post("/actions")
async def run_admin_action(
    request: Request,
    pipeline: PipelineDep,
    cache: CacheDep,
    settings: SettingsDep,
) -> JSONResponse:
    """
    Administrative cache operations.

    - clear_cache: flush both tiers
    - reset_cache_stats: zero the cache counters
    """

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        require_admin(context, settings.auth.AUTH_ADMIN_TIER)
        body: AdminActionRequest = context.body
        user = context.require_user()

        match body.action:
            case AdminAction.CLEAR_CACHE:
                result = await cache.clear()
            case AdminAction.RESET_CACHE_STATS:
                cache.reset_stats()
                result = cache.get_stats()

        logger.info("Admin action executed", action=body.action.value, user_id=user.id)
        return Success(body={"action": body.action.value, "result": result})

    return await pipeline.handle(request, ACTIONS_POLICY, handler)
