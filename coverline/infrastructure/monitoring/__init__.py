"""
Monitoring Module

Prometheus metrics (long-lived, scraped), the rolling in-process metrics
recorder (dashboards, user activity, AI generation, cache operations) and
system health snapshots.
"""

from .metrics_collector import MetricsCollector, get_metrics_collector
from .metrics_recorder import (
    AiGenerationEvent,
    CacheOperationSample,
    DashboardMetrics,
    MetricsRecorder,
    RequestMetricsSample,
    SystemHealthSnapshot,
    UserActivityEvent,
    evaluate_health,
    get_metrics_recorder,
    parse_time_range,
    percentile,
)
from .system_health import collect_system_health

__all__ = [
    "AiGenerationEvent",
    "CacheOperationSample",
    "DashboardMetrics",
    "MetricsCollector",
    "MetricsRecorder",
    "RequestMetricsSample",
    "SystemHealthSnapshot",
    "UserActivityEvent",
    "collect_system_health",
    "evaluate_health",
    "get_metrics_collector",
    "get_metrics_recorder",
    "parse_time_range",
    "percentile",
]
