#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module provides the long-lived, scrape-able side of observability:
- Request counts by route and status category
- Request latency histograms by route
- Pipeline rejections by stage
- Cache lookups by tier, remote-tier latency and degradation events
- AI generations and tokens by model
- Rate-limit rejections by tier and route class

The rolling in-process dashboard (error rate, percentiles over the last N
minutes) lives in MetricsRecorder; every recorded sample is mirrored here.

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Efficient storage and aggregation
- Histogram buckets for latency percentiles

Author: Platform Team
Date: 2025-12-05
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

from coverline.core.config.constants import Stage
from coverline.core.config.settings import get_settings
from coverline.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Request metrics
REQUEST_COUNT = Counter(
    'coverline_requests_total',
    'Total number of API requests seen by the pipeline',
    ['route', 'method', 'status_category']
)

REQUEST_DURATION = Histogram(
    'coverline_request_duration_seconds',
    'Request duration in seconds',
    ['route'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

# Requests that never reached the handler
REJECTIONS = Counter(
    'coverline_rejections_total',
    'Requests rejected before the handler ran',
    ['stage']  # validation, authentication, rate_limit
)

# Cache metrics
CACHE_LOOKUPS = Counter(
    'coverline_cache_lookups_total',
    'Cache lookups by the tier that answered',
    ['tier']  # memory, remote, miss
)

CACHE_DEGRADED = Counter(
    'coverline_cache_degraded_total',
    'Remote cache tier failures absorbed by the memory tier',
    ['operation']
)

CACHE_REMOTE_LATENCY = Histogram(
    'coverline_cache_remote_seconds',
    'Remote cache tier call latency in seconds',
    ['operation'],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0)
)

# AI generation metrics (outcomes reported by the generator)
AI_GENERATIONS = Counter(
    'coverline_ai_generations_total',
    'Cover-letter generations by model and outcome',
    ['model', 'status']  # success, failure
)

AI_TOKENS = Counter(
    'coverline_ai_tokens_total',
    'Tokens consumed by cover-letter generation',
    ['model']
)

# Rate limiting metrics
RATE_LIMITED = Counter(
    'coverline_rate_limited_total',
    'Requests rejected by the rate limiter',
    ['tier', 'route_class']
)

# App info
APP_INFO = Info(
    'coverline_app',
    'Application information'
)


class MetricsCollector:
    """
    Centralized Prometheus metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()

        metrics.record_request("/api/cover-letters", "GET", "success", 0.012)
        metrics.record_cache_lookup("memory")

        output = metrics.get_prometheus_metrics()
    """

    def __init__(self):
        """Initialize metrics collector."""
        self.settings = get_settings()

        APP_INFO.info({
            'version': self.settings.app.APP_VERSION,
            'environment': self.settings.app.ENVIRONMENT,
            'app_name': self.settings.app.APP_NAME
        })

        logger.info("Metrics collector initialized", stage=Stage.METRICS.value)

    # =========================================================================
    # Request Metrics
    # =========================================================================

    def record_request(
        self,
        route: str,
        method: str,
        status_category: str,
        duration_seconds: float,
    ) -> None:
        """Record one finished request (handled or rejected)."""
        REQUEST_COUNT.labels(route=route, method=method, status_category=status_category).inc()
        REQUEST_DURATION.labels(route=route).observe(duration_seconds)

    def record_rejection(self, stage: str) -> None:
        """Record a request that was short-circuited before the handler."""
        REJECTIONS.labels(stage=stage).inc()

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_lookup(self, tier: str) -> None:
        """Record which tier answered a cache lookup (or miss)."""
        CACHE_LOOKUPS.labels(tier=tier).inc()

    def record_cache_degraded(self, operation: str) -> None:
        """Record a remote tier failure that was absorbed."""
        CACHE_DEGRADED.labels(operation=operation).inc()

    def record_cache_remote_latency(self, operation: str, duration_seconds: float) -> None:
        CACHE_REMOTE_LATENCY.labels(operation=operation).observe(duration_seconds)

    # =========================================================================
    # AI Generation Metrics
    # =========================================================================

    def record_ai_generation(self, model: str, success: bool, tokens_used: int) -> None:
        """Record one reported generation outcome."""
        AI_GENERATIONS.labels(model=model, status="success" if success else "failure").inc()
        if tokens_used:
            AI_TOKENS.labels(model=model).inc(tokens_used)

    # =========================================================================
    # Rate Limiting Metrics
    # =========================================================================

    def record_rate_limited(self, tier: str, route_class: str) -> None:
        """Record rate limit exceeded event."""
        RATE_LIMITED.labels(tier=tier, route_class=route_class).inc()

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
