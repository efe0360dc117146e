#!/usr/bin/env python3
"""
Metrics Recorder - Rolling Request Samples and Dashboards

WHAT IS THIS?
-------------
Every request that enters the pipeline (handled OR rejected) produces exactly
one RequestMetricsSample. The recorder keeps the most recent samples in a
bounded ring buffer and computes dashboards from it on demand:

- error rate = (client errors + server errors) / total
- average and percentile latency (p50, p95, p99)
- throughput = requests / time range
- cache hit rate = samples with cache_hit=True / samples that looked at the cache
- rejections by pipeline stage

A second, independent stream holds business events ("saved a cover letter")
recorded with record_user_activity(). It has its own capacity and retention.
Three more bounded streams sit beside it:

- AI generation outcomes (model, tokens, generation time, error type)
- MultiLevelCache operation timings, fed by the cache's operation listener
- periodic system health snapshots (process memory, active connections)

WHY A RING BUFFER?
------------------
- Memory is bounded no matter the traffic (deque(maxlen=N) drops the oldest)
- Samples older than the retention window are dropped on write
- Raw samples are never persisted; Prometheus keeps the long-term series

CONCURRENCY
-----------
Writers append under a lock. get_dashboard() copies the buffer under the
same lock and aggregates the copy outside it, so a dashboard is computed
from one consistent snapshot and never blocks writers for O(n) work.

Author: Platform Team
Date: 2025-12-14
"""

import math
import re
import threading
from collections import Counter, deque
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from coverline.core.clock import Clock, get_clock
from coverline.core.config.constants import (
    ALERT_AVG_RESPONSE_MS,
    ALERT_CACHE_HIT_RATE,
    ALERT_ERROR_RATE,
    CACHE_HIT_RATE_HEALTHY,
    CACHE_HIT_RATE_WARNING,
    DASHBOARD_PERCENTILES,
    ERROR_RATE_HEALTHY,
    ERROR_RATE_WARNING,
    METRICS_MAX_SYSTEM_SNAPSHOTS,
    RejectedStage,
    Stage,
    StatusCategory,
)
from coverline.core.config.settings import Settings, get_settings
from coverline.core.logging.logger import get_logger, log_stage
from coverline.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)

_TIME_RANGE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_TIME_RANGE_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


# ============================================================================
# DATA MODEL
# ============================================================================


@dataclass(frozen=True)
class RequestMetricsSample:
    """
    One finished request, immutable once recorded.

    `cache_hit` is None when the handler never consulted the cache; such
    samples are left out of the cache hit rate. `rejected_stage` is set when
    the pipeline short-circuited before the handler.
    """

    request_id: str
    route: str
    method: str
    start_time: float
    duration_ms: float
    status_code: int
    status_category: StatusCategory
    success: bool
    cache_hit: bool | None = None
    db_query_time_ms: float | None = None
    rejected_stage: RejectedStage | None = None
    error_code: str | None = None
    user_id: str | None = None
    user_tier: str | None = None


@dataclass(frozen=True)
class UserActivityEvent:
    """A business-level event, e.g. action="saved_cover_letter"."""

    user_id: str
    action: str
    timestamp: float
    success: bool = True
    duration_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AiGenerationEvent:
    """
    Outcome of one cover-letter generation, as reported by the generator.

    `generation_time_ms` is the model call's wall time; `error_type` is set
    only for failed generations.
    """

    model: str
    tokens_used: int
    generation_time_ms: float
    success: bool
    timestamp: float
    user_id: str | None = None
    user_tier: str | None = None
    error_type: str | None = None


@dataclass(frozen=True)
class CacheOperationSample:
    """
    One MultiLevelCache operation, timed end to end.

    `level` is the tier that answered a get (memory, remote, miss) or
    "multi" for writes that touch both tiers. `hit` is None for writes.
    """

    operation: str
    key: str
    hit: bool | None
    level: str
    duration_ms: float
    timestamp: float


@dataclass(frozen=True)
class SystemHealthSnapshot:
    """Process resource usage and cache state at one point in time."""

    timestamp: float
    memory_rss_mb: float
    memory_vms_mb: float
    cpu_percent: float
    threads: int
    active_connections: int
    cache: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data


@dataclass(frozen=True)
class DashboardMetrics:
    """Aggregate view over the samples of one time range."""

    time_range_seconds: float
    period_start: float
    period_end: float
    total_requests: int
    successful_requests: int
    failed_requests: int
    error_rate: float
    average_response_time_ms: float
    p50_response_time_ms: float
    p95_response_time_ms: float
    p99_response_time_ms: float
    throughput_rps: float
    cache_hit_rate: float
    cache_lookups: int
    average_db_query_time_ms: float | None
    rejected_by_stage: dict[str, int]
    status_breakdown: dict[str, int]
    requests_by_route: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# HELPERS
# ============================================================================


def parse_time_range(value: str | float | int | None, default: float) -> float:
    """
    Turn "15m", "1h", "2d", "900" or 900 into seconds.

    Raises:
        ValueError: For anything else, or a non-positive range
    """
    if value is None or value == "":
        return default
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _TIME_RANGE_PATTERN.match(value)
        if not match:
            raise ValueError(f"Invalid time range '{value}' (expected e.g. 900, 15m, 1h, 1d)")
        seconds = float(match.group(1)) * _TIME_RANGE_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError("Time range must be positive")
    return seconds


def percentile(sorted_values: Sequence[float], q: float) -> float:
    """
    Nearest-rank style percentile over an ascending sequence.

    Index is floor(n * q), clamped to the last element.
    """
    if not sorted_values:
        return 0.0
    index = min(len(sorted_values) - 1, math.floor(len(sorted_values) * q))
    return sorted_values[index]


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


# ============================================================================
# RECORDER
# ============================================================================


class MetricsRecorder:
    """
    Bounded rolling buffer of request samples plus a user-activity stream.

    STAGE-M: Metrics collection

    Usage:
        recorder = MetricsRecorder(clock=clock)
        recorder.record(sample)
        dashboard = recorder.get_dashboard(3600)
        recorder.record_user_activity(UserActivityEvent("u1", "saved_cover_letter", clock.now()))
    """

    def __init__(
        self,
        max_samples: int = 10_000,
        retention_seconds: float = 3600.0,
        max_activity_events: int = 10_000,
        activity_retention_seconds: float = 86400.0,
        default_range_seconds: float = 3600.0,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
        max_ai_events: int = 10_000,
        max_cache_operations: int = 10_000,
        max_system_snapshots: int = METRICS_MAX_SYSTEM_SNAPSHOTS,
    ):
        if min(max_samples, max_activity_events, max_ai_events, max_cache_operations, max_system_snapshots) <= 0:
            raise ValueError("Buffer capacities must be positive")
        if default_range_seconds <= 0:
            raise ValueError("Default time range must be positive")

        self._clock = clock or get_clock()
        self._metrics = metrics or get_metrics_collector()
        self._retention = retention_seconds
        self._activity_retention = activity_retention_seconds
        self._default_range = default_range_seconds

        self._samples: deque[RequestMetricsSample] = deque(maxlen=max_samples)
        self._activity: deque[UserActivityEvent] = deque(maxlen=max_activity_events)
        self._ai_events: deque[AiGenerationEvent] = deque(maxlen=max_ai_events)
        self._cache_operations: deque[CacheOperationSample] = deque(maxlen=max_cache_operations)
        self._system_snapshots: deque[SystemHealthSnapshot] = deque(maxlen=max_system_snapshots)
        self._lock = threading.Lock()
        self._activity_lock = threading.Lock()
        self._ai_lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._system_lock = threading.Lock()
        self._total_recorded = 0

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> "MetricsRecorder":
        metrics_settings = settings.metrics
        return cls(
            max_samples=metrics_settings.METRICS_MAX_SAMPLES,
            retention_seconds=metrics_settings.METRICS_RETENTION_SECONDS,
            max_activity_events=metrics_settings.METRICS_MAX_ACTIVITY_EVENTS,
            activity_retention_seconds=metrics_settings.METRICS_ACTIVITY_RETENTION_SECONDS,
            default_range_seconds=metrics_settings.METRICS_DEFAULT_RANGE_SECONDS,
            clock=clock,
            max_ai_events=metrics_settings.METRICS_MAX_AI_EVENTS,
            max_cache_operations=metrics_settings.METRICS_MAX_CACHE_OPERATIONS,
        )

    @property
    def default_range_seconds(self) -> float:
        return self._default_range

    def _resolve_range(self, time_range: float | None) -> float:
        """None means the default range; zero or negative is rejected."""
        if time_range is None:
            return self._default_range
        if time_range <= 0:
            raise ValueError(f"Time range must be positive, got {time_range}")
        return float(time_range)

    # =========================================================================
    # Request samples
    # =========================================================================

    def record(self, sample: RequestMetricsSample) -> None:
        """
        Append a finished sample and mirror it to Prometheus.

        Oldest samples fall off when capacity is reached; samples older than
        the retention window are dropped on every write.
        """
        cutoff = self._clock.now() - self._retention
        with self._lock:
            self._samples.append(sample)
            self._total_recorded += 1
            while self._samples and self._samples[0].start_time < cutoff:
                self._samples.popleft()

        self._metrics.record_request(
            sample.route, sample.method, sample.status_category.value, sample.duration_ms / 1000
        )
        if sample.rejected_stage is not None:
            self._metrics.record_rejection(sample.rejected_stage.value)

    def snapshot(self) -> list[RequestMetricsSample]:
        """Stable copy of the current buffer."""
        with self._lock:
            return list(self._samples)

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    @property
    def total_recorded(self) -> int:
        """Samples recorded since start, including ones already evicted."""
        return self._total_recorded

    def get_dashboard(self, time_range: float | None = None) -> DashboardMetrics:
        """
        Aggregate the samples that started within the last `time_range` seconds.

        O(n log n) in the buffer size (the sort for percentiles).
        """
        time_range = self._resolve_range(time_range)
        end = self._clock.now()
        start = end - time_range
        samples = [s for s in self.snapshot() if s.start_time >= start]

        total = len(samples)
        if total == 0:
            return DashboardMetrics(
                time_range_seconds=time_range,
                period_start=start,
                period_end=end,
                total_requests=0,
                successful_requests=0,
                failed_requests=0,
                error_rate=0.0,
                average_response_time_ms=0.0,
                p50_response_time_ms=0.0,
                p95_response_time_ms=0.0,
                p99_response_time_ms=0.0,
                throughput_rps=0.0,
                cache_hit_rate=0.0,
                cache_lookups=0,
                average_db_query_time_ms=None,
                rejected_by_stage={},
                status_breakdown={},
                requests_by_route={},
            )

        failed = sum(1 for s in samples if s.status_category is not StatusCategory.SUCCESS)
        durations = sorted(s.duration_ms for s in samples)
        p50, p95, p99 = (percentile(durations, q) for q in DASHBOARD_PERCENTILES)

        cache_samples = [s.cache_hit for s in samples if s.cache_hit is not None]
        cache_hits = sum(1 for hit in cache_samples if hit)

        db_times = [s.db_query_time_ms for s in samples if s.db_query_time_ms is not None]

        return DashboardMetrics(
            time_range_seconds=time_range,
            period_start=start,
            period_end=end,
            total_requests=total,
            successful_requests=total - failed,
            failed_requests=failed,
            error_rate=failed / total,
            average_response_time_ms=sum(durations) / total,
            p50_response_time_ms=p50,
            p95_response_time_ms=p95,
            p99_response_time_ms=p99,
            throughput_rps=total / time_range,
            cache_hit_rate=cache_hits / len(cache_samples) if cache_samples else 0.0,
            cache_lookups=len(cache_samples),
            average_db_query_time_ms=sum(db_times) / len(db_times) if db_times else None,
            rejected_by_stage=dict(
                Counter(s.rejected_stage.value for s in samples if s.rejected_stage is not None)
            ),
            status_breakdown=dict(Counter(s.status_category.value for s in samples)),
            requests_by_route=dict(Counter(s.route for s in samples)),
        )

    # =========================================================================
    # User activity
    # =========================================================================

    def record_user_activity(self, event: UserActivityEvent) -> None:
        """Append a business event to its own bounded stream."""
        cutoff = self._clock.now() - self._activity_retention
        with self._activity_lock:
            self._activity.append(event)
            while self._activity and self._activity[0].timestamp < cutoff:
                self._activity.popleft()

        logger.info(
            "User activity",
            stage=Stage.METRICS.value,
            user_id=event.user_id,
            action=event.action,
            success=event.success,
            metadata=event.metadata,
        )

    def get_activity_summary(self, time_range: float | None = None) -> dict[str, Any]:
        """Counts of business events by action within the time range."""
        time_range = self._resolve_range(time_range)
        start = self._clock.now() - time_range
        with self._activity_lock:
            events = [e for e in self._activity if e.timestamp >= start]

        total = len(events)
        return {
            "total_events": total,
            "unique_users": len({e.user_id for e in events}),
            "by_action": dict(Counter(e.action for e in events)),
            "success_rate": sum(1 for e in events if e.success) / total if total else 0.0,
        }

    # =========================================================================
    # AI generation
    # =========================================================================

    def record_ai_generation(self, event: AiGenerationEvent) -> None:
        """Append a generation outcome and mirror it to Prometheus."""
        with self._ai_lock:
            self._ai_events.append(event)

        self._metrics.record_ai_generation(event.model, event.success, event.tokens_used)
        log_stage(
            logger,
            Stage.METRICS,
            "AI generation recorded",
            level="info" if event.success else "warning",
            model=event.model,
            tokens_used=event.tokens_used,
            generation_time_ms=event.generation_time_ms,
            success=event.success,
            error_type=event.error_type,
            user_id=event.user_id,
        )

    def get_ai_generation_summary(self, time_range: float | None = None) -> dict[str, Any]:
        """Generation counts, latency percentiles and token usage within the time range."""
        time_range = self._resolve_range(time_range)
        start = self._clock.now() - time_range
        with self._ai_lock:
            events = [e for e in self._ai_events if e.timestamp >= start]

        total = len(events)
        if total == 0:
            return {
                "total_generations": 0,
                "successful_generations": 0,
                "failed_generations": 0,
                "error_rate": 0.0,
                "average_generation_time_ms": 0.0,
                "p95_generation_time_ms": 0.0,
                "p99_generation_time_ms": 0.0,
                "total_tokens": 0,
                "average_tokens": 0.0,
                "throughput_per_second": 0.0,
                "by_model": {},
                "errors_by_type": {},
            }

        failed = [e for e in events if not e.success]
        times = sorted(e.generation_time_ms for e in events)
        total_tokens = sum(e.tokens_used for e in events)

        by_model: dict[str, dict[str, Any]] = {}
        for event in events:
            entry = by_model.setdefault(event.model, {"count": 0, "tokens": 0, "failures": 0, "_time": 0.0})
            entry["count"] += 1
            entry["tokens"] += event.tokens_used
            entry["_time"] += event.generation_time_ms
            if not event.success:
                entry["failures"] += 1
        for entry in by_model.values():
            entry["average_generation_time_ms"] = entry.pop("_time") / entry["count"]

        return {
            "total_generations": total,
            "successful_generations": total - len(failed),
            "failed_generations": len(failed),
            "error_rate": len(failed) / total,
            "average_generation_time_ms": sum(times) / total,
            "p95_generation_time_ms": percentile(times, 0.95),
            "p99_generation_time_ms": percentile(times, 0.99),
            "total_tokens": total_tokens,
            "average_tokens": total_tokens / total,
            "throughput_per_second": total / time_range,
            "by_model": by_model,
            "errors_by_type": dict(Counter(e.error_type or "unknown" for e in failed)),
        }

    # =========================================================================
    # Cache operations
    # =========================================================================

    def record_cache_operation(self, sample: CacheOperationSample) -> None:
        """Operation listener for MultiLevelCache; called once per cache call."""
        with self._cache_lock:
            self._cache_operations.append(sample)

    def get_cache_operation_summary(self, time_range: float | None = None) -> dict[str, Any]:
        """Hit rate and response time of cache operations within the time range."""
        time_range = self._resolve_range(time_range)
        start = self._clock.now() - time_range
        with self._cache_lock:
            samples = [s for s in self._cache_operations if s.timestamp >= start]

        lookups = [s for s in samples if s.hit is not None]
        hits = sum(1 for s in lookups if s.hit)

        by_operation: dict[str, dict[str, Any]] = {}
        for sample in samples:
            entry = by_operation.setdefault(sample.operation, {"count": 0, "_time": 0.0})
            entry["count"] += 1
            entry["_time"] += sample.duration_ms
        for entry in by_operation.values():
            entry["average_response_time_ms"] = entry.pop("_time") / entry["count"]

        total = len(samples)
        return {
            "total_operations": total,
            "lookups": len(lookups),
            "hit_rate": hits / len(lookups) if lookups else 0.0,
            "average_response_time_ms": sum(s.duration_ms for s in samples) / total if total else 0.0,
            "by_level": dict(Counter(s.level for s in lookups)),
            "by_operation": by_operation,
        }

    # =========================================================================
    # System health
    # =========================================================================

    def record_system_health(self, snapshot: SystemHealthSnapshot) -> None:
        with self._system_lock:
            self._system_snapshots.append(snapshot)

        log_stage(
            logger,
            Stage.METRICS,
            "System health",
            level="debug",
            memory_rss_mb=snapshot.memory_rss_mb,
            cpu_percent=snapshot.cpu_percent,
            active_connections=snapshot.active_connections,
        )

    def latest_system_health(self) -> SystemHealthSnapshot | None:
        with self._system_lock:
            return self._system_snapshots[-1] if self._system_snapshots else None

    def system_health_history(self) -> list[SystemHealthSnapshot]:
        with self._system_lock:
            return list(self._system_snapshots)

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def log_summary(self) -> DashboardMetrics:
        """
        Log a one-line dashboard summary.

        Called periodically by the application's background task.
        """
        dashboard = self.get_dashboard()
        log_stage(
            logger,
            Stage.METRICS,
            "Metrics summary",
            total_requests=dashboard.total_requests,
            error_rate=round(dashboard.error_rate, 4),
            avg_response_ms=round(dashboard.average_response_time_ms, 2),
            p95_response_ms=round(dashboard.p95_response_time_ms, 2),
            throughput_rps=round(dashboard.throughput_rps, 3),
            cache_hit_rate=round(dashboard.cache_hit_rate, 4),
            buffered_samples=len(self),
        )
        return dashboard

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._total_recorded = 0
        with self._activity_lock:
            self._activity.clear()
        with self._ai_lock:
            self._ai_events.clear()
        with self._cache_lock:
            self._cache_operations.clear()
        with self._system_lock:
            self._system_snapshots.clear()


# ============================================================================
# HEALTH CLASSIFICATION AND ALERTS
# ============================================================================


def _worst(statuses: list[str]) -> str:
    if "critical" in statuses:
        return "critical"
    if "warning" in statuses:
        return "warning"
    return "healthy"


def evaluate_health(dashboard: DashboardMetrics, now: float) -> dict[str, Any]:
    """
    Classify component health and raise alerts from a dashboard.

    Thresholds:
    - api: error rate < 1% healthy, < 5% warning, else critical
    - cache: hit rate > 80% healthy, > 50% warning, else critical
      (no cache lookups in range counts as healthy)
    - overall: the worst component

    Alerts:
    - error_rate_high (critical) above 5%
    - response_time_high (warning) above 1000 ms average
    - cache_hit_rate_low (warning) below 50% when the cache was used
    """
    if dashboard.error_rate < ERROR_RATE_HEALTHY:
        api_status = "healthy"
    elif dashboard.error_rate < ERROR_RATE_WARNING:
        api_status = "warning"
    else:
        api_status = "critical"

    if dashboard.cache_lookups == 0 or dashboard.cache_hit_rate > CACHE_HIT_RATE_HEALTHY:
        cache_status = "healthy"
    elif dashboard.cache_hit_rate > CACHE_HIT_RATE_WARNING:
        cache_status = "warning"
    else:
        cache_status = "critical"

    timestamp = _iso(now)
    alerts = []
    if dashboard.error_rate > ALERT_ERROR_RATE:
        alerts.append({
            "type": "error_rate_high",
            "severity": "critical",
            "message": f"Error rate is {dashboard.error_rate * 100:.2f}% (threshold: {ALERT_ERROR_RATE * 100:.0f}%)",
            "timestamp": timestamp,
        })
    if dashboard.average_response_time_ms > ALERT_AVG_RESPONSE_MS:
        alerts.append({
            "type": "response_time_high",
            "severity": "warning",
            "message": f"Average response time is {dashboard.average_response_time_ms:.0f}ms (threshold: {ALERT_AVG_RESPONSE_MS:.0f}ms)",
            "timestamp": timestamp,
        })
    if dashboard.cache_lookups and dashboard.cache_hit_rate < ALERT_CACHE_HIT_RATE:
        alerts.append({
            "type": "cache_hit_rate_low",
            "severity": "warning",
            "message": f"Cache hit rate is {dashboard.cache_hit_rate * 100:.1f}% (threshold: {ALERT_CACHE_HIT_RATE * 100:.0f}%)",
            "timestamp": timestamp,
        })

    return {
        "health": {
            "overall": _worst([api_status, cache_status]),
            "api": api_status,
            "cache": cache_status,
        },
        "alerts": alerts,
    }


# Global metrics recorder
_recorder: MetricsRecorder | None = None


def get_metrics_recorder() -> MetricsRecorder:
    """Get global metrics recorder."""
    global _recorder
    if _recorder is None:
        _recorder = MetricsRecorder.from_settings(get_settings())
    return _recorder
