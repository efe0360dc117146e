#!/usr/bin/env python3
"""
System Health Snapshots

Samples this process's resource usage with psutil and pairs it with the
pipeline's in-flight request count and the cache's counters. The application
takes one snapshot every METRICS_SYSTEM_HEALTH_INTERVAL seconds and the admin
metrics route serves the latest one.

cpu_percent is measured since the previous call on the same Process object,
so the module keeps one Process for its lifetime. The first reading is 0.0.

Author: Platform Team
Date: 2025-12-16
"""

from typing import Any

import psutil

from coverline.core.clock import Clock, get_clock
from coverline.infrastructure.monitoring.metrics_recorder import SystemHealthSnapshot

_BYTES_PER_MB = 1024 * 1024

_process: psutil.Process | None = None


def _get_process() -> psutil.Process:
    global _process
    if _process is None:
        _process = psutil.Process()
    return _process


def collect_system_health(
    active_connections: int,
    cache_stats: dict[str, Any] | None = None,
    clock: Clock | None = None,
) -> SystemHealthSnapshot:
    """
    Take one snapshot of process memory, CPU and connection state.

    Args:
        active_connections: Requests currently inside the pipeline
        cache_stats: MultiLevelCache.get_stats() output, kept as-is
        clock: Timestamp source; defaults to the process clock
    """
    clock = clock or get_clock()
    process = _get_process()
    memory = process.memory_info()

    return SystemHealthSnapshot(
        timestamp=clock.now(),
        memory_rss_mb=round(memory.rss / _BYTES_PER_MB, 2),
        memory_vms_mb=round(memory.vms / _BYTES_PER_MB, 2),
        cpu_percent=process.cpu_percent(),
        threads=process.num_threads(),
        active_connections=active_connections,
        cache=dict(cache_stats or {}),
    )
