"""
Time Sources

Every TTL and rate-limit window in the core reads time through a Clock so
tests can move time forward deterministically instead of sleeping.

- SystemClock: wall-clock seconds since the epoch (time.time). Wall time is
  used because rate-limit reset timestamps are returned to clients.
- FakeClock: manually advanced clock for tests.

Durations of individual requests are measured with time.perf_counter at the
call site, not through a Clock.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time in seconds."""

    def now(self) -> float: ...


class SystemClock:
    """Wall-clock time source backed by time.time()."""

    def now(self) -> float:
        return time.time()


class FakeClock:
    """
    Manually driven clock.

    Usage:
        clock = FakeClock(start=1_000.0)
        cache = MultiLevelCache(remote, clock=clock)
        clock.advance(0.15)
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("FakeClock cannot move backwards")
        self._now += seconds

    def set(self, timestamp: float) -> None:
        self._now = timestamp


_system_clock = SystemClock()


def get_clock() -> Clock:
    """Return the process-wide system clock."""
    return _system_clock
