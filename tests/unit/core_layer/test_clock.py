"""
Unit Tests for Time Sources
"""

import time

import pytest

from coverline.core.clock import FakeClock, SystemClock, get_clock


@pytest.mark.unit
class TestFakeClock:
    def test_advance_moves_time_forward(self):
        clock = FakeClock(start=100.0)

        clock.advance(0.15)

        assert clock.now() == pytest.approx(100.15)

    def test_cannot_move_backwards(self):
        with pytest.raises(ValueError):
            FakeClock().advance(-1)

    def test_set_jumps_to_timestamp(self):
        clock = FakeClock()

        clock.set(5.0)

        assert clock.now() == 5.0


@pytest.mark.unit
class TestSystemClock:
    def test_tracks_wall_clock(self):
        assert abs(SystemClock().now() - time.time()) < 1.0

    def test_get_clock_is_system_clock(self):
        assert isinstance(get_clock(), SystemClock)
