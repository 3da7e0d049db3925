"""Tests for the injectable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from hr_kernel.domain.clock import DeterministicClock, SystemClock


def test_system_clock_is_utc_aware():
    now = SystemClock().now()
    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)


def test_deterministic_clock_is_stable_until_advanced():
    clock = DeterministicClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
    assert clock.now() == clock.now()
    clock.advance(30)
    assert clock.now() == datetime(2024, 3, 1, 0, 0, 30, tzinfo=timezone.utc)


def test_advance_hours():
    clock = DeterministicClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
    clock.advance_hours(49)
    assert clock.now() == datetime(2024, 3, 3, 1, tzinfo=timezone.utc)


def test_set_time_resets_advance():
    clock = DeterministicClock()
    clock.advance(100)
    target = datetime(2025, 1, 1, tzinfo=timezone.utc)
    clock.set_time(target)
    assert clock.now() == target


def test_set_time_rejects_naive():
    with pytest.raises(ValueError):
        DeterministicClock().set_time(datetime(2025, 1, 1))
