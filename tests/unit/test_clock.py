"""Unit tests for clocks and UTC helpers"""

from datetime import datetime, timedelta, timezone

from trustlend.domain.clock import FixedClock, SystemClock
from trustlend.utils.date_utils import ensure_utc, seconds_between


def test_fixed_clock_only_moves_when_told():
    clock = FixedClock(datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert clock.now() == clock.now()
    assert clock.advance(90) == datetime(2024, 1, 1, 0, 1, 30, tzinfo=timezone.utc)

    clock.set_time(datetime(2025, 6, 1))
    assert clock.now() == datetime(2025, 6, 1, tzinfo=timezone.utc)


def test_system_clock_is_utc_aware():
    assert SystemClock().now().tzinfo == timezone.utc


def test_ensure_utc_converts_offsets():
    local = datetime(2024, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=-3)))

    assert ensure_utc(local) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert ensure_utc(datetime(2024, 1, 1)).tzinfo == timezone.utc


def test_seconds_between_mixes_naive_and_aware():
    start = datetime(2024, 1, 1, 0, 0)
    end = datetime(2024, 1, 1, 0, 0, 5, tzinfo=timezone.utc)

    assert seconds_between(start, end) == 5
    assert seconds_between(end, start) == -5
