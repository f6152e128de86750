"""Tests for calendar arithmetic and the deterministic clock."""

from datetime import UTC, datetime

import pytest

from lending_kernel.domain.clock import DeterministicClock
from lending_kernel.domain.dates import add_months, ceil_days_between


class TestAddMonths:

    def test_preserves_day_and_time(self):
        start = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        assert add_months(start, 6) == datetime(2025, 7, 15, 12, 0, tzinfo=UTC)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2025, 1, 31, tzinfo=UTC), 1) == datetime(2025, 2, 28, tzinfo=UTC)
        assert add_months(datetime(2024, 1, 31, tzinfo=UTC), 1) == datetime(2024, 2, 29, tzinfo=UTC)

    def test_crosses_year(self):
        assert add_months(datetime(2025, 11, 30, tzinfo=UTC), 3) == datetime(2026, 2, 28, tzinfo=UTC)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            add_months(datetime(2025, 1, 1, tzinfo=UTC), -1)


class TestCeilDaysBetween:

    def test_whole_days(self):
        start = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        assert ceil_days_between(start, datetime(2025, 7, 15, 12, 0, tzinfo=UTC)) == 181

    def test_partial_day_rounds_up(self):
        start = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        assert ceil_days_between(start, datetime(2025, 1, 15, 12, 0, 1, tzinfo=UTC)) == 1

    def test_same_instant_is_zero(self):
        start = datetime(2025, 1, 15, tzinfo=UTC)
        assert ceil_days_between(start, start) == 0


class TestDeterministicClock:

    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()
        before = clock.now()
        clock.advance_days(2)
        assert (clock.now() - before).days == 2

    def test_tick_advances_one_second(self):
        clock = DeterministicClock(datetime(2025, 1, 1, tzinfo=UTC))
        assert clock.tick() == datetime(2025, 1, 1, 0, 0, 1, tzinfo=UTC)
