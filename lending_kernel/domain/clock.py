"""
Clock -- injectable source of "now".

Services and selectors take a Clock in their constructor and never call
``datetime.now()`` themselves.  Offer and application expiry, creation-date
windows, maturity checks and early-exit dates all read it, so a test can
move time forward and watch records expire passively.

Engines in ``lending_engines`` never see a Clock; callers pass explicit dates.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` is stable between calls; ``advance``, ``advance_days``,
    ``tick`` and ``set_time`` move it.
    """

    DEFAULT_START = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)

    def __init__(self, start: datetime | None = None):
        self._current = start or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance()
        return self._current
