"""Calendar arithmetic for loan terms and expirations."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from decimal import Decimal

from lending_kernel.domain.units import ceil_to_int

_SECONDS_PER_DAY = Decimal(86_400)


def add_months(start: datetime, months: int) -> datetime:
    """
    Calendar-month addition.

    Day-of-month is preserved where valid, otherwise clamped to the last
    day of the target month (Jan 31 + 1 month -> Feb 28/29).  Time of day
    and tzinfo are preserved.
    """
    if months < 0:
        raise ValueError(f"months cannot be negative: {months}")
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_days(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)


def ceil_days_between(start: datetime, end: datetime) -> int:
    """Ceiling of the (possibly fractional, possibly negative) day count."""
    delta = end - start
    seconds = Decimal(delta.days) * _SECONDS_PER_DAY + Decimal(delta.seconds) + (
        Decimal(delta.microseconds) / Decimal(1_000_000)
    )
    return ceil_to_int(seconds / _SECONDS_PER_DAY)
