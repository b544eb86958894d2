# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Time sources and reset-interval arithmetic.

All deadline comparisons happen in one fixed, named time zone so that the
ledger behaves identically regardless of the host's locale. Tests swap the
system clock for a ManualClock to simulate the passage of many reset
intervals without waiting.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol, runtime_checkable
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Kolkata"


@runtime_checkable
class Clock(Protocol):
    """Supplies the current, timezone-aware time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock expressed in a fixed IANA time zone."""

    def __init__(self, timezone: str = DEFAULT_TIMEZONE) -> None:
        self.tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def __repr__(self) -> str:
        return f"SystemClock(timezone={self.tz.key!r})"


class ManualClock:
    """
    Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(datetime(2025, 1, 1, tzinfo=ZoneInfo("UTC")))
        >>> clock.advance(seconds=300)
    """

    def __init__(self, start: datetime | None = None) -> None:
        if start is None:
            start = datetime.now(ZoneInfo(DEFAULT_TIMEZONE))
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware datetime")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware datetime")
        self._now = value

    def advance(self, seconds: float = 0.0, **kwargs: float) -> datetime:
        """Move the clock forward; accepts the same keywords as timedelta."""
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month is Feb 28 (or 29), the same result a SQL
    ``interval '1 month'`` gives.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class ResetInterval(Enum):
    """Provider-defined cadence at which credential usage is zeroed.

    - HOURLY: short-window providers
    - DAILY: most providers
    - MONTHLY: providers billed per calendar month
    """

    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"

    def advance(self, deadline: datetime) -> datetime:
        """
        Return the next deadline after ``deadline``.

        Always advances from the stored deadline, never from "now", so a
        provider keeps a fixed cadence even if the sweep runs late.
        """
        if self is ResetInterval.MONTHLY:
            return add_months(deadline, 1)
        if self is ResetInterval.DAILY:
            return deadline + timedelta(days=1)
        return deadline + timedelta(hours=1)


__all__ = [
    "DEFAULT_TIMEZONE",
    "Clock",
    "ManualClock",
    "ResetInterval",
    "SystemClock",
    "add_months",
]
