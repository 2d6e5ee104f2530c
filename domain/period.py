"""
Domain: Commission periods.

A period is a calendar-aligned UTC window used to batch commissionable
purchases for one organization. Periods are derived from a timestamp, never
entered by hand, so two purchases captured in the same window always resolve
to an identical (start, end, period_type) triple.

Supported windows:
- DAILY:   00:00:00 to 23:59:59.999999 of the same day
- WEEKLY:  Monday 00:00:00 to Sunday 23:59:59.999999 (ISO weeks)
- MONTHLY: the 1st 00:00:00 to the last day 23:59:59.999999
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from .time import require_utc_timestamp

_END_OF_DAY = timedelta(days=1) - timedelta(microseconds=1)


class PeriodType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True, slots=True)
class CommissionPeriod:
    """Closed interval [start, end] of a single commission period."""

    start: datetime
    end: datetime
    period_type: PeriodType

    def __post_init__(self) -> None:
        require_utc_timestamp("start", self.start)
        require_utc_timestamp("end", self.end)
        if self.end < self.start:
            raise ValueError("period end must not precede period start")

    def contains(self, value: datetime) -> bool:
        require_utc_timestamp("value", value)
        return self.start <= value <= self.end

    @property
    def key(self) -> str:
        """Stable textual identity of the period (type + bounds)."""

        return f"{self.period_type.value}:{self.start.isoformat()}:{self.end.isoformat()}"


def period_containing(value: datetime, period_type: PeriodType) -> CommissionPeriod:
    """
    Return the period of the given type that contains `value`.

    Raises:
        ValueError: If `value` is not a UTC timestamp.
    """

    require_utc_timestamp("value", value)
    day_start = value.replace(hour=0, minute=0, second=0, microsecond=0)

    if period_type is PeriodType.DAILY:
        start = day_start
        end = day_start + _END_OF_DAY
    elif period_type is PeriodType.WEEKLY:
        start = day_start - timedelta(days=day_start.weekday())
        end = start + timedelta(days=6) + _END_OF_DAY
    elif period_type is PeriodType.MONTHLY:
        start = day_start.replace(day=1)
        last_day = calendar.monthrange(start.year, start.month)[1]
        end = start.replace(day=last_day) + _END_OF_DAY
    else:
        raise ValueError(f"Unsupported period type: {period_type!r}")

    return CommissionPeriod(start=start, end=end, period_type=period_type)
