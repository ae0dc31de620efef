"""
Calendar helpers for per-day pricing.

A working day is Monday to Friday.  Subscription rates are spread over the
working days of the calendar month that contains the priced date, never the
month of "today".
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator

_WEEKEND = frozenset({5, 6})


def is_working_day(day: date) -> bool:
    """True for Monday to Friday."""
    return day.weekday() not in _WEEKEND


def working_days_in_month(year: int, month: int) -> int:
    """Count the Monday-Friday days of a calendar month."""
    _, last = calendar.monthrange(year, month)
    return sum(
        1 for d in range(1, last + 1) if is_working_day(date(year, month, d))
    )


def working_days_for(day: date) -> int:
    """Working days in the month containing ``day``."""
    return working_days_in_month(day.year, day.month)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range, typically one billing month."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"DateRange end {self.end} is before start {self.start}")

    @classmethod
    def for_month(cls, year: int, month: int) -> "DateRange":
        _, last = calendar.monthrange(year, month)
        return cls(date(year, month, 1), date(year, month, last))

    @classmethod
    def month_of(cls, day: date) -> "DateRange":
        return cls.for_month(day.year, day.month)

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        return iter_days(self.start, self.end)

    @property
    def label(self) -> str:
        if self.start.day == 1 and self == DateRange.month_of(self.start):
            return f"{self.start.year:04d}-{self.start.month:02d}"
        return f"{self.start.isoformat()}..{self.end.isoformat()}"
