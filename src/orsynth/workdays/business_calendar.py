# src/orsynth/workdays/business_calendar.py
"""
@brief
Business-day calendar: weekends and US federal holidays.

@details
Holidays are computed per year from their calendar rules instead of being
listed by hand, so any generation window is covered. Fixed-date holidays
that fall on Saturday are observed the preceding Friday, on Sunday the
following Monday. The holiday set lives on a `BusinessCalendar` value that
is passed to whoever needs it.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, timedelta

_MONDAY = 0
_THURSDAY = 3


@dataclass(frozen=True, slots=True)
class Holiday:
    name: str
    day: date


def _nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    first = date(year, month, 1)
    shift = (weekday - first.weekday()) % 7
    return first + timedelta(days=shift + 7 * (n - 1))


def _last_weekday(year: int, month: int, weekday: int) -> date:
    last = date(year, month, calendar.monthrange(year, month)[1])
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def _observed(day: date) -> date:
    if day.weekday() == 5:
        return day - timedelta(days=1)
    if day.weekday() == 6:
        return day + timedelta(days=1)
    return day


def us_federal_holidays(year: int) -> list[Holiday]:
    """
    @brief
    Returns the 11 observed US federal holidays of a year, sorted by date.

    @details
    The observed New Year's Day can fall on December 31 of the previous year
    (when January 1 is a Saturday); it is still reported under `year`.
    """
    holidays = [
        Holiday("New Year's Day", _observed(date(year, 1, 1))),
        Holiday("Martin Luther King Jr. Day", _nth_weekday(year, 1, _MONDAY, 3)),
        Holiday("Presidents' Day", _nth_weekday(year, 2, _MONDAY, 3)),
        Holiday("Memorial Day", _last_weekday(year, 5, _MONDAY)),
        Holiday("Juneteenth", _observed(date(year, 6, 19))),
        Holiday("Independence Day", _observed(date(year, 7, 4))),
        Holiday("Labor Day", _nth_weekday(year, 9, _MONDAY, 1)),
        Holiday("Columbus Day", _nth_weekday(year, 10, _MONDAY, 2)),
        Holiday("Veterans Day", _observed(date(year, 11, 11))),
        Holiday("Thanksgiving Day", _nth_weekday(year, 11, _THURSDAY, 4)),
        Holiday("Christmas Day", _observed(date(year, 12, 25))),
    ]
    return sorted(holidays, key=lambda h: h.day)


def shift_months(day: date, months: int) -> date:
    """Same day-of-month `months` away, clamped to the target month's length."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    last = calendar.monthrange(year, month + 1)[1]
    return date(year, month + 1, min(day.day, last))


def holiday_dates(first_year: int, last_year: int) -> frozenset[date]:
    """Observed holiday dates for every year in [first_year, last_year]."""
    return frozenset(
        h.day for year in range(first_year, last_year + 1) for h in us_federal_holidays(year)
    )


def is_operating_day(day: date, operating_days: Iterable[int], holidays: frozenset[date]) -> bool:
    """
    @brief
    True when a surgeon operates on `day`.

    @details
    Weekends and holidays never operate. Otherwise the ISO weekday
    (1 = Monday) must be one of the surgeon's operating weekdays.
    """
    if day.weekday() >= 5 or day in holidays:
        return False
    return day.isoweekday() in set(operating_days)


@dataclass(frozen=True)
class BusinessCalendar:
    """
    @brief
    Inclusive date window with its holiday set.

    @details
    The holiday set spans one year past `end` so that an observed
    New Year's Day on December 31 is included.
    """

    start: date
    end: date
    holidays: frozenset[date] = field(default=frozenset())

    @classmethod
    def for_range(cls, start: date, end: date) -> BusinessCalendar:
        if end < start:
            raise ValueError(f"calendar end {end} precedes start {start}")
        return cls(start=start, end=end, holidays=holiday_dates(start.year, end.year + 1))

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays

    def is_operating_day(self, day: date, operating_days: Iterable[int]) -> bool:
        return is_operating_day(day, operating_days, self.holidays)

    def excluded_dates(self) -> list[date]:
        """Weekends and holidays inside the window, ascending."""
        return [d for d in self.days() if d.weekday() >= 5 or d in self.holidays]

    def business_days(self) -> list[date]:
        """Weekdays inside the window that are not holidays, ascending."""
        return [d for d in self.days() if d.weekday() < 5 and d not in self.holidays]

    def operating_dates(self, operating_days: Iterable[int]) -> list[date]:
        weekdays = set(operating_days)
        return [d for d in self.business_days() if d.isoweekday() in weekdays]

    def holidays_in_range(self) -> int:
        return sum(1 for d in self.holidays if self.start <= d <= self.end)


__all__ = [
    "BusinessCalendar",
    "Holiday",
    "holiday_dates",
    "is_operating_day",
    "shift_months",
    "us_federal_holidays",
]
