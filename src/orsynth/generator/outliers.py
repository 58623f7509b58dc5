# src/orsynth/generator/outliers.py
"""
@brief
Outlier injection: draws that bias start times, phase durations, turnovers
and callback timing.

@details
Every function takes the surgeon's OutlierProfile (or None) and the run's
random generator explicitly. A kind fires with its configured frequency,
except on a bad day, where every enabled kind fires with certainty and
draws from its configured range.
"""

from __future__ import annotations

import calendar
import random
from collections import defaultdict
from collections.abc import Iterable
from datetime import date

from orsynth.schemas.models import OutlierProfile, OutlierSetting


def should_fire(frequency_pct: float, rng: random.Random) -> bool:
    return rng.random() * 100 < frequency_pct


def _fires(setting: OutlierSetting, is_bad_day: bool, rng: random.Random) -> bool:
    if not setting.enabled:
        return False
    if is_bad_day:
        return True
    return should_fire(setting.frequency, rng)


def schedule_bad_days(
    operating_dates: Iterable[date],
    per_month: int,
    rng: random.Random,
    span: tuple[date, date] | None = None,
) -> frozenset[date]:
    """
    @brief
    Picks the surgeon's bad days among their operating dates.

    @details
    Each calendar month gets `per_month` bad days scaled by the share of the
    month covered by `span` (defaults to the first..last operating date) and
    rounded half up, capped by the operating dates available in that month.
    A full six-month window with `per_month=2` therefore yields 12 bad days.

    @params
        operating_dates : Iterable[date]
            Dates the surgeon operates.
        per_month : int
            Bad days per full month (0 disables).
        rng : random.Random
            Run random generator.
        span : tuple[date, date] | None
            Inclusive window used to weigh partial months.

    @returns
        Frozen set of bad dates.
    """
    dates = sorted(set(operating_dates))
    if per_month <= 0 or not dates:
        return frozenset()

    start, end = span if span is not None else (dates[0], dates[-1])

    # (1) Group operating dates by calendar month
    by_month: dict[tuple[int, int], list[date]] = defaultdict(list)
    for d in dates:
        by_month[(d.year, d.month)].append(d)

    # (2) Draw a coverage-weighted quota per month
    bad: set[date] = set()
    for (year, month), month_dates in sorted(by_month.items()):
        days_in_month = calendar.monthrange(year, month)[1]
        first = max(start, date(year, month, 1))
        last = min(end, date(year, month, days_in_month))
        covered = max(0, (last - first).days + 1)
        quota = int(per_month * covered / days_in_month + 0.5)
        quota = min(quota, len(month_dates))
        if quota > 0:
            bad.update(rng.sample(month_dates, quota))
    return frozenset(bad)


def late_start_delay(profile: OutlierProfile | None, is_bad_day: bool, rng: random.Random) -> int:
    """First-case delay in minutes for the day, 0 when no late start fires."""
    if profile is None or not _fires(profile.late_starts, is_bad_day, rng):
        return 0
    return rng.randint(profile.late_starts.range_min, profile.late_starts.range_max)


def cascade_delay(profile: OutlierProfile | None, is_bad_day: bool, rng: random.Random) -> int:
    """
    @brief
    Extra delay for a case after the first on a late-start day.

    @details
    Always at least `cascade_min` (>= 1) when late starts are enabled, so the
    cumulative delay strictly grows case over case. The bad-day flag does not
    change the range.
    """
    if profile is None or not profile.late_starts.enabled:
        return 0
    return rng.randint(profile.cascade_min, profile.cascade_max)


def turnover_adjustment(
    profile: OutlierProfile | None, base_minutes: int, is_bad_day: bool, rng: random.Random
) -> int:
    """Turnover minutes; a long turnover replaces the baseline instead of adding to it."""
    if profile is None or not _fires(profile.long_turnovers, is_bad_day, rng):
        return base_minutes
    return rng.randint(profile.long_turnovers.range_min, profile.long_turnovers.range_max)


def surgical_time_adjustment(
    profile: OutlierProfile | None, base_minutes: int, is_bad_day: bool, rng: random.Random
) -> int:
    """
    @brief
    Applies extended-phase or fast-case adjustment to a surgical time.

    @details
    The two kinds are mutually exclusive per case. Extended phases are
    checked first; when they fire the fast-case kind is not evaluated at all
    (no random draw is consumed for it).

    @returns
        Adjusted surgical minutes, never below 1.
    """
    if profile is None:
        return base_minutes

    # (1) Extended phases: configured range is percent over base
    extended = profile.extended_phases
    if _fires(extended, is_bad_day, rng):
        pct = rng.randint(extended.range_min, extended.range_max) / 100
        return round(base_minutes * (1 + pct))

    # (2) Fast cases: configured range is percent under base
    fast = profile.fast_cases
    if _fires(fast, is_bad_day, rng):
        pct = rng.randint(fast.range_min, fast.range_max) / 100
        return max(1, round(base_minutes * (1 - pct)))

    return base_minutes


def callback_delay(profile: OutlierProfile | None, is_bad_day: bool, rng: random.Random) -> int:
    if profile is None or not _fires(profile.callback_delays, is_bad_day, rng):
        return 0
    return rng.randint(profile.callback_delays.range_min, profile.callback_delays.range_max)


def has_any_outlier_enabled(profile: OutlierProfile | None) -> bool:
    if profile is None:
        return False
    return any(s.enabled for s in profile.settings().values())


__all__ = [
    "callback_delay",
    "cascade_delay",
    "has_any_outlier_enabled",
    "late_start_delay",
    "schedule_bad_days",
    "should_fire",
    "surgical_time_adjustment",
    "turnover_adjustment",
]
