"""
Reporting days and comparison windows.

All "today" computations go through ``reference_today`` so every
component agrees on the reporting day near midnight.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from src.analytics.exceptions import InvalidPeriodError
from src.config import get_settings

# Rolling windows with fixed lengths
NAMED_PERIODS = {"week": 7, "month": 30}


def reference_today(tz_name: Optional[str] = None) -> date:
    """Current date in the reporting timezone"""
    tz = ZoneInfo(tz_name or get_settings().analytics.reference_timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True)
class Window:
    """A baseline/target date pair"""
    period: str
    days: int
    start: date
    end: date


def resolve_days(period: Union[int, str, None], allowed: Sequence[int], default: int) -> int:
    """
    Map a period parameter to a number of days.

    Accepts an allowed day count (as int or digit string) or one of the
    named rolling periods. Anything else raises InvalidPeriodError.
    """
    if period is None or period == "":
        return default

    if isinstance(period, str):
        key = period.strip().lower()
        if key in NAMED_PERIODS:
            return NAMED_PERIODS[key]
        if not key.isdigit():
            raise InvalidPeriodError(f"Unknown period '{period}'")
        period = int(key)

    if period not in allowed:
        raise InvalidPeriodError(
            f"Period must be one of {sorted(allowed)} or {sorted(NAMED_PERIODS)}, got {period}"
        )
    return period


def resolve_window(
    period: Union[int, str, None],
    end: date,
    allowed: Sequence[int],
    default: int,
) -> Window:
    """
    Resolve a period parameter into the window ending on ``end``.

    Examples:
        resolve_window("3", date(2024, 5, 10), [1, 3], 3).start -> date(2024, 5, 7)
        resolve_window("month_start", date(2024, 5, 10), [1, 3], 3).start -> date(2024, 5, 1)
    """
    key = period.strip().lower() if isinstance(period, str) else period

    if key == "week_start":
        # on a Monday the window reaches back to the previous Monday
        start = end - timedelta(days=end.weekday() or 7)
        return Window(period="week_start", days=(end - start).days, start=start, end=end)
    if key == "month_start":
        # on the 1st the window reaches back to the 1st of the previous month
        start = end.replace(day=1)
        if start == end:
            start = (end - timedelta(days=1)).replace(day=1)
        return Window(period="month_start", days=(end - start).days, start=start, end=end)

    days = resolve_days(period, allowed, default)
    label = key if key in NAMED_PERIODS else f"{days}day"
    return Window(period=label, days=days, start=end - timedelta(days=days), end=end)


def date_range(start: date, end: date) -> Iterator[date]:
    """Dates from ``start`` to ``end`` inclusive"""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
