"""
Time calculations for scheduling.

All helpers are pure and operate on whatever timezone the caller supplied:
naive datetimes stay naive, aware datetimes keep their tzinfo. Invalid
numeric input (NaN, inf) is not clamped; timedelta raises on it.
"""

from datetime import datetime, time, timedelta

from .errors import InvalidIntervalError
from .models import TimeInterval


def add_minutes(moment: datetime, minutes: float) -> datetime:
    return moment + timedelta(minutes=minutes)


def add_days(moment: datetime, days: float) -> datetime:
    return moment + timedelta(days=days)


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)


def start_of_week(moment: datetime) -> datetime:
    """Midnight of the Sunday on or before ``moment``"""
    # weekday(): Monday=0 ... Sunday=6
    days_since_sunday = (moment.weekday() + 1) % 7
    return start_of_day(moment) - timedelta(days=days_since_sunday)


def week_range(moment: datetime) -> TimeInterval:
    """Sunday-to-Sunday half-open week containing ``moment``"""
    start = start_of_week(moment)
    return TimeInterval(start=start, end=start + timedelta(days=7))


def days_between(a: datetime, b: datetime) -> int:
    """Calendar days from ``a`` to ``b`` (negative when ``b`` is earlier)"""
    return (b.date() - a.date()).days


def ensure_valid_interval(interval: TimeInterval) -> TimeInterval:
    if not interval.is_valid:
        raise InvalidIntervalError(
            f"Interval must end after it starts (start={interval.start.isoformat()}, "
            f"end={interval.end.isoformat()})"
        )
    return interval


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.overlaps(b)


def covering_window(interval: TimeInterval) -> TimeInterval:
    """Whole-day window around an interval, used when querying the backend"""
    try:
        end = start_of_day(interval.end) + timedelta(days=1)
    except OverflowError:
        end = datetime.max.replace(tzinfo=interval.end.tzinfo)
    return TimeInterval(start=start_of_day(interval.start), end=end)


def widen_to_full_days(interval: TimeInterval) -> TimeInterval:
    """Stretch an all-day block so it covers every day it touches"""
    end_day = start_of_day(interval.end)
    if interval.end > end_day or interval.end == interval.start:
        end_day += timedelta(days=1)
    return TimeInterval(start=start_of_day(interval.start), end=end_day)


def align_timezone(moment: datetime, reference: datetime) -> datetime:
    """Express ``moment`` in the same naive / aware style as ``reference``"""
    if reference.tzinfo is None:
        if moment.tzinfo is None:
            return moment
        # Aware values are read as local wall-clock time
        return moment.astimezone().replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=reference.tzinfo)
    return moment


def align_interval(interval: TimeInterval, reference: datetime) -> TimeInterval:
    return TimeInterval(
        start=align_timezone(interval.start, reference),
        end=align_timezone(interval.end, reference),
    )
