"""
Time bucketing helpers for chart queries.

Every chart that groups by time goes through three expressions built here:
the truncation applied to the time column, the ``WITH FILL ... TO`` ceiling and
the ``STEP`` that advances the fill by exactly one bucket.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union


class ClickHouseInterval(str, Enum):
    MINUTE = "toStartOfMinute"
    FIVE_MINUTES = "toStartOfFiveMinutes"
    TEN_MINUTES = "toStartOfTenMinutes"
    FIFTEEN_MINUTES = "toStartOfFifteenMinutes"
    HOUR = "toStartOfHour"
    DAY = "toStartOfDay"
    WEEK = "toStartOfWeek"
    MONTH = "toStartOfMonth"


_DAY_OR_COARSER = frozenset({ClickHouseInterval.DAY, ClickHouseInterval.WEEK, ClickHouseInterval.MONTH})

_FILL_STEPS = {
    ClickHouseInterval.MINUTE: "toIntervalMinute(1)",
    ClickHouseInterval.FIVE_MINUTES: "toIntervalMinute(5)",
    ClickHouseInterval.TEN_MINUTES: "toIntervalMinute(10)",
    ClickHouseInterval.FIFTEEN_MINUTES: "toIntervalMinute(15)",
    ClickHouseInterval.HOUR: "toIntervalHour(1)",
    ClickHouseInterval.DAY: "toIntervalDay(1)",
    ClickHouseInterval.WEEK: "toIntervalDay(7)",
    ClickHouseInterval.MONTH: "toIntervalMonth(1)",
}

_SUB_DAY_MINUTES = {
    ClickHouseInterval.MINUTE: 1,
    ClickHouseInterval.FIVE_MINUTES: 5,
    ClickHouseInterval.TEN_MINUTES: 10,
    ClickHouseInterval.FIFTEEN_MINUTES: 15,
    ClickHouseInterval.HOUR: 60,
}

IntervalLike = Union[ClickHouseInterval, str]


def to_interval(value: IntervalLike) -> ClickHouseInterval:
    """Coerce a granularity name; anything outside the enum raises ValueError."""
    if isinstance(value, ClickHouseInterval):
        return value
    try:
        return ClickHouseInterval(value)
    except ValueError:
        raise ValueError(f"Unsupported interval: {value!r}") from None


def is_sub_day(granularity: IntervalLike) -> bool:
    return to_interval(granularity) not in _DAY_OR_COARSER


def apply_interval(granularity: IntervalLike, column: str, alias: Optional[str] = None) -> str:
    """Wrap ``column`` in the truncation function for ``granularity``.

    Day-or-coarser buckets are additionally cast with ``toDate`` so the bucket
    key carries no time-of-day component.

    Example:
        >>> apply_interval("toStartOfHour", "event_time")
        'toStartOfHour(event_time) AS event_time'
        >>> apply_interval("toStartOfDay", "event_time", "day")
        'toDate(toStartOfDay(event_time)) AS day'
    """
    interval = to_interval(granularity)
    name = alias or column
    if interval in _DAY_OR_COARSER:
        return f"toDate({interval.value}({column})) AS {name}"
    return f"{interval.value}({column}) AS {name}"


def fill_step(granularity: IntervalLike) -> str:
    return _FILL_STEPS[to_interval(granularity)]


def now_or_today(granularity: IntervalLike) -> str:
    # Sub-day fills stop at now(); a day-truncated bound keeps day buckets aligned
    return "now()" if is_sub_day(granularity) else "today()"


def build_time_filter(last_hours: Optional[int], column: str = "event_time") -> str:
    """``column >= (now() - INTERVAL n HOUR)``, or "" when no window is requested."""
    if not last_hours:
        return ""
    return f"{column} >= (now() - INTERVAL {int(last_hours)} HOUR)"


def bucket(granularity: IntervalLike, value: datetime) -> Union[datetime, date]:
    """Python-side truncation matching ``apply_interval`` for the same granularity.

    Sub-day granularities return a ``datetime``; day, week (Sunday start, ClickHouse
    mode 0) and month return a ``date``. Applying it twice yields the same bucket.
    """
    interval = to_interval(granularity)
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime(value.year, value.month, value.day)
    if interval in _SUB_DAY_MINUTES:
        minutes = _SUB_DAY_MINUTES[interval]
        base = moment.replace(second=0, microsecond=0)
        return base - timedelta(minutes=(base.hour * 60 + base.minute) % minutes)
    day = moment.date()
    if interval is ClickHouseInterval.DAY:
        return day
    if interval is ClickHouseInterval.WEEK:
        # Python weekday(): Monday=0 .. Sunday=6
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return day.replace(day=1)
