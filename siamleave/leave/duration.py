"""Date/time arithmetic for leave durations.

Pure functions converting between ``HH:MM`` clock strings, decimal hours,
inclusive day counts and day/hour splits. Nothing here touches the database.

Working-day length and business-hour defaults come from settings but every
function accepts them explicitly so callers (and tests) can pin them.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, time, tzinfo
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional, Union

from siamleave.common.exceptions import ValidationException
from siamleave.config import settings

_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])$")

MINUTES_PER_DAY = 24 * 60

Number = Union[int, float, Decimal]


class DayHourSplit(NamedTuple):
    days: int
    hours: int


# ── Clock strings ───────────────────────────────────────────────────


def to_minutes(hour: int, minute: int = 0) -> int:
    """Total minutes since midnight."""
    return hour * 60 + (minute or 0)


def is_valid_time_format(text: Optional[str]) -> bool:
    """True for ``HH:MM`` with HH in 00–23 and MM in 00–59."""
    return bool(text) and _TIME_RE.match(text) is not None


def _parse(text: Optional[str], field: str) -> tuple[int, int]:
    match = _TIME_RE.match(text or "")
    if match is None:
        raise ValidationException({field: [f"'{text}' is not a valid HH:MM time."]})
    return int(match.group(1)), int(match.group(2))


def time_to_decimal_hours(text: Optional[str]) -> float:
    """``"09:30"`` → ``9.5``. Malformed input yields ``0``."""
    if not is_valid_time_format(text):
        return 0.0
    hours, minutes = _parse(text, "time")
    return hours + minutes / 60


def time_range_to_decimal(
    start_hour: int,
    start_minute: int = 0,
    end_hour: int = 0,
    end_minute: int = 0,
) -> tuple[float, float]:
    """Convert two clock readings to ``(start, end)`` decimal hours."""
    return (
        start_hour + (start_minute or 0) / 60,
        end_hour + (end_minute or 0) / 60,
    )


def duration_hours(start: str, end: str, *, overnight: bool = False) -> float:
    """Hours between two ``HH:MM`` strings.

    An ``end`` earlier than ``start`` gives a negative result unless
    ``overnight`` is set, in which case the range wraps past midnight.
    Raises ``ValidationException`` for malformed input.
    """
    start_minutes = to_minutes(*_parse(start, "start_time"))
    end_minutes = to_minutes(*_parse(end, "end_time"))
    delta = end_minutes - start_minutes
    if overnight and delta < 0:
        delta += MINUTES_PER_DAY
    return delta / 60


def is_within_business_hours(
    text: Optional[str],
    start_hour: Optional[int] = None,
    end_hour: Optional[int] = None,
) -> bool:
    """Whether ``text`` falls inside ``[start_hour:00, end_hour:00]`` (inclusive)."""
    if not is_valid_time_format(text):
        return False
    if start_hour is None:
        start_hour = settings.WORKING_START_HOUR
    if end_hour is None:
        end_hour = settings.WORKING_END_HOUR
    minutes = to_minutes(*_parse(text, "time"))
    return to_minutes(start_hour) <= minutes <= to_minutes(end_hour)


# ── Calendar days ───────────────────────────────────────────────────


def _local_date(value: Union[date, datetime], tz: tzinfo) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    return value


def days_between(
    start: Union[date, datetime],
    end: Union[date, datetime],
    tz: Optional[tzinfo] = None,
) -> int:
    """Inclusive number of calendar days from ``start`` to ``end``.

    Aware datetimes are first moved into the business time zone so that a
    late-evening UTC timestamp lands on the right local day. Naive values
    are taken as already local. The same day counts as 1.
    """
    tz = tz or settings.business_tz
    start_day = _local_date(start, tz)
    end_day = _local_date(end, tz)
    return (end_day - start_day).days + 1


def end_of_day(value: date, tz: Optional[tzinfo] = None) -> datetime:
    return datetime.combine(value, time.max, tzinfo=tz or settings.business_tz)


def end_of_month(year: int, month: int, tz: Optional[tzinfo] = None) -> datetime:
    last = calendar.monthrange(year, month)[1]
    return end_of_day(date(year, month, last), tz)


def end_of_year(year: int, tz: Optional[tzinfo] = None) -> datetime:
    return end_of_day(date(year, 12, 31), tz)


def start_of_year(year: int, tz: Optional[tzinfo] = None) -> datetime:
    return datetime.combine(date(year, 1, 1), time.min, tzinfo=tz or settings.business_tz)


# ── Day / hour split ────────────────────────────────────────────────


def to_day_hour_split(
    total: Number,
    working_hours_per_day: Optional[int] = None,
) -> DayHourSplit:
    """Split a fractional day count into whole days and working hours.

    ``3.5`` with an 8-hour day → ``DayHourSplit(3, 4)``. Hours are rounded
    half-up; a fraction that rounds to a full working day carries over.
    """
    per_day = working_hours_per_day or settings.WORKING_HOURS_PER_DAY
    value = Decimal(str(total))
    days = int(value.to_integral_value(rounding=ROUND_FLOOR))
    hours = int(
        ((value - days) * per_day).to_integral_value(rounding=ROUND_HALF_UP)
    )
    if hours >= per_day:
        days += 1
        hours -= per_day
    return DayHourSplit(days, hours)


def to_total_days(
    days: Number,
    hours: Number,
    working_hours_per_day: Optional[int] = None,
) -> Decimal:
    """``days + hours / working_hours_per_day`` as an unrounded Decimal."""
    per_day = working_hours_per_day or settings.WORKING_HOURS_PER_DAY
    return Decimal(str(days or 0)) + Decimal(str(hours or 0)) / Decimal(per_day)
