"""Reporting-timezone calendar math.

All "today" and "this month" boundaries are computed in a fixed UTC offset
(UTC+7 by default) so admins in different timezones see identical periods.
Timestamps are stored in UTC; the offset is only applied here, at read time.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone

from portal.config import get_settings
from portal.exceptions import ValidationError


def reporting_tz(offset_hours: int | None = None) -> timezone:
    if offset_hours is None:
        offset_hours = get_settings().reporting_utc_offset_hours
    return timezone(timedelta(hours=offset_hours))


def _aware(moment: datetime | None) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def day_bounds(moment: datetime | None = None, tz: timezone | None = None) -> tuple[datetime, datetime]:
    """Half-open [start, end) of the reporting day containing ``moment``, in UTC."""
    tz = tz or reporting_tz()
    local = _aware(moment).astimezone(tz)
    start = datetime.combine(local.date(), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)


def year_month(moment: datetime | None = None, tz: timezone | None = None) -> tuple[int, int]:
    local = _aware(moment).astimezone(tz or reporting_tz())
    return local.year, local.month


def month_bounds(year: int, month: int, tz: timezone | None = None) -> tuple[datetime, datetime]:
    """Half-open [start, end) of a reporting month, in UTC."""
    tz = tz or reporting_tz()
    start = datetime(year, month, 1, tzinfo=tz)
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    end = datetime(next_year, next_month, 1, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def next_day_start(moment: datetime | None = None, tz: timezone | None = None) -> datetime:
    return day_bounds(moment, tz)[1]


def next_month_start(moment: datetime | None = None, tz: timezone | None = None) -> datetime:
    tz = tz or reporting_tz()
    year, month = year_month(moment, tz)
    return month_bounds(year, month, tz)[1]


def parse_reporting_date(value: str, end_of_day: bool = False, tz: timezone | None = None) -> datetime:
    """Turn a 'YYYY-MM-DD' filter value into a UTC bound.

    Start dates map to local midnight; end dates to the following local
    midnight, to be used as an exclusive upper bound.
    """
    try:
        day = date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")
    tz = tz or reporting_tz()
    local = datetime.combine(day, time.min, tzinfo=tz)
    if end_of_day:
        local += timedelta(days=1)
    return local.astimezone(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
