"""
Period selection for the order fetch.

Turns a named period into the `filter[created_between]` value KeyCRM
expects. Periods are computed in the reporting timezone (Europe/Kyiv)
and converted to UTC for the API.
"""
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from upsales.exceptions import ValidationError

API_FORMAT = "%Y-%m-%d %H:%M:%S"

PERIODS = (
    "last_month",
    "this_month",
    "this_month_to_yesterday",
    "last_30_days",
    "custom",
    "all",
)

DEFAULT_PERIOD = "this_month_to_yesterday"

_END_OF_DAY = time(23, 59, 59)


@dataclass(frozen=True)
class DateRange:
    """A created_at window; both ends are timezone-aware and inclusive."""
    start: datetime
    end: datetime

    def start_str(self, convert_to_utc: bool = True) -> str:
        return _format_for_api(self.start, convert_to_utc)

    def end_str(self, convert_to_utc: bool = True) -> str:
        return _format_for_api(self.end, convert_to_utc)

    def as_filter(self, convert_to_utc: bool = True) -> str:
        """Value for filter[created_between]: 'start, end'."""
        return f"{self.start_str(convert_to_utc)}, {self.end_str(convert_to_utc)}"


def _format_for_api(value: datetime, convert_to_utc: bool) -> str:
    if convert_to_utc:
        value = value.astimezone(ZoneInfo("UTC"))
    return value.strftime(API_FORMAT)


def parse_local_datetime(value: str, tz: tzinfo, field: str = "date") -> datetime:
    """
    Parse 'YYYY-MM-DD HH:MM:SS' (or 'YYYY-MM-DD') as local time in tz.

    Raises:
        ValidationError: If the value is empty or malformed
    """
    if not value:
        raise ValidationError(field, "Date is required", value)
    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    text = value.strip()
    for fmt in (API_FORMAT, "%Y-%m-%d %H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=tz)
        except ValueError:
            continue
    raise ValidationError(field, f"Invalid date format. Expected {API_FORMAT}", value)


def resolve_period(
    period: Optional[str] = None,
    custom_start: Optional[str] = None,
    custom_end: Optional[str] = None,
    tz: Optional[tzinfo] = None,
    now: Optional[datetime] = None,
) -> Optional[DateRange]:
    """
    Resolve a named period into a DateRange.

    Args:
        period: One of PERIODS (default: this_month_to_yesterday)
        custom_start: Local start for the 'custom' period
        custom_end: Local end for the 'custom' period
        tz: Reporting timezone (default: Europe/Kyiv)
        now: Reference time (default: current time in tz)

    Returns:
        DateRange, or None for 'all' (no filter)

    Raises:
        ValidationError: Unknown period, bad custom dates, or start after end
    """
    tz = tz or ZoneInfo("Europe/Kyiv")
    period = period or DEFAULT_PERIOD
    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)
    first_of_month = datetime.combine(now.date().replace(day=1), time.min, tzinfo=tz)

    if period == "all":
        return None

    if period == "last_month":
        last_of_prev = first_of_month.date() - timedelta(days=1)
        start = datetime.combine(last_of_prev.replace(day=1), time.min, tzinfo=tz)
        end = datetime.combine(last_of_prev, _END_OF_DAY, tzinfo=tz)

    elif period == "this_month":
        start, end = first_of_month, now

    elif period == "this_month_to_yesterday":
        # On the 1st this covers the whole previous month
        yesterday = now.date() - timedelta(days=1)
        start = datetime.combine(yesterday.replace(day=1), time.min, tzinfo=tz)
        end = datetime.combine(yesterday, _END_OF_DAY, tzinfo=tz)

    elif period == "last_30_days":
        start = datetime.combine(now.date() - timedelta(days=30), time.min, tzinfo=tz)
        end = now

    elif period == "custom":
        start = parse_local_datetime(custom_start, tz, "custom_start")
        end = parse_local_datetime(custom_end, tz, "custom_end")

    else:
        raise ValidationError("period", f"Unknown period. Expected one of: {', '.join(PERIODS)}", period)

    if start > end:
        raise ValidationError("period", "Start is after end", f"{start} > {end}")

    return DateRange(start, end)
