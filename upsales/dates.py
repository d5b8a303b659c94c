"""
Order date handling: calendar month resolution and display formatting.

Order dates arrive as ISO 8601 strings ("2025-11-03T10:15:00Z"),
KeyCRM timestamps ("2025-11-03 10:15:00") or already formatted display
strings ("03.11.2025 10:15"). Timezone-aware values are converted to the
reporting timezone before their calendar fields are read; naive values are
taken as local time.
"""
import re
from datetime import date, datetime, tzinfo
from typing import Optional, Tuple, Union

DateLike = Union[str, datetime, date, None]

DISPLAY_FORMAT = "%d.%m.%Y %H:%M"

_GENERIC_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
)

_DISPLAY_DATE = re.compile(r"^\s*(\d{1,2})\.(\d{1,2})\.(\d{4})(?:\s+\d{1,2}:\d{2}(?::\d{2})?)?\s*$")


def _localize(value: datetime, tz: Optional[tzinfo]) -> datetime:
    if tz is not None and value.tzinfo is not None:
        return value.astimezone(tz)
    return value


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_generic(value: str) -> Optional[datetime]:
    text = value.strip()
    for fmt in _GENERIC_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return _parse_iso(text)


def parse_datetime(value: DateLike, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse an order date into a datetime in the reporting timezone.

    Returns None when the value cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _localize(value, tz)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    if "T" in value:
        parsed = _parse_iso(value)
    else:
        match = _DISPLAY_DATE.match(value)
        if match:
            day, month, year = (int(part) for part in match.groups())
            try:
                parsed = datetime.strptime(" ".join(value.split()[:2]), DISPLAY_FORMAT)
            except ValueError:
                try:
                    parsed = datetime(year, month, day)
                except ValueError:
                    return None
        else:
            parsed = _parse_generic(value)

    if parsed is None:
        return None
    return _localize(parsed, tz)


def resolve_month_year(value: DateLike, tz: Optional[tzinfo] = None) -> Optional[Tuple[int, int]]:
    """
    Resolve the calendar (month, year) an order belongs to.

    Precedence: ISO 8601 string, then "dd.mm.yyyy[ hh:mm]", then generic
    parsing. The display form is read numerically, so "31.11.2025" still
    lands in November 2025. Returns None when no valid month/year exists.
    """
    if isinstance(value, str) and "T" not in value:
        match = _DISPLAY_DATE.match(value)
        if match:
            _, month, year = (int(part) for part in match.groups())
            if 1 <= month <= 12 and year > 0:
                return month, year
            return None

    parsed = parse_datetime(value, tz)
    if parsed is None:
        return None
    return parsed.month, parsed.year


def format_display_date(value: DateLike, tz: Optional[tzinfo] = None) -> str:
    """Format an order date as 'dd.mm.yyyy HH:MM'; raw text if unparseable."""
    if value is None or value == "":
        return ""
    if isinstance(value, str) and _DISPLAY_DATE.match(value):
        return value.strip()
    parsed = parse_datetime(value, tz)
    if parsed is None:
        return str(value)
    return parsed.strftime(DISPLAY_FORMAT)


def month_key(month: int, year: int) -> str:
    """Month label used in sheet names, month unpadded: '3.2025'."""
    return f"{month}.{year}"
