"""Calendar-day helpers.

Reminder milestones and "today" counters work on whole calendar days in the
business timezone, not on elapsed hours. Datetimes are stored as aware UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@lru_cache(maxsize=16)
def get_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        ValueError: If the timezone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: '{name}'") from e


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(value: datetime, tz_name: str) -> date:
    """Calendar date of a moment in the business timezone."""
    return ensure_utc(value).astimezone(get_timezone(tz_name)).date()


def days_until_expiry(expires_at: datetime, now: datetime, tz_name: str) -> int:
    """Whole calendar days between now and expiry.

    Both sides are truncated to midnight before subtracting, so an expiry
    later today is 0 and an expiry tomorrow at 00:01 is 1.

    Examples:
        >>> days_until_expiry(datetime(2026, 10, 21, 23, 0), datetime(2026, 10, 18, 1, 0), "UTC")
        3
        >>> days_until_expiry(datetime(2026, 10, 21, 0, 30), datetime(2026, 10, 18, 23, 30), "UTC")
        3
    """
    return (local_date(expires_at, tz_name) - local_date(now, tz_name)).days


def start_of_day(value: datetime, tz_name: str) -> datetime:
    """Local midnight of the day containing value, as aware UTC."""
    tz = get_timezone(tz_name)
    midnight = datetime.combine(local_date(value, tz_name), time.min, tzinfo=tz)
    return midnight.astimezone(timezone.utc)


def day_bounds(value: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """[start, end) of the local day containing value, as aware UTC."""
    tz = get_timezone(tz_name)
    day = local_date(value, tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def is_same_local_day(a: datetime, b: datetime, tz_name: str) -> bool:
    return local_date(a, tz_name) == local_date(b, tz_name)


def format_date(value: datetime, tz_name: str) -> str:
    """Format as dd/mm/yyyy in the business timezone."""
    return local_date(value, tz_name).strftime("%d/%m/%Y")
