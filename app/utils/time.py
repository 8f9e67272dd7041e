from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.exceptions import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=64)
def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {name}", details={"timezone": name})


def local_now(now: datetime, tz_name: str) -> datetime:
    """Wall-clock time in the store's timezone for the given instant."""
    return as_utc(now).astimezone(get_zone(tz_name))


def local_today(now: datetime, tz_name: str) -> date:
    return local_now(now, tz_name).date()


def to_instant(day: date, wall_time: time, tz_name: str) -> datetime:
    """Absolute UTC instant of a civil date + wall-clock time in a timezone."""
    local = datetime.combine(day, wall_time, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def weekday_sunday_first(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday.

    A civil date has the same weekday in every timezone, so no conversion is
    needed once the date itself was taken in the store's timezone.
    """
    return (day.weekday() + 1) % 7


def parse_hhmm(value: Union[str, time]) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time."""
    if isinstance(value, time):
        return value
    try:
        parts = [int(p) for p in str(value).split(":")]
    except ValueError:
        raise ValidationError(f"Invalid time format: {value!r}", details={"value": value})
    if len(parts) not in (2, 3):
        raise ValidationError(f"Invalid time format: {value!r}", details={"value": value})
    try:
        return time(*parts)
    except ValueError:
        raise ValidationError(f"Invalid time format: {value!r}", details={"value": value})


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(total: int) -> time:
    """Inverse of minutes_of. Raises when the result leaves the civil day."""
    if total < 0 or total >= 24 * 60:
        raise ValidationError(
            "Interval must stay within a single day", details={"minutes": total}
        )
    return time(total // 60, total % 60)


def add_minutes(value: time, minutes: int) -> time:
    return time_from_minutes(minutes_of(value) + minutes)


def date_range(start: date, days: int) -> list[date]:
    return [start + timedelta(days=offset) for offset in range(days)]
