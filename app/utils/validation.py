import re
from datetime import date
from typing import Any, Dict, List

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def validate_time_format(value: Any) -> bool:
    """Validate wall-clock time format (HH:MM or HH:MM:SS)."""
    return isinstance(value, str) and bool(TIME_PATTERN.match(value))


def validate_iso_date(value: Any) -> bool:
    """Validate ISO calendar date format (YYYY-MM-DD)."""
    if not isinstance(value, str):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def validate_day_list(days: Any, field: str) -> List[str]:
    """Validate a list of day-of-week numbers (0 = Sunday .. 6 = Saturday)."""
    if days is None:
        return []
    if not isinstance(days, list):
        return [f"{field} must be a list of day numbers"]
    errors = []
    for day in days:
        if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
            errors.append(f"{field} contains invalid day {day!r}; expected 0-6")
    return errors


def validate_date_list(dates: Any, field: str) -> List[str]:
    if dates is None:
        return []
    if not isinstance(dates, list):
        return [f"{field} must be a list of ISO dates"]
    return [
        f"{field} contains invalid date {value!r}"
        for value in dates
        if not validate_iso_date(value)
    ]


def validate_business_hours(hours: Dict[str, Any]) -> List[str]:
    """Validate the per-weekday business hours map."""
    errors = []

    if not hours:
        return errors

    if not isinstance(hours, dict):
        return ["business_hours must be a mapping of day number to hours"]

    for key, entry in hours.items():
        if str(key) not in {"0", "1", "2", "3", "4", "5", "6"}:
            errors.append(f"business_hours key {key!r} must be a day number 0-6")
            continue
        if not isinstance(entry, dict):
            errors.append(f"business_hours[{key}] must be an object")
            continue

        # Closed days need no times
        if entry.get("isOpen") is False:
            continue

        open_time = entry.get("openTime")
        close_time = entry.get("closeTime")
        if not validate_time_format(open_time):
            errors.append(f"business_hours[{key}].openTime must be HH:MM")
        if not validate_time_format(close_time):
            errors.append(f"business_hours[{key}].closeTime must be HH:MM")
        if (
            validate_time_format(open_time)
            and validate_time_format(close_time)
            and open_time >= close_time
        ):
            errors.append(f"business_hours[{key}] must open before it closes")

    return errors


def validate_store_schedule(store: Any) -> List[str]:
    """Validate all schedule JSON columns of a store."""
    errors = []
    errors.extend(validate_business_hours(store.business_hours))
    errors.extend(validate_day_list(store.regular_holidays, "regular_holidays"))
    errors.extend(validate_date_list(store.temporary_holidays, "temporary_holidays"))
    errors.extend(validate_date_list(store.temporary_open_days, "temporary_open_days"))

    if store.slot_duration_minutes is not None and store.slot_duration_minutes <= 0:
        errors.append("slot_duration_minutes must be a positive integer")
    if store.min_lead_time_minutes is not None and store.min_lead_time_minutes < 0:
        errors.append("min_lead_time_minutes must be a non-negative integer")

    return errors
