"""
Schedule resolution: store hours, holidays and staff working patterns.

Everything here is pure. Callers pass the store snapshot and the current
instant explicitly; nothing reads the wall clock.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional

from app.schemas.scheduling import DayWindow, StaffSchedule, StoreConfig
from app.services.conflicts import intervals_overlap
from app.services.holidays import HolidayService
from app.utils.time import local_today, weekday_sunday_first


def is_store_holiday(config: StoreConfig, day: date) -> bool:
    """True when the store is closed for the date by any holiday rule."""
    if day in config.temporary_holidays:
        return True
    if weekday_sunday_first(day) in config.regular_holidays:
        return True
    return HolidayService.is_holiday(config.holiday_country, day)


def booking_limit_date(config: StoreConfig, now: datetime) -> Optional[date]:
    """Last bookable civil date, or None when the advance window is disabled."""
    if config.advance_booking_days <= 0:
        return None
    return local_today(now, config.timezone) + timedelta(days=config.advance_booking_days)


def _weekday_hours(config: StoreConfig, day_of_week: int) -> DayWindow:
    entry = config.business_hours.get(day_of_week)
    default_open, default_close = config.default_window

    if entry is None:
        return DayWindow(is_open=True, open_time=default_open, close_time=default_close)
    if not entry.is_open:
        return DayWindow.closed()
    return DayWindow(
        is_open=True,
        open_time=entry.open_time or default_open,
        close_time=entry.close_time or default_close,
    )


def resolve_day_window(
    config: StoreConfig, day: date, now: Optional[datetime] = None
) -> DayWindow:
    """Resolve the store's opening window for a civil date.

    Temporary open days win over every holiday rule and use the weekday's
    configured hours (the default window when that weekday is unconfigured
    or marked closed). When `now` is given, dates before today or beyond
    the advance-booking window are reported closed.
    """
    if now is not None:
        if day < local_today(now, config.timezone):
            return DayWindow.closed()
        limit = booking_limit_date(config, now)
        if limit is not None and day > limit:
            return DayWindow.closed()

    day_of_week = weekday_sunday_first(day)

    if day in config.temporary_open_days:
        window = _weekday_hours(config, day_of_week)
        if window.is_open:
            return window
        default_open, default_close = config.default_window
        return DayWindow(is_open=True, open_time=default_open, close_time=default_close)

    if is_store_holiday(config, day):
        return DayWindow.closed(is_holiday=True)

    return _weekday_hours(config, day_of_week)


def staff_works_on(staff: StaffSchedule, day: date) -> bool:
    return weekday_sunday_first(day) in staff.working_days


def within_work_hours(staff: StaffSchedule, start: time, end: time) -> bool:
    return staff.work_start <= start and end <= staff.work_end


def overlaps_break(staff: StaffSchedule, start: time, end: time) -> bool:
    """Strict overlap with the break window; touching boundaries are fine."""
    if staff.break_start is None or staff.break_end is None:
        return False
    return intervals_overlap(start, end, staff.break_start, staff.break_end)
