"""
Store temporal policy: advance-booking window, lead time and cancel deadline.

All checks run against the store timezone and an explicit `now`.
"""

from datetime import date, datetime, time, timedelta

from app.core.exceptions import PolicyViolation
from app.schemas.scheduling import StoreConfig
from app.services.schedule import booking_limit_date
from app.utils.time import as_utc, format_hhmm, to_instant


def check_advance_booking(config: StoreConfig, day: date, now: datetime) -> None:
    limit = booking_limit_date(config, now)
    if limit is not None and day > limit:
        raise PolicyViolation(
            PolicyViolation.ADVANCE_BOOKING_EXCEEDED,
            f"Reservations are accepted up to {config.advance_booking_days} days ahead",
            details={
                "date": day.isoformat(),
                "limit_date": limit.isoformat(),
                "advance_booking_days": config.advance_booking_days,
            },
        )


def check_lead_time(config: StoreConfig, day: date, start: time, now: datetime) -> None:
    start_instant = to_instant(day, start, config.timezone)
    now = as_utc(now)

    if config.min_lead_time_minutes > 0:
        earliest = now + timedelta(minutes=config.min_lead_time_minutes)
        if start_instant < earliest:
            raise PolicyViolation(
                PolicyViolation.LEAD_TIME_NOT_MET,
                f"Reservations must be made at least "
                f"{config.min_lead_time_minutes} minutes in advance",
                details={
                    "date": day.isoformat(),
                    "start_time": format_hhmm(start),
                    "min_lead_time_minutes": config.min_lead_time_minutes,
                },
            )
    elif start_instant <= now:
        raise PolicyViolation(
            PolicyViolation.PAST_START_TIME,
            "The requested start time has already passed",
            details={"date": day.isoformat(), "start_time": format_hhmm(start)},
        )


def check_cancel_deadline(
    config: StoreConfig, day: date, start: time, now: datetime
) -> None:
    """Reject once the start is within cancel_deadline_hours of now.

    The exact boundary counts as too late.
    """
    if config.cancel_deadline_hours <= 0:
        return

    remaining = to_instant(day, start, config.timezone) - as_utc(now)
    if remaining <= timedelta(hours=config.cancel_deadline_hours):
        raise PolicyViolation(
            PolicyViolation.CANCEL_DEADLINE_PASSED,
            f"Cancellation is possible until {config.cancel_deadline_hours} hours "
            f"before the reservation",
            details={
                "date": day.isoformat(),
                "start_time": format_hhmm(start),
                "cancel_deadline_hours": config.cancel_deadline_hours,
            },
        )


def enforce_booking_policy(
    config: StoreConfig, day: date, start: time, now: datetime
) -> None:
    """Policy for a new slot: advance window first, then lead time."""
    check_advance_booking(config, day, now)
    check_lead_time(config, day, start, now)
