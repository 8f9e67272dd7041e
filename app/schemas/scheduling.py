from datetime import date, time
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.utils.time import parse_hhmm
from app.utils.validation import validate_store_schedule


class DayHours(BaseModel):
    """One weekday entry of a store's business hours."""

    model_config = ConfigDict(populate_by_name=True)

    is_open: bool = Field(True, alias="isOpen")
    open_time: Optional[time] = Field(None, alias="openTime")
    close_time: Optional[time] = Field(None, alias="closeTime")


class StoreConfig(BaseModel):
    """Immutable snapshot of a store's schedule and booking policy."""

    model_config = ConfigDict(frozen=True)

    store_id: Optional[int] = None
    timezone: str = settings.DEFAULT_TIMEZONE
    business_hours: Dict[int, DayHours] = Field(default_factory=dict)
    regular_holidays: Set[int] = Field(default_factory=set)
    temporary_holidays: Set[date] = Field(default_factory=set)
    temporary_open_days: Set[date] = Field(default_factory=set)
    holiday_country: Optional[str] = None
    slot_duration_minutes: int = Field(settings.DEFAULT_SLOT_DURATION_MINUTES, gt=0)
    advance_booking_days: int = settings.DEFAULT_ADVANCE_BOOKING_DAYS
    cancel_deadline_hours: int = settings.DEFAULT_CANCEL_DEADLINE_HOURS
    min_lead_time_minutes: int = Field(0, ge=0)

    @classmethod
    def from_store(cls, store) -> "StoreConfig":
        errors = validate_store_schedule(store)
        if errors:
            raise ValidationError(
                "Store schedule configuration is invalid",
                details={"store_id": store.id, "errors": errors},
            )

        return cls(
            store_id=store.id,
            timezone=store.timezone or settings.DEFAULT_TIMEZONE,
            business_hours={
                int(day): DayHours.model_validate(entry)
                for day, entry in (store.business_hours or {}).items()
            },
            regular_holidays=set(store.regular_holidays or []),
            temporary_holidays={
                date.fromisoformat(d) for d in store.temporary_holidays or []
            },
            temporary_open_days={
                date.fromisoformat(d) for d in store.temporary_open_days or []
            },
            holiday_country=store.holiday_country,
            slot_duration_minutes=store.slot_duration_minutes,
            advance_booking_days=store.advance_booking_days,
            cancel_deadline_hours=store.cancel_deadline_hours,
            min_lead_time_minutes=store.min_lead_time_minutes or 0,
        )

    @property
    def default_window(self) -> tuple[time, time]:
        return (
            parse_hhmm(settings.DEFAULT_OPEN_TIME),
            parse_hhmm(settings.DEFAULT_CLOSE_TIME),
        )


class StaffSchedule(BaseModel):
    """Read-only view of a staff member's weekly pattern."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str = ""
    working_days: Set[int] = Field(default_factory=set)
    work_start: time
    work_end: time
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    calendar_id: Optional[str] = None


class DayWindow(BaseModel):
    """Resolved opening window for one civil date."""

    is_open: bool
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    is_holiday: bool = False

    @classmethod
    def closed(cls, is_holiday: bool = False) -> "DayWindow":
        return cls(is_open=False, is_holiday=is_holiday)


class BookedInterval(BaseModel):
    staff_id: int
    start_time: time
    end_time: time


class TimeSlot(BaseModel):
    time: str
    available: bool
    staff_ids: List[int] = Field(default_factory=list)


class DaySlots(BaseModel):
    date: date
    day_of_week: int
    is_holiday: bool = False
    slots: List[TimeSlot] = Field(default_factory=list)


class WeekSlots(BaseModel):
    week_start: date
    week_end: date
    days: List[DaySlots] = Field(default_factory=list)
