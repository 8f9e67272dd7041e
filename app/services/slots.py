from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.schemas.scheduling import (
    BookedInterval,
    DaySlots,
    DayWindow,
    StaffSchedule,
    StoreConfig,
    TimeSlot,
    WeekSlots,
)
from app.services.conflicts import ConflictChecker, has_conflict
from app.services.schedule import (
    overlaps_break,
    resolve_day_window,
    staff_works_on,
    within_work_hours,
)
from app.services.stores import get_staff, get_store, list_active_staff
from app.utils.time import (
    as_utc,
    date_range,
    format_hhmm,
    minutes_of,
    time_from_minutes,
    to_instant,
    weekday_sunday_first,
)

logger = structlog.get_logger(__name__)

MINUTES_PER_DAY = 24 * 60


def staff_available(
    staff: StaffSchedule,
    day: date,
    start_minutes: int,
    duration_minutes: int,
    booked: List[BookedInterval],
) -> bool:
    """Whether the staff member can take [start, start + duration) on the date."""
    end_minutes = start_minutes + duration_minutes
    if end_minutes >= MINUTES_PER_DAY:
        return False
    if not staff_works_on(staff, day):
        return False

    start = time_from_minutes(start_minutes)
    end = time_from_minutes(end_minutes)
    if not within_work_hours(staff, start, end):
        return False
    if overlaps_break(staff, start, end):
        return False
    return not has_conflict(booked, start, end)


def earliest_bookable(config: StoreConfig, now: datetime) -> datetime:
    return now + timedelta(minutes=config.min_lead_time_minutes)


def generate_day_slots(
    config: StoreConfig,
    day: date,
    window: DayWindow,
    staff_members: List[StaffSchedule],
    booked: Dict[int, List[BookedInterval]],
    duration_minutes: int,
    now: datetime,
) -> DaySlots:
    """Build the slot grid for one date.

    Grid points run from opening time in slot-size steps and must start
    before closing. Points at or before `now` (or inside the minimum lead
    time) are left out.
    """
    day_slots = DaySlots(
        date=day, day_of_week=weekday_sunday_first(day), is_holiday=window.is_holiday
    )
    if not window.is_open:
        return day_slots

    now = as_utc(now)
    cutoff = earliest_bookable(config, now)
    close = minutes_of(window.close_time)
    point = minutes_of(window.open_time)

    while point < close:
        start_instant = to_instant(day, time_from_minutes(point), config.timezone)
        too_early = (
            start_instant < cutoff
            if config.min_lead_time_minutes > 0
            else start_instant <= now
        )
        if not too_early:
            staff_ids = [
                staff.id
                for staff in staff_members
                if staff_available(
                    staff, day, point, duration_minutes, booked.get(staff.id, [])
                )
            ]
            day_slots.slots.append(
                TimeSlot(
                    time=format_hhmm(time_from_minutes(point)),
                    available=bool(staff_ids),
                    staff_ids=staff_ids,
                )
            )
        point += config.slot_duration_minutes

    return day_slots


class SlotService:
    """Availability read path: store config + staff + existing bookings."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conflicts = ConflictChecker(db)

    async def _load(self, tenant_id: int, store_id: Optional[int], staff_id: Optional[int]):
        store = await get_store(self.db, tenant_id, store_id)
        config = StoreConfig.from_store(store)

        if staff_id is not None:
            staff = await get_staff(self.db, tenant_id, staff_id)
            staff_members = [StaffSchedule.model_validate(staff)]
        else:
            staff_members = [
                StaffSchedule.model_validate(s)
                for s in await list_active_staff(self.db, tenant_id, store.id)
            ]
        return config, staff_members

    async def _day(
        self,
        tenant_id: int,
        config: StoreConfig,
        staff_members: List[StaffSchedule],
        day: date,
        duration_minutes: int,
        now: datetime,
    ) -> DaySlots:
        window = resolve_day_window(config, day, now)
        booked: Dict[int, List[BookedInterval]] = {}
        if window.is_open and staff_members:
            booked = await self.conflicts.booked_intervals(
                tenant_id, day, [s.id for s in staff_members]
            )
        return generate_day_slots(
            config, day, window, staff_members, booked, duration_minutes, now
        )

    async def get_day_slots(
        self,
        tenant_id: int,
        day: date,
        now: datetime,
        staff_id: Optional[int] = None,
        duration_minutes: Optional[int] = None,
        store_id: Optional[int] = None,
    ) -> DaySlots:
        duration = duration_minutes or settings.DEFAULT_SERVICE_DURATION_MINUTES
        config, staff_members = await self._load(tenant_id, store_id, staff_id)

        day_slots = await self._day(tenant_id, config, staff_members, day, duration, now)
        logger.debug(
            "Computed day slots",
            tenant_id=tenant_id,
            date=day.isoformat(),
            staff_count=len(staff_members),
            available=sum(1 for s in day_slots.slots if s.available),
        )
        return day_slots

    async def get_week_slots(
        self,
        tenant_id: int,
        start_date: date,
        now: datetime,
        staff_id: Optional[int] = None,
        duration_minutes: Optional[int] = None,
        store_id: Optional[int] = None,
    ) -> WeekSlots:
        duration = duration_minutes or settings.DEFAULT_SERVICE_DURATION_MINUTES
        config, staff_members = await self._load(tenant_id, store_id, staff_id)

        days = [
            await self._day(tenant_id, config, staff_members, day, duration, now)
            for day in date_range(start_date, 7)
        ]
        return WeekSlots(
            week_start=start_date, week_end=start_date + timedelta(days=6), days=days
        )
