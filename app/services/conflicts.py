from collections import defaultdict
from datetime import date, time
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.models.reservation import INACTIVE_STATUSES, Reservation
from app.schemas.scheduling import BookedInterval
from app.utils.time import format_hhmm

logger = structlog.get_logger(__name__)


def intervals_overlap(start1: time, end1: time, start2: time, end2: time) -> bool:
    """Half-open overlap test for [start1, end1) and [start2, end2)."""
    return start1 < end2 and start2 < end1


def has_conflict(intervals: Iterable[BookedInterval], start: time, end: time) -> bool:
    return any(
        intervals_overlap(start, end, booked.start_time, booked.end_time)
        for booked in intervals
    )


class ConflictChecker:
    """Checks candidate bookings against a staff member's active reservations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _active_on(self, tenant_id: int, day: date):
        return and_(
            Reservation.tenant_id == tenant_id,
            Reservation.date == day,
            Reservation.status.notin_(INACTIVE_STATUSES),
        )

    async def booked_intervals(
        self,
        tenant_id: int,
        day: date,
        staff_ids: Optional[List[int]] = None,
    ) -> Dict[int, List[BookedInterval]]:
        """Active reservation intervals for the date, grouped by staff."""
        query = select(
            Reservation.staff_id, Reservation.start_time, Reservation.end_time
        ).where(self._active_on(tenant_id, day))
        if staff_ids is not None:
            query = query.where(Reservation.staff_id.in_(staff_ids))

        result = await self.db.execute(query)

        grouped: Dict[int, List[BookedInterval]] = defaultdict(list)
        for staff_id, start_time, end_time in result.all():
            grouped[staff_id].append(
                BookedInterval(staff_id=staff_id, start_time=start_time, end_time=end_time)
            )
        return grouped

    async def find_conflicts(
        self,
        tenant_id: int,
        staff_id: int,
        day: date,
        start: time,
        end: time,
        exclude_reservation_id: Optional[int] = None,
    ) -> List[Reservation]:
        query = select(Reservation).where(
            self._active_on(tenant_id, day), Reservation.staff_id == staff_id
        )
        if exclude_reservation_id is not None:
            query = query.where(Reservation.id != exclude_reservation_id)

        result = await self.db.execute(query)
        return [
            r
            for r in result.scalars().all()
            if intervals_overlap(start, end, r.start_time, r.end_time)
        ]

    async def ensure_available(
        self,
        tenant_id: int,
        staff_id: int,
        day: date,
        start: time,
        end: time,
        exclude_reservation_id: Optional[int] = None,
    ) -> None:
        """Raise ConflictError when the interval overlaps an active reservation."""
        conflicts = await self.find_conflicts(
            tenant_id, staff_id, day, start, end, exclude_reservation_id
        )
        if conflicts:
            logger.info(
                "Booking conflict detected",
                staff_id=staff_id,
                date=day.isoformat(),
                start=format_hhmm(start),
                end=format_hhmm(end),
                conflicting_ids=[r.id for r in conflicts],
            )
            raise ConflictError(
                "The selected time is no longer available",
                details={
                    "staff_id": staff_id,
                    "date": day.isoformat(),
                    "start_time": format_hhmm(start),
                    "end_time": format_hhmm(end),
                    "conflicting_ids": [r.id for r in conflicts],
                },
            )
