from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import InvalidStatusTransition, NotFoundError, ValidationError
from app.models.calendar_sync_task import SyncAction
from app.models.customer import Customer
from app.models.reservation import Reservation, ReservationStatus
from app.models.staff import Staff
from app.schemas.reservation import (
    ReservationCancel,
    ReservationCreate,
    ReservationReschedule,
    ReservationStatusUpdate,
)
from app.schemas.scheduling import StaffSchedule, StoreConfig
from app.services.calendar_sync import CalendarSyncQueue
from app.services.conflicts import ConflictChecker
from app.services.policy import check_cancel_deadline, enforce_booking_policy
from app.services.schedule import (
    overlaps_break,
    resolve_day_window,
    staff_works_on,
    within_work_hours,
)
from app.services.stores import get_staff, get_store
from app.utils.time import add_minutes, format_hhmm

logger = structlog.get_logger(__name__)


class ReservationService:
    """Reservation writes: policy, conflict check, persist and sync enqueue.

    Each mutating call is one transaction. The staff row is locked before the
    conflict check so concurrent bookings for the same staff member serialize,
    and the calendar sync task is written in the same commit as the change.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conflicts = ConflictChecker(db)
        self.sync_queue = CalendarSyncQueue(db)

    async def create_reservation(
        self, tenant_id: int, data: ReservationCreate, now: datetime
    ) -> Reservation:
        """Create a pending reservation or raise a structured rejection."""
        try:
            store = await get_store(self.db, tenant_id, data.store_id)
            config = StoreConfig.from_store(store)
            staff = await get_staff(self.db, tenant_id, data.staff_id, for_update=True)
            if staff.store_id != store.id:
                raise NotFoundError("Staff", data.staff_id)

            customer = None
            if data.customer_id is not None:
                customer = await self._get_customer(tenant_id, data.customer_id)

            duration = data.duration_minutes or settings.DEFAULT_SERVICE_DURATION_MINUTES
            end_time = add_minutes(data.start_time, duration)

            enforce_booking_policy(config, data.date, data.start_time, now)
            self._validate_schedule(config, staff, data.date, data.start_time, end_time)
            await self.conflicts.ensure_available(
                tenant_id, staff.id, data.date, data.start_time, end_time
            )

            reservation = Reservation(
                tenant_id=tenant_id,
                store_id=store.id,
                staff_id=staff.id,
                customer_id=customer.id if customer else None,
                customer_name=data.customer_name or (customer.name if customer else None),
                date=data.date,
                start_time=data.start_time,
                end_time=end_time,
                duration_minutes=duration,
                status=ReservationStatus.PENDING.value,
                status_changed_at=now,
                source=data.source.value,
                customer_note=data.customer_note,
                created_at=now,
                updated_at=now,
            )
            self.db.add(reservation)
            await self.db.flush()

            await self.sync_queue.enqueue(
                tenant_id,
                reservation.id,
                SyncAction.CREATE,
                now,
                calendar_id=staff.calendar_id,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Reservation created",
            reservation_id=reservation.id,
            tenant_id=tenant_id,
            staff_id=reservation.staff_id,
            date=reservation.date.isoformat(),
            start=format_hhmm(reservation.start_time),
        )
        return reservation

    async def get_reservation(self, tenant_id: int, reservation_uuid: UUID) -> Reservation:
        result = await self.db.execute(
            select(Reservation).where(
                Reservation.tenant_id == tenant_id, Reservation.uuid == reservation_uuid
            )
        )
        reservation = result.scalar_one_or_none()
        if not reservation:
            raise NotFoundError("Reservation", reservation_uuid)
        return reservation

    async def list_by_date(
        self,
        tenant_id: int,
        day: date,
        include_canceled: bool = False,
        store_id: Optional[int] = None,
        staff_id: Optional[int] = None,
    ) -> List[Reservation]:
        query = select(Reservation).where(
            Reservation.tenant_id == tenant_id, Reservation.date == day
        )
        if not include_canceled:
            query = query.where(Reservation.status != ReservationStatus.CANCELED.value)
        if store_id is not None:
            query = query.where(Reservation.store_id == store_id)
        if staff_id is not None:
            query = query.where(Reservation.staff_id == staff_id)

        result = await self.db.execute(
            query.order_by(Reservation.start_time, Reservation.staff_id, Reservation.id)
        )
        return list(result.scalars().all())

    async def reschedule_reservation(
        self,
        tenant_id: int,
        reservation_uuid: UUID,
        data: ReservationReschedule,
        now: datetime,
    ) -> Reservation:
        """Move a reservation to a new slot.

        The cancel deadline is checked against the old slot first, then the
        new slot goes through the same checks as a fresh booking.
        """
        try:
            reservation = await self._get_for_update(tenant_id, reservation_uuid)
            if reservation.status not in (
                ReservationStatus.PENDING.value,
                ReservationStatus.CONFIRMED.value,
            ):
                raise ValidationError(
                    f"Cannot reschedule a {reservation.status} reservation",
                    code=InvalidStatusTransition.code,
                    details={"current": reservation.status},
                )

            store = await get_store(self.db, tenant_id, reservation.store_id)
            config = StoreConfig.from_store(store)
            check_cancel_deadline(config, reservation.date, reservation.start_time, now)

            old_staff = await self.db.get(Staff, reservation.staff_id)
            new_staff_id = data.staff_id or reservation.staff_id
            new_staff = await get_staff(self.db, tenant_id, new_staff_id, for_update=True)
            if new_staff.store_id != store.id:
                raise NotFoundError("Staff", new_staff_id)

            duration = data.duration_minutes or reservation.duration_minutes
            end_time = add_minutes(data.start_time, duration)

            enforce_booking_policy(config, data.date, data.start_time, now)
            self._validate_schedule(config, new_staff, data.date, data.start_time, end_time)
            await self.conflicts.ensure_available(
                tenant_id,
                new_staff.id,
                data.date,
                data.start_time,
                end_time,
                exclude_reservation_id=reservation.id,
            )

            old_calendar_id = reservation.external_calendar_id or (
                old_staff.calendar_id if old_staff else None
            )
            old_event_id = reservation.external_event_id
            staff_changed = new_staff.id != reservation.staff_id

            reservation.staff_id = new_staff.id
            reservation.date = data.date
            reservation.start_time = data.start_time
            reservation.end_time = end_time
            reservation.duration_minutes = duration
            reservation.reschedule_count = (reservation.reschedule_count or 0) + 1
            reservation.updated_at = now

            if staff_changed and new_staff.calendar_id != old_calendar_id:
                if old_event_id:
                    await self.sync_queue.enqueue(
                        tenant_id,
                        reservation.id,
                        SyncAction.DELETE,
                        now,
                        calendar_id=old_calendar_id,
                        event_id=old_event_id,
                    )
                    reservation.external_calendar_id = None
                    reservation.external_event_id = None
                await self.sync_queue.enqueue(
                    tenant_id,
                    reservation.id,
                    SyncAction.CREATE,
                    now,
                    calendar_id=new_staff.calendar_id,
                )
            else:
                await self.sync_queue.enqueue(
                    tenant_id,
                    reservation.id,
                    SyncAction.UPDATE,
                    now,
                    calendar_id=reservation.external_calendar_id,
                    event_id=reservation.external_event_id,
                )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Reservation rescheduled",
            reservation_id=reservation.id,
            staff_id=reservation.staff_id,
            date=reservation.date.isoformat(),
            start=format_hhmm(reservation.start_time),
        )
        return reservation

    async def cancel_reservation(
        self,
        tenant_id: int,
        reservation_uuid: UUID,
        data: ReservationCancel,
        now: datetime,
    ) -> Reservation:
        """Customer self-service cancel, subject to the cancel deadline."""
        try:
            reservation = await self._get_for_update(tenant_id, reservation_uuid)
            if data.customer_id is not None and reservation.customer_id != data.customer_id:
                raise NotFoundError("Reservation", reservation_uuid)

            await self._transition(
                tenant_id, reservation, ReservationStatus.CANCELED, now, data.reason
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Reservation canceled", reservation_id=reservation.id)
        return reservation

    async def update_status(
        self,
        tenant_id: int,
        reservation_uuid: UUID,
        data: ReservationStatusUpdate,
        now: datetime,
    ) -> Reservation:
        """Admin status change (confirm, complete, cancel, no-show)."""
        new_status = ReservationStatus(data.status.value)
        try:
            reservation = await self._get_for_update(tenant_id, reservation_uuid)
            await self._transition(tenant_id, reservation, new_status, now, data.reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Reservation status changed",
            reservation_id=reservation.id,
            status=reservation.status,
        )
        return reservation

    async def _transition(
        self,
        tenant_id: int,
        reservation: Reservation,
        new_status: ReservationStatus,
        now: datetime,
        reason: Optional[str] = None,
    ) -> None:
        if not reservation.can_transition_to(new_status):
            raise InvalidStatusTransition(reservation.status, new_status.value)

        if new_status == ReservationStatus.CANCELED:
            store = await get_store(self.db, tenant_id, reservation.store_id)
            config = StoreConfig.from_store(store)
            check_cancel_deadline(config, reservation.date, reservation.start_time, now)

        reservation.transition_to(new_status, now, reason)
        reservation.updated_at = now
        await self._update_customer_stats(reservation, new_status)

        if new_status in (ReservationStatus.CANCELED, ReservationStatus.NO_SHOW):
            await self.sync_queue.enqueue(
                tenant_id,
                reservation.id,
                SyncAction.DELETE,
                now,
                calendar_id=reservation.external_calendar_id,
                event_id=reservation.external_event_id,
            )
        elif reservation.external_event_id:
            await self.sync_queue.enqueue(
                tenant_id,
                reservation.id,
                SyncAction.UPDATE,
                now,
                calendar_id=reservation.external_calendar_id,
                event_id=reservation.external_event_id,
            )

    async def _update_customer_stats(
        self, reservation: Reservation, new_status: ReservationStatus
    ) -> None:
        if reservation.customer_id is None:
            return
        customer = await self.db.get(Customer, reservation.customer_id)
        if customer is None:
            return

        if new_status == ReservationStatus.CANCELED:
            customer.cancel_count = (customer.cancel_count or 0) + 1
        elif new_status == ReservationStatus.NO_SHOW:
            customer.no_show_count = (customer.no_show_count or 0) + 1
        elif new_status == ReservationStatus.COMPLETED:
            customer.visit_count = (customer.visit_count or 0) + 1
            if customer.last_visit_date is None or customer.last_visit_date < reservation.date:
                customer.last_visit_date = reservation.date

    def _validate_schedule(
        self,
        config: StoreConfig,
        staff: Staff,
        day: date,
        start: time,
        end: time,
    ) -> None:
        """The interval must fit the store's hours and the staff member's pattern."""
        details = {
            "staff_id": staff.id,
            "date": day.isoformat(),
            "start_time": format_hhmm(start),
            "end_time": format_hhmm(end),
        }

        window = resolve_day_window(config, day)
        if not window.is_open:
            raise ValidationError(
                "The store is closed on the requested date",
                details={**details, "reason": "store_closed"},
            )
        if start < window.open_time or end > window.close_time:
            raise ValidationError(
                "The requested time is outside business hours",
                details={**details, "reason": "outside_business_hours"},
            )

        schedule = StaffSchedule.model_validate(staff)
        if not staff_works_on(schedule, day):
            raise ValidationError(
                "The staff member does not work on the requested date",
                details={**details, "reason": "staff_day_off"},
            )
        if not within_work_hours(schedule, start, end):
            raise ValidationError(
                "The requested time is outside the staff member's working hours",
                details={**details, "reason": "outside_working_hours"},
            )
        if overlaps_break(schedule, start, end):
            raise ValidationError(
                "The requested time overlaps the staff member's break",
                details={**details, "reason": "staff_break"},
            )

    async def _get_for_update(self, tenant_id: int, reservation_uuid: UUID) -> Reservation:
        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.tenant_id == tenant_id, Reservation.uuid == reservation_uuid)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        reservation = result.scalar_one_or_none()
        if not reservation:
            raise NotFoundError("Reservation", reservation_uuid)
        return reservation

    async def _get_customer(self, tenant_id: int, customer_id: int) -> Customer:
        result = await self.db.execute(
            select(Customer).where(
                Customer.tenant_id == tenant_id, Customer.id == customer_id
            )
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise NotFoundError("Customer", customer_id)
        return customer
