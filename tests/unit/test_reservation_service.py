"""Test reservation booking flow with real database interactions."""

import asyncio
from datetime import date, time

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictError,
    InvalidStatusTransition,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from app.models.calendar_sync_task import CalendarSyncTask, SyncAction
from app.models.customer import Customer
from app.models.reservation import Reservation, ReservationStatus
from app.schemas.reservation import (
    AdminStatus,
    ReservationCancel,
    ReservationCreate,
    ReservationReschedule,
    ReservationStatusUpdate,
)
from app.services.reservation import ReservationService

MONDAY = date(2024, 1, 22)
TUESDAY = date(2024, 1, 23)


async def sync_tasks(db: AsyncSession, reservation_id: int) -> list[CalendarSyncTask]:
    result = await db.execute(
        select(CalendarSyncTask)
        .where(CalendarSyncTask.reservation_id == reservation_id)
        .order_by(CalendarSyncTask.id)
    )
    return list(result.scalars().all())


async def reservation_count(db: AsyncSession) -> int:
    return await db.scalar(select(func.count(Reservation.id)))


def booking(staff_id: int, day: date = MONDAY, start: time = time(10), **kwargs):
    return ReservationCreate(
        staff_id=staff_id, date=day, start_time=start, duration_minutes=60, **kwargs
    )


class TestCreateReservation:
    async def test_create_pending_reservation(self, db, tenant, staff, customer, now):
        service = ReservationService(db)

        reservation = await service.create_reservation(
            tenant.id, booking(staff.id, customer_id=customer.id), now
        )

        assert reservation.status == ReservationStatus.PENDING.value
        assert reservation.end_time == time(11)
        assert reservation.customer_name == "Hanako Yamada"

        tasks = await sync_tasks(db, reservation.id)
        assert len(tasks) == 1
        assert tasks[0].action == SyncAction.CREATE.value
        assert tasks[0].calendar_id == "aiko@example.com"

    async def test_overlapping_booking_conflicts(self, db, tenant, staff, now):
        tenant_id, staff_id = tenant.id, staff.id
        service = ReservationService(db)
        first = await service.create_reservation(tenant_id, booking(staff_id), now)
        first_id = first.id

        with pytest.raises(ConflictError) as exc_info:
            await service.create_reservation(
                tenant_id, booking(staff_id, start=time(10, 30)), now
            )

        assert exc_info.value.details["conflicting_ids"] == [first_id]
        assert await reservation_count(db) == 1
        assert await db.scalar(select(func.count(CalendarSyncTask.id))) == 1

    async def test_touching_booking_is_accepted(self, db, tenant, staff, now):
        service = ReservationService(db)
        await service.create_reservation(tenant.id, booking(staff.id), now)

        second = await service.create_reservation(
            tenant.id, booking(staff.id, start=time(11)), now
        )

        assert second.start_time == time(11)

    async def test_canceled_booking_frees_the_slot(self, db, tenant, staff, now):
        service = ReservationService(db)
        first = await service.create_reservation(tenant.id, booking(staff.id), now)
        await service.cancel_reservation(tenant.id, first.uuid, ReservationCancel(), now)

        again = await service.create_reservation(tenant.id, booking(staff.id), now)

        assert again.id != first.id

    async def test_advance_window_boundary(self, db, tenant, second_staff, now):
        tenant_id, staff_id = tenant.id, second_staff.id
        service = ReservationService(db)

        accepted = await service.create_reservation(
            tenant_id, booking(staff_id, day=date(2024, 2, 14)), now
        )
        assert accepted.date == date(2024, 2, 14)

        with pytest.raises(PolicyViolation) as exc_info:
            await service.create_reservation(
                tenant_id, booking(staff_id, day=date(2024, 2, 15)), now
            )
        assert exc_info.value.reason == PolicyViolation.ADVANCE_BOOKING_EXCEEDED

    async def test_past_start_rejected(self, db, tenant, staff, now):
        service = ReservationService(db)

        with pytest.raises(PolicyViolation) as exc_info:
            await service.create_reservation(
                tenant.id, booking(staff.id, day=date(2024, 1, 15), start=time(9)), now
            )

        assert exc_info.value.reason == PolicyViolation.PAST_START_TIME

    async def test_break_overlap_rejected(self, db, tenant, staff, now):
        service = ReservationService(db)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_reservation(
                tenant.id, booking(staff.id, start=time(12, 30)), now
            )

        assert exc_info.value.details["reason"] == "staff_break"

    async def test_staff_day_off_rejected(self, db, tenant, staff, now):
        service = ReservationService(db)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_reservation(
                tenant.id, booking(staff.id, day=date(2024, 1, 21)), now
            )

        assert exc_info.value.details["reason"] == "staff_day_off"

    async def test_unknown_staff(self, db, tenant, store, now):
        service = ReservationService(db)

        with pytest.raises(NotFoundError):
            await service.create_reservation(tenant.id, booking(9999), now)

    async def test_concurrent_bookings_one_wins(
        self, db, session_factory, tenant, staff, now
    ):
        tenant_id, staff_id = tenant.id, staff.id

        async def attempt(start: time):
            async with session_factory() as session:
                service = ReservationService(session)
                return await service.create_reservation(
                    tenant_id, booking(staff_id, start=start), now
                )

        results = await asyncio.gather(
            attempt(time(10)), attempt(time(10, 30)), return_exceptions=True
        )

        successes = [r for r in results if isinstance(r, Reservation)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        assert await reservation_count(db) == 1


class TestCancelReservation:
    async def test_cancel_before_deadline(self, db, tenant, staff, customer, now):
        service = ReservationService(db)
        # Tue 10:00 JST is 25 hours after now
        reservation = await service.create_reservation(
            tenant.id,
            booking(staff.id, day=date(2024, 1, 16), customer_id=customer.id),
            now,
        )

        canceled = await service.cancel_reservation(
            tenant.id,
            reservation.uuid,
            ReservationCancel(reason="schedule change", customer_id=customer.id),
            now,
        )

        assert canceled.status == ReservationStatus.CANCELED.value
        assert canceled.cancel_reason == "schedule change"
        await db.refresh(customer)
        assert customer.cancel_count == 1

        actions = [t.action for t in await sync_tasks(db, reservation.id)]
        assert actions == [SyncAction.CREATE.value, SyncAction.DELETE.value]

    async def test_cancel_inside_deadline_rejected(self, db, tenant, staff, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(
            tenant.id, booking(staff.id, day=date(2024, 1, 15), start=time(15)), now
        )
        reservation_uuid = reservation.uuid

        with pytest.raises(PolicyViolation) as exc_info:
            await service.cancel_reservation(
                tenant.id, reservation_uuid, ReservationCancel(), now
            )

        assert exc_info.value.reason == PolicyViolation.CANCEL_DEADLINE_PASSED

    async def test_cancel_someone_elses_reservation(self, db, tenant, staff, customer, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(
            tenant.id, booking(staff.id, customer_id=customer.id), now
        )

        with pytest.raises(NotFoundError):
            await service.cancel_reservation(
                tenant.id,
                reservation.uuid,
                ReservationCancel(customer_id=customer.id + 1),
                now,
            )

    async def test_cancel_twice_rejected(self, db, tenant, staff, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(tenant.id, booking(staff.id), now)
        await service.cancel_reservation(tenant.id, reservation.uuid, ReservationCancel(), now)

        with pytest.raises(InvalidStatusTransition):
            await service.cancel_reservation(
                tenant.id, reservation.uuid, ReservationCancel(), now
            )


class TestRescheduleReservation:
    async def test_reschedule_same_staff_enqueues_update(self, db, tenant, staff, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(tenant.id, booking(staff.id), now)

        moved = await service.reschedule_reservation(
            tenant.id,
            reservation.uuid,
            ReservationReschedule(date=TUESDAY, start_time=time(11)),
            now,
        )

        assert moved.date == TUESDAY
        assert moved.end_time == time(12)
        assert moved.reschedule_count == 1
        actions = [t.action for t in await sync_tasks(db, reservation.id)]
        assert actions == [SyncAction.CREATE.value, SyncAction.UPDATE.value]

    async def test_reschedule_may_overlap_its_own_old_slot(self, db, tenant, staff, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(tenant.id, booking(staff.id), now)

        moved = await service.reschedule_reservation(
            tenant.id,
            reservation.uuid,
            ReservationReschedule(date=MONDAY, start_time=time(10, 30)),
            now,
        )

        assert moved.start_time == time(10, 30)

    async def test_reschedule_into_conflict(self, db, tenant, staff, now):
        tenant_id, staff_id = tenant.id, staff.id
        service = ReservationService(db)
        await service.create_reservation(tenant_id, booking(staff_id, start=time(15)), now)
        reservation = await service.create_reservation(tenant_id, booking(staff_id), now)
        reservation_uuid = reservation.uuid

        with pytest.raises(ConflictError):
            await service.reschedule_reservation(
                tenant_id,
                reservation_uuid,
                ReservationReschedule(date=MONDAY, start_time=time(15, 30)),
                now,
            )

    async def test_reschedule_checks_cancel_deadline_of_old_slot(
        self, db, tenant, staff, now
    ):
        tenant_id, staff_id = tenant.id, staff.id
        service = ReservationService(db)
        reservation = await service.create_reservation(
            tenant_id, booking(staff_id, day=date(2024, 1, 15), start=time(15)), now
        )
        reservation_uuid = reservation.uuid

        with pytest.raises(PolicyViolation) as exc_info:
            await service.reschedule_reservation(
                tenant_id,
                reservation_uuid,
                ReservationReschedule(date=TUESDAY, start_time=time(10)),
                now,
            )

        assert exc_info.value.reason == PolicyViolation.CANCEL_DEADLINE_PASSED

    async def test_reschedule_to_staff_on_other_calendar(
        self, db, tenant, staff, second_staff, now
    ):
        service = ReservationService(db)
        reservation = await service.create_reservation(tenant.id, booking(staff.id), now)
        reservation.external_calendar_id = "aiko@example.com"
        reservation.external_event_id = "evt-1"
        await db.commit()

        moved = await service.reschedule_reservation(
            tenant.id,
            reservation.uuid,
            ReservationReschedule(date=MONDAY, start_time=time(11), staff_id=second_staff.id),
            now,
        )

        assert moved.staff_id == second_staff.id
        assert moved.external_event_id is None

        tasks = {t.action: t for t in await sync_tasks(db, reservation.id)}
        assert tasks["delete"].calendar_id == "aiko@example.com"
        assert tasks["delete"].event_id == "evt-1"
        assert tasks["create"].calendar_id == "kenji@example.com"


class TestAdminStatus:
    async def test_complete_updates_visit_stats(self, db, tenant, staff, customer, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(
            tenant.id, booking(staff.id, customer_id=customer.id), now
        )

        await service.update_status(
            tenant.id, reservation.uuid, ReservationStatusUpdate(status=AdminStatus.CONFIRMED), now
        )
        done = await service.update_status(
            tenant.id, reservation.uuid, ReservationStatusUpdate(status=AdminStatus.COMPLETED), now
        )

        assert done.status == ReservationStatus.COMPLETED.value
        refreshed = await db.get(Customer, customer.id)
        await db.refresh(refreshed)
        assert refreshed.visit_count == 1
        assert refreshed.last_visit_date == MONDAY

    async def test_no_show_counts_and_enqueues_delete(self, db, tenant, staff, customer, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(
            tenant.id, booking(staff.id, customer_id=customer.id), now
        )

        await service.update_status(
            tenant.id, reservation.uuid, ReservationStatusUpdate(status=AdminStatus.NO_SHOW), now
        )

        await db.refresh(customer)
        assert customer.no_show_count == 1
        actions = [t.action for t in await sync_tasks(db, reservation.id)]
        assert SyncAction.DELETE.value in actions

    async def test_confirm_with_event_enqueues_update(self, db, tenant, staff, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(tenant.id, booking(staff.id), now)
        reservation.external_calendar_id = "aiko@example.com"
        reservation.external_event_id = "evt-1"
        await db.commit()

        await service.update_status(
            tenant.id, reservation.uuid, ReservationStatusUpdate(status=AdminStatus.CONFIRMED), now
        )

        actions = [t.action for t in await sync_tasks(db, reservation.id)]
        assert actions == [SyncAction.CREATE.value, SyncAction.UPDATE.value]

    async def test_invalid_transition(self, db, tenant, staff, now):
        service = ReservationService(db)
        reservation = await service.create_reservation(tenant.id, booking(staff.id), now)
        reservation_uuid = reservation.uuid
        tenant_id = tenant.id

        with pytest.raises(InvalidStatusTransition):
            await service.update_status(
                tenant_id,
                reservation_uuid,
                ReservationStatusUpdate(status=AdminStatus.COMPLETED),
                now,
            )


class TestListByDate:
    async def test_canceled_hidden_by_default(self, db, tenant, staff, second_staff, now):
        service = ReservationService(db)
        first = await service.create_reservation(tenant.id, booking(staff.id), now)
        await service.create_reservation(tenant.id, booking(second_staff.id, start=time(12)), now)
        await service.cancel_reservation(tenant.id, first.uuid, ReservationCancel(), now)

        visible = await service.list_by_date(tenant.id, MONDAY)
        everything = await service.list_by_date(tenant.id, MONDAY, include_canceled=True)

        assert len(visible) == 1
        assert len(everything) == 2
        assert [r.start_time for r in everything] == [time(10), time(12)]
