"""Test the calendar sync worker loop and its Celery wiring."""

import asyncio
from datetime import date, time
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.core.celery import celery_app
from app.models.calendar_sync_task import CalendarSyncTask, SyncAction, SyncTaskStatus
from app.models.reservation import Reservation, ReservationStatus
from app.models.staff import Staff
from app.models.store import Store
from app.models.tenant import Tenant
from app.services.calendar_client import CalendarClient
from app.services.calendar_sync import CalendarSyncQueue
from app.workers.calendar_sync import SyncWorker
from tests.fixtures.booking_fixtures import ALL_DAYS, business_hours


def make_client(event_id: str = "evt-1") -> AsyncMock:
    client = AsyncMock(spec=CalendarClient)
    client.create_event.return_value = event_id
    return client


async def enqueue_create(db, tenant_id: int, reservation_id: int, now) -> int:
    task = await CalendarSyncQueue(db).enqueue(
        tenant_id, reservation_id, SyncAction.CREATE, now, calendar_id="cal@example.com"
    )
    await db.commit()
    return task.id


@pytest.fixture
async def other_tenant_reservation(db, now) -> Reservation:
    tenant = Tenant(name="Other Salon", slug="other-salon")
    db.add(tenant)
    await db.flush()
    store = Store(
        tenant_id=tenant.id,
        name="Umeda",
        timezone="Asia/Tokyo",
        business_hours=business_hours(),
    )
    db.add(store)
    await db.flush()
    staff = Staff(
        tenant_id=tenant.id,
        store_id=store.id,
        name="Yui",
        working_days=ALL_DAYS,
        work_start=time(10),
        work_end=time(19),
    )
    db.add(staff)
    await db.flush()
    reservation = Reservation(
        tenant_id=tenant.id,
        store_id=store.id,
        staff_id=staff.id,
        date=date(2024, 1, 22),
        start_time=time(14),
        end_time=time(15),
        duration_minutes=60,
        status=ReservationStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    db.add(reservation)
    await db.commit()
    return reservation


class TestSyncWorker:
    async def test_run_once_processes_tenant_backlog(
        self, db, session_factory, tenant, reservation, now
    ):
        tenant_id = tenant.id
        task_id = await enqueue_create(db, tenant_id, reservation.id, now)
        client = make_client()

        async def client_factory(session, requested_tenant_id):
            assert requested_tenant_id == tenant_id
            return client

        worker = SyncWorker(session_factory, client_factory, clock=lambda: now)
        result = await worker.run_once(tenant_id)

        assert result.processed == 1
        assert result.succeeded == 1
        client.aclose.assert_awaited_once()

        task = await db.get(CalendarSyncTask, task_id, populate_existing=True)
        assert task.status == SyncTaskStatus.SUCCEEDED.value

    async def test_run_all_tenants_isolates_failures(
        self, db, session_factory, tenant, reservation, other_tenant_reservation, now
    ):
        tenant_id = tenant.id
        other_tenant_id = other_tenant_reservation.tenant_id
        await enqueue_create(db, tenant_id, reservation.id, now)
        await enqueue_create(db, other_tenant_id, other_tenant_reservation.id, now)

        async def client_factory(session, requested_tenant_id):
            if requested_tenant_id == tenant_id:
                raise RuntimeError("integration lookup failed")
            return make_client()

        worker = SyncWorker(session_factory, client_factory, clock=lambda: now)
        results = await worker.run_all_tenants()

        assert list(results) == [other_tenant_id]
        assert results[other_tenant_id].succeeded == 1

        statuses = dict(
            (
                await db.execute(
                    select(CalendarSyncTask.tenant_id, CalendarSyncTask.status)
                )
            ).all()
        )
        assert statuses[tenant_id] == SyncTaskStatus.PENDING.value
        assert statuses[other_tenant_id] == SyncTaskStatus.SUCCEEDED.value

    async def test_run_all_tenants_skips_idle_tenants(self, session_factory, tenant, now):
        client_factory = AsyncMock()
        worker = SyncWorker(session_factory, client_factory, clock=lambda: now)

        assert await worker.run_all_tenants() == {}
        client_factory.assert_not_awaited()

    async def test_run_forever_stops_on_event(
        self, db, session_factory, tenant, reservation, now
    ):
        tenant_id = tenant.id
        task_id = await enqueue_create(db, tenant_id, reservation.id, now)
        stop = asyncio.Event()
        client = make_client()

        async def client_factory(session, requested_tenant_id):
            stop.set()
            return client

        worker = SyncWorker(session_factory, client_factory, clock=lambda: now)
        await asyncio.wait_for(worker.run_forever(poll_seconds=0.01, stop_event=stop), 5)

        task = await db.get(CalendarSyncTask, task_id, populate_existing=True)
        assert task.status == SyncTaskStatus.SUCCEEDED.value


class TestCeleryWiring:
    def test_drain_task_is_registered(self):
        assert "calendar_sync.drain" in celery_app.tasks

    def test_drain_is_scheduled(self):
        schedule = celery_app.conf.beat_schedule["calendar-sync-drain"]
        assert schedule["task"] == "calendar_sync.drain"
