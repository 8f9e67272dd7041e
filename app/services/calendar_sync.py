"""
Durable calendar sync queue.

Reservation writes call `enqueue` inside their own transaction, so a task
exists iff the reservation change committed. Workers drain the queue with
`run_batch`: reclaim stale leases, promote due backoffs, then claim and
execute tasks one at a time. A claimed task is owned exclusively by its
claimant; the provider call happens with no transaction open.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.calendar_sync_task import (
    ACTIVE_STATUSES,
    CalendarSyncTask,
    SyncAction,
    SyncTaskStatus,
)
from app.models.reservation import Reservation
from app.models.staff import Staff
from app.models.store import Store
from app.schemas.calendar_sync import (
    CalendarSyncSummary,
    ProcessResult,
    ReclaimResult,
    RetryResult,
)
from app.services.calendar_client import CalendarClient, CalendarEvent
from app.utils.time import as_utc, get_zone, to_instant

logger = structlog.get_logger(__name__)

MAX_BACKOFF_SECONDS = 3600
BASE_BACKOFF_SECONDS = 30
MAX_ERROR_LENGTH = 2000

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_SKIPPED = "skipped"


def backoff_delay(attempts: int) -> timedelta:
    """30s * 2^max(1, attempts), capped at one hour."""
    exponent = min(max(1, attempts), 16)
    seconds = BASE_BACKOFF_SECONDS * 2**exponent
    return timedelta(seconds=min(MAX_BACKOFF_SECONDS, seconds))


def build_event(reservation: Reservation, store: Store, staff: Optional[Staff]) -> CalendarEvent:
    tz = store.timezone
    zone = get_zone(tz)
    start = to_instant(reservation.date, reservation.start_time, tz).astimezone(zone)
    end = to_instant(reservation.date, reservation.end_time, tz).astimezone(zone)

    lines = [f"Reservation {reservation.uuid}"]
    if staff is not None:
        lines.append(f"Staff: {staff.name}")
    if reservation.customer_note:
        lines.append(f"Note: {reservation.customer_note}")

    return CalendarEvent(
        summary=reservation.customer_name or "Reservation",
        description="\n".join(lines),
        start=start,
        end=end,
        timezone=tz,
    )


class CalendarSyncQueue:
    def __init__(
        self,
        db: AsyncSession,
        max_attempts: Optional[int] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.db = db
        self.max_attempts = max_attempts or settings.CALENDAR_SYNC_MAX_ATTEMPTS
        self.lease = timedelta(seconds=lease_seconds or settings.CALENDAR_SYNC_LEASE_SECONDS)

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def _find_active(
        self, tenant_id: int, reservation_id: int, action: str
    ) -> Optional[CalendarSyncTask]:
        result = await self.db.execute(
            select(CalendarSyncTask)
            .where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.reservation_id == reservation_id,
                CalendarSyncTask.action == action,
                CalendarSyncTask.status.in_(ACTIVE_STATUSES),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _merge(
        self,
        task: CalendarSyncTask,
        now: datetime,
        calendar_id: Optional[str],
        event_id: Optional[str],
    ) -> None:
        task.calendar_id = calendar_id or task.calendar_id
        task.event_id = event_id or task.event_id
        task.updated_at = now

        if task.status == SyncTaskStatus.RUNNING.value:
            # Leave the in-flight run alone; it re-queues itself on success.
            task.rerun_requested = True
        elif task.status == SyncTaskStatus.FAILED.value:
            task.status = SyncTaskStatus.PENDING.value
            task.next_run_at = now
        else:
            task.next_run_at = min(as_utc(task.next_run_at), now)

    async def enqueue(
        self,
        tenant_id: int,
        reservation_id: int,
        action: SyncAction,
        now: datetime,
        calendar_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> CalendarSyncTask:
        """Add or merge a task for (tenant, reservation, action).

        Runs in the caller's transaction and does not commit.
        """
        existing = await self._find_active(tenant_id, reservation_id, action.value)
        if existing:
            self._merge(existing, now, calendar_id, event_id)
            await self.db.flush()
            logger.debug(
                "Merged calendar sync task",
                task_id=existing.id,
                action=action.value,
                status=existing.status,
            )
            return existing

        task = CalendarSyncTask(
            tenant_id=tenant_id,
            reservation_id=reservation_id,
            action=action.value,
            calendar_id=calendar_id,
            event_id=event_id,
            status=SyncTaskStatus.PENDING.value,
            attempts=0,
            max_attempts=self.max_attempts,
            next_run_at=now,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(task)
        except IntegrityError:
            # A concurrent enqueue inserted the same key first
            existing = await self._find_active(tenant_id, reservation_id, action.value)
            if existing is None:
                raise
            self._merge(existing, now, calendar_id, event_id)
            await self.db.flush()
            return existing

        logger.info(
            "Enqueued calendar sync task",
            task_id=task.id,
            tenant_id=tenant_id,
            reservation_id=reservation_id,
            action=action.value,
        )
        return task

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    async def promote_due(self, tenant_id: int, now: datetime) -> int:
        """Move failed tasks whose backoff has expired back to pending."""
        result = await self.db.execute(
            update(CalendarSyncTask)
            .where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.status == SyncTaskStatus.FAILED.value,
                CalendarSyncTask.next_run_at <= now,
            )
            .values(status=SyncTaskStatus.PENDING.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def claim_next(self, tenant_id: int, now: datetime) -> Optional[CalendarSyncTask]:
        """Atomically take the oldest due pending task and mark it running."""
        while True:
            candidate_id = await self.db.scalar(
                select(CalendarSyncTask.id)
                .where(
                    CalendarSyncTask.tenant_id == tenant_id,
                    CalendarSyncTask.status == SyncTaskStatus.PENDING.value,
                    CalendarSyncTask.next_run_at <= now,
                )
                .order_by(
                    CalendarSyncTask.next_run_at,
                    CalendarSyncTask.created_at,
                    CalendarSyncTask.id,
                )
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            if candidate_id is None:
                await self.db.commit()
                return None

            result = await self.db.execute(
                update(CalendarSyncTask)
                .where(
                    CalendarSyncTask.id == candidate_id,
                    CalendarSyncTask.status == SyncTaskStatus.PENDING.value,
                )
                .values(
                    status=SyncTaskStatus.RUNNING.value,
                    attempts=CalendarSyncTask.attempts + 1,
                    locked_at=now,
                    last_attempt_at=now,
                    rerun_requested=False,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another claimant got there first
                await self.db.commit()
                continue

            task = await self._load(candidate_id)
            await self.db.commit()
            return task

    async def _load(self, task_id: int, lock: bool = False) -> Optional[CalendarSyncTask]:
        query = (
            select(CalendarSyncTask)
            .where(CalendarSyncTask.id == task_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _load_reservation(self, task: CalendarSyncTask) -> Optional[Reservation]:
        result = await self.db.execute(
            select(Reservation)
            .where(
                Reservation.id == task.reservation_id,
                Reservation.tenant_id == task.tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def execute(
        self, task: CalendarSyncTask, client: CalendarClient, now: datetime
    ) -> str:
        """Carry out a claimed task. Provider errors propagate to the caller."""
        reservation = await self._load_reservation(task)
        if reservation is None:
            await self.db.commit()
            logger.info("Reservation gone, skipping sync task", task_id=task.id)
            return OUTCOME_SKIPPED

        if task.action == SyncAction.DELETE.value:
            return await self._execute_delete(task, reservation, client)
        return await self._execute_upsert(task, reservation, client, now)

    async def _execute_delete(
        self, task: CalendarSyncTask, reservation: Reservation, client: CalendarClient
    ) -> str:
        calendar_id = task.calendar_id or reservation.external_calendar_id
        event_id = task.event_id or reservation.external_event_id
        await self.db.commit()

        if not calendar_id or not event_id:
            return OUTCOME_SKIPPED

        await client.delete_event(calendar_id, event_id)

        reservation = await self._load_reservation(task)
        if reservation is not None and reservation.external_event_id == event_id:
            reservation.external_calendar_id = None
            reservation.external_event_id = None
        await self.db.commit()
        return OUTCOME_SUCCEEDED

    async def _execute_upsert(
        self,
        task: CalendarSyncTask,
        reservation: Reservation,
        client: CalendarClient,
        now: datetime,
    ) -> str:
        if not reservation.is_active:
            await self.db.commit()
            return OUTCOME_SKIPPED

        staff = await self.db.get(Staff, reservation.staff_id)
        store = await self.db.get(Store, reservation.store_id)
        calendar_id = (
            task.calendar_id
            or reservation.external_calendar_id
            or (staff.calendar_id if staff else None)
        )
        if not calendar_id:
            await self.db.commit()
            return OUTCOME_SKIPPED

        # Reuse an event already created on this calendar so re-runs stay idempotent
        event_id = task.event_id
        if not event_id and reservation.external_calendar_id == calendar_id:
            event_id = reservation.external_event_id

        event = build_event(reservation, store, staff)
        await self.db.commit()

        created = False
        if event_id:
            await client.update_event(calendar_id, event_id, event)
        else:
            event_id = await client.create_event(calendar_id, event)
            created = True

        reservation = await self._load_reservation(task)
        if reservation is None:
            await self.db.commit()
            return OUTCOME_SUCCEEDED

        previous = (reservation.external_calendar_id, reservation.external_event_id)
        if previous[1] and previous != (calendar_id, event_id):
            # An earlier run wrote an event we are about to replace
            await self.enqueue(
                task.tenant_id,
                reservation.id,
                SyncAction.DELETE,
                now,
                calendar_id=previous[0],
                event_id=previous[1],
            )
            logger.info(
                "Replacing calendar event",
                task_id=task.id,
                old_calendar_id=previous[0],
                calendar_id=calendar_id,
            )

        reservation.external_calendar_id = calendar_id
        reservation.external_event_id = event_id
        if created and not reservation.is_active:
            # Canceled while the event was being created
            await self.enqueue(
                task.tenant_id,
                reservation.id,
                SyncAction.DELETE,
                now,
                calendar_id=calendar_id,
                event_id=event_id,
            )
        await self.db.commit()
        return OUTCOME_SUCCEEDED

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def mark_succeeded(self, task_id: int, now: datetime) -> CalendarSyncTask:
        current = await self._load(task_id, lock=True)
        if current is None or current.status != SyncTaskStatus.RUNNING.value:
            await self.db.commit()
            return current

        if current.rerun_requested:
            current.status = SyncTaskStatus.PENDING.value
            current.next_run_at = now
            current.rerun_requested = False
        else:
            current.status = SyncTaskStatus.SUCCEEDED.value
            current.succeeded_at = now
        current.last_error = None
        current.locked_at = None
        current.updated_at = now
        await self.db.commit()
        return current

    async def mark_failed(
        self, task_id: int, error: Exception, now: datetime
    ) -> CalendarSyncTask:
        current = await self._load(task_id, lock=True)
        if current is None or current.status != SyncTaskStatus.RUNNING.value:
            await self.db.commit()
            return current

        current.last_error = str(error)[:MAX_ERROR_LENGTH]
        current.locked_at = None
        current.rerun_requested = False
        current.updated_at = now
        retryable = getattr(error, "retryable", True)
        if not retryable or current.attempts >= current.max_attempts:
            current.status = SyncTaskStatus.DEAD.value
        else:
            current.status = SyncTaskStatus.FAILED.value
            current.next_run_at = now + backoff_delay(current.attempts)
        await self.db.commit()

        logger.warning(
            "Calendar sync task failed",
            task_id=current.id,
            action=current.action,
            attempts=current.attempts,
            status=current.status,
            error=current.last_error,
        )
        return current

    # ------------------------------------------------------------------
    # Operator tools
    # ------------------------------------------------------------------

    async def reclaim_stale(
        self, now: datetime, tenant_id: Optional[int] = None
    ) -> ReclaimResult:
        """Requeue running tasks whose lease has expired."""
        query = (
            select(CalendarSyncTask)
            .where(
                CalendarSyncTask.status == SyncTaskStatus.RUNNING.value,
                CalendarSyncTask.locked_at < now - self.lease,
            )
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            query = query.where(CalendarSyncTask.tenant_id == tenant_id)
        result = await self.db.execute(query)

        outcome = ReclaimResult()
        for task in result.scalars().all():
            task.locked_at = None
            task.updated_at = now
            if task.attempts >= task.max_attempts:
                task.status = SyncTaskStatus.DEAD.value
                task.last_error = task.last_error or "Lease expired after final attempt"
                outcome.dead += 1
            else:
                task.status = SyncTaskStatus.PENDING.value
                task.next_run_at = now
                outcome.reclaimed += 1
        await self.db.commit()

        if outcome.reclaimed or outcome.dead:
            logger.warning(
                "Reclaimed stale calendar sync tasks",
                tenant_id=tenant_id,
                reclaimed=outcome.reclaimed,
                dead=outcome.dead,
            )
        return outcome

    async def retry(
        self,
        tenant_id: int,
        now: datetime,
        include_failed: bool = False,
        limit: int = 100,
    ) -> RetryResult:
        """Reset dead (and optionally failed) tasks to pending with a fresh budget."""
        statuses: List[str] = [SyncTaskStatus.DEAD.value]
        if include_failed:
            statuses.append(SyncTaskStatus.FAILED.value)

        result = await self.db.execute(
            select(CalendarSyncTask)
            .where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.status.in_(statuses),
            )
            .order_by(CalendarSyncTask.updated_at.desc(), CalendarSyncTask.id.desc())
            .limit(limit)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        candidates = result.scalars().all()

        active = await self.db.execute(
            select(CalendarSyncTask.reservation_id, CalendarSyncTask.action).where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.status.in_(ACTIVE_STATUSES),
            )
        )
        active_keys = {tuple(row) for row in active.all()}

        outcome = RetryResult()
        for task in candidates:
            key = (task.reservation_id, task.action)
            if task.status == SyncTaskStatus.DEAD.value:
                if key in active_keys:
                    # A newer task already covers this reservation and action
                    continue
                outcome.from_dead += 1
            else:
                outcome.from_failed += 1
            active_keys.add(key)

            task.status = SyncTaskStatus.PENDING.value
            task.attempts = 0
            task.next_run_at = now
            task.last_error = None
            task.locked_at = None
            task.updated_at = now
            outcome.reset += 1

        await self.db.commit()
        logger.info(
            "Reset calendar sync tasks",
            tenant_id=tenant_id,
            reset=outcome.reset,
            from_dead=outcome.from_dead,
            from_failed=outcome.from_failed,
        )
        return outcome

    async def summary(self, tenant_id: int) -> CalendarSyncSummary:
        result = await self.db.execute(
            select(CalendarSyncTask.status, func.count(CalendarSyncTask.id))
            .where(CalendarSyncTask.tenant_id == tenant_id)
            .group_by(CalendarSyncTask.status)
        )
        counts = dict(result.all())

        next_run_at = await self.db.scalar(
            select(func.min(CalendarSyncTask.next_run_at)).where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.status.in_(
                    [SyncTaskStatus.PENDING.value, SyncTaskStatus.FAILED.value]
                ),
            )
        )
        last_attempt_at = await self.db.scalar(
            select(func.max(CalendarSyncTask.last_attempt_at)).where(
                CalendarSyncTask.tenant_id == tenant_id
            )
        )
        last_success_at = await self.db.scalar(
            select(func.max(CalendarSyncTask.succeeded_at)).where(
                CalendarSyncTask.tenant_id == tenant_id
            )
        )
        last_error = await self.db.scalar(
            select(CalendarSyncTask.last_error)
            .where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.last_error.isnot(None),
            )
            .order_by(CalendarSyncTask.updated_at.desc(), CalendarSyncTask.id.desc())
            .limit(1)
        )
        await self.db.commit()

        return CalendarSyncSummary(
            pending=counts.get(SyncTaskStatus.PENDING.value, 0),
            running=counts.get(SyncTaskStatus.RUNNING.value, 0),
            failed=counts.get(SyncTaskStatus.FAILED.value, 0),
            dead=counts.get(SyncTaskStatus.DEAD.value, 0),
            next_run_at=as_utc(next_run_at),
            last_attempt_at=as_utc(last_attempt_at),
            last_success_at=as_utc(last_success_at),
            last_error=last_error,
        )

    async def count_pending(self, tenant_id: int) -> int:
        count = await self.db.scalar(
            select(func.count(CalendarSyncTask.id)).where(
                CalendarSyncTask.tenant_id == tenant_id,
                CalendarSyncTask.status == SyncTaskStatus.PENDING.value,
            )
        )
        await self.db.commit()
        return count or 0

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    async def run_batch(
        self,
        tenant_id: int,
        client: CalendarClient,
        clock: Callable[[], datetime],
        limit: int,
    ) -> ProcessResult:
        """Reclaim, promote and process up to `limit` due tasks for a tenant."""
        await self.reclaim_stale(clock(), tenant_id=tenant_id)
        await self.promote_due(tenant_id, clock())

        outcome = ProcessResult()
        for _ in range(limit):
            task = await self.claim_next(tenant_id, clock())
            if task is None:
                break
            outcome.processed += 1
            task_id = task.id

            log = logger.bind(task_id=task_id, action=task.action, attempt=task.attempts)
            try:
                result = await self.execute(task, client, clock())
            except Exception as e:
                await self.db.rollback()
                updated = await self.mark_failed(task_id, e, clock())
                if updated is not None and updated.status == SyncTaskStatus.DEAD.value:
                    outcome.dead += 1
                else:
                    outcome.failed += 1
                continue

            await self.mark_succeeded(task_id, clock())
            if result == OUTCOME_SKIPPED:
                outcome.skipped += 1
            else:
                outcome.succeeded += 1
            log.debug("Calendar sync task finished", outcome=result)

        outcome.remaining_pending = await self.count_pending(tenant_id)
        return outcome
