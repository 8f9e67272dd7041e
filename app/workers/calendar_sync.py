"""
Calendar sync worker.

Drains each tenant's sync backlog through CalendarSyncQueue.run_batch. Runs
either as a long-lived asyncio loop (`run_forever`) or as the periodic
Celery task `calendar_sync.drain`.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core.celery import celery_app
from app.core.config import settings
from app.core.database import AsyncSessionLocal, build_engine
from app.models.calendar_sync_task import ACTIVE_STATUSES, CalendarSyncTask
from app.schemas.calendar_sync import ProcessResult
from app.services.calendar_client import CalendarClient, google_client_factory
from app.services.calendar_sync import CalendarSyncQueue
from app.utils.time import utc_now

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[AsyncSession, int], Awaitable[CalendarClient]]


class SyncWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        client_factory: ClientFactory = google_client_factory,
        clock: Callable[[], datetime] = utc_now,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.clock = clock
        self.batch_size = batch_size or settings.CALENDAR_SYNC_BATCH_SIZE

    async def run_once(self, tenant_id: int, limit: Optional[int] = None) -> ProcessResult:
        """Process up to `limit` due tasks for one tenant."""
        async with self.session_factory() as session:
            client = await self.client_factory(session, tenant_id)
            try:
                queue = CalendarSyncQueue(session)
                result = await queue.run_batch(
                    tenant_id, client, self.clock, limit or self.batch_size
                )
            finally:
                await client.aclose()

        if result.processed:
            logger.info("Calendar sync batch processed", tenant_id=tenant_id, **result.model_dump())
        return result

    async def _tenants_with_work(self) -> list[int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CalendarSyncTask.tenant_id)
                .where(CalendarSyncTask.status.in_(ACTIVE_STATUSES))
                .distinct()
                .order_by(CalendarSyncTask.tenant_id)
            )
            return list(result.scalars().all())

    async def run_all_tenants(self) -> Dict[int, ProcessResult]:
        """One pass over every tenant with active tasks.

        A failing tenant is logged and does not stop the others.
        """
        results: Dict[int, ProcessResult] = {}
        for tenant_id in await self._tenants_with_work():
            try:
                results[tenant_id] = await self.run_once(tenant_id)
            except Exception as e:
                logger.error("Calendar sync failed for tenant", tenant_id=tenant_id, exc_info=e)
        return results

    async def run_forever(
        self,
        poll_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        poll = poll_seconds if poll_seconds is not None else settings.CALENDAR_SYNC_POLL_SECONDS
        stop_event = stop_event or asyncio.Event()

        logger.info("Calendar sync worker started", poll_seconds=poll)
        while not stop_event.is_set():
            await self.run_all_tenants()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll)
            except asyncio.TimeoutError:
                pass
        logger.info("Calendar sync worker stopped")


async def _drain() -> Dict[str, dict]:
    # Each Celery invocation runs its own event loop, so it gets its own engine
    engine = build_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        worker = SyncWorker(
            session_factory=async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
        )
        results = await worker.run_all_tenants()
    finally:
        await engine.dispose()
    return {str(tenant_id): result.model_dump() for tenant_id, result in results.items()}


@celery_app.task(name="calendar_sync.drain")
def drain_calendar_sync():
    """Periodic drain of all tenants' calendar sync backlogs."""
    return asyncio.run(_drain())
