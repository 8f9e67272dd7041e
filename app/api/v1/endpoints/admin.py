from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.clock import get_calendar_client_factory, get_now
from app.api.deps.tenant import TenantContext, get_tenant_context
from app.core.database import get_db
from app.schemas.calendar_sync import (
    CalendarSyncSummary,
    ProcessRequest,
    ProcessResult,
    ReclaimResult,
    RetryRequest,
    RetryResult,
)
from app.schemas.reservation import ReservationResponse, ReservationStatusUpdate
from app.services.calendar_sync import CalendarSyncQueue
from app.services.reservation import ReservationService

router = APIRouter()


@router.patch("/reservations/{reservation_uuid}/status", response_model=ReservationResponse)
async def update_reservation_status(
    reservation_uuid: UUID,
    status_data: ReservationStatusUpdate,
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """
    Admin status transition.

    Allowed: pending -> confirmed, confirmed -> completed, and
    pending/confirmed -> canceled or no_show. Canceling still honours the
    store's cancel deadline.
    """
    service = ReservationService(db)
    return await service.update_status(tenant.tenant_id, reservation_uuid, status_data, now)


@router.get("/calendar-sync/summary", response_model=CalendarSyncSummary)
async def get_calendar_sync_summary(
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarSyncQueue(db).summary(tenant.tenant_id)


@router.post("/calendar-sync/process", response_model=ProcessResult)
async def process_calendar_sync(
    request: Optional[ProcessRequest] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    client_factory=Depends(get_calendar_client_factory),
    db: AsyncSession = Depends(get_db),
):
    """Drain up to `limit` due tasks for this tenant right away."""
    request = request or ProcessRequest()
    client = await client_factory(db, tenant.tenant_id)
    try:
        return await CalendarSyncQueue(db).run_batch(
            tenant.tenant_id, client, lambda: now, request.limit
        )
    finally:
        await client.aclose()


@router.post("/calendar-sync/retry", response_model=RetryResult)
async def retry_calendar_sync(
    request: Optional[RetryRequest] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Reset dead (and optionally failed) tasks back to pending."""
    request = request or RetryRequest()
    return await CalendarSyncQueue(db).retry(
        tenant.tenant_id, now, include_failed=request.include_failed, limit=request.limit
    )


@router.post("/calendar-sync/reclaim", response_model=ReclaimResult)
async def reclaim_calendar_sync(
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Requeue running tasks whose worker lease has expired."""
    return await CalendarSyncQueue(db).reclaim_stale(now, tenant_id=tenant.tenant_id)
