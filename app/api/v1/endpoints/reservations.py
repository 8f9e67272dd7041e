from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.clock import get_now
from app.api.deps.tenant import TenantContext, get_tenant_context
from app.core.database import get_db
from app.schemas.reservation import (
    ReservationCancel,
    ReservationCreate,
    ReservationListResponse,
    ReservationReschedule,
    ReservationResponse,
)
from app.services.reservation import ReservationService

router = APIRouter()


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    reservation_data: ReservationCreate,
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """
    Book a slot.

    Runs the booking policy, schedule and conflict checks and returns the
    pending reservation, or a structured rejection.
    """
    service = ReservationService(db)
    return await service.create_reservation(tenant.tenant_id, reservation_data, now)


@router.get("/by-date/{reservation_date}", response_model=ReservationListResponse)
async def list_reservations_by_date(
    reservation_date: date,
    include_canceled: bool = Query(False),
    store_id: Optional[int] = Query(None),
    staff_id: Optional[int] = Query(None),
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    service = ReservationService(db)
    reservations = await service.list_by_date(
        tenant.tenant_id,
        reservation_date,
        include_canceled=include_canceled,
        store_id=store_id,
        staff_id=staff_id,
    )
    return ReservationListResponse(
        date=reservation_date,
        reservations=[ReservationResponse.model_validate(r) for r in reservations],
    )


@router.get("/{reservation_uuid}", response_model=ReservationResponse)
async def get_reservation(
    reservation_uuid: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    service = ReservationService(db)
    return await service.get_reservation(tenant.tenant_id, reservation_uuid)


@router.put("/{reservation_uuid}", response_model=ReservationResponse)
async def reschedule_reservation(
    reservation_uuid: UUID,
    reschedule_data: ReservationReschedule,
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Move a reservation to a new date, time or staff member."""
    service = ReservationService(db)
    return await service.reschedule_reservation(
        tenant.tenant_id, reservation_uuid, reschedule_data, now
    )


@router.post("/{reservation_uuid}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_uuid: UUID,
    cancel_data: Optional[ReservationCancel] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    """Customer cancel, allowed until the store's cancel deadline."""
    service = ReservationService(db)
    return await service.cancel_reservation(
        tenant.tenant_id, reservation_uuid, cancel_data or ReservationCancel(), now
    )
