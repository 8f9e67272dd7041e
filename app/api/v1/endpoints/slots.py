from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.clock import get_now
from app.api.deps.tenant import TenantContext, get_tenant_context
from app.core.database import get_db
from app.schemas.scheduling import DaySlots, WeekSlots
from app.services.slots import SlotService

router = APIRouter()


@router.get("", response_model=DaySlots)
async def get_day_slots(
    date: date = Query(..., description="Civil date in the store timezone"),
    staff_id: Optional[int] = Query(None, description="Restrict to one staff member"),
    duration: Optional[int] = Query(
        None, ge=15, le=480, description="Service duration in minutes"
    ),
    store_id: Optional[int] = Query(None),
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
) -> DaySlots:
    """
    Get the slot grid for one date.

    Each slot lists the staff members who can take a booking of the
    requested duration starting at that time.
    """
    return await SlotService(db).get_day_slots(
        tenant.tenant_id,
        date,
        now,
        staff_id=staff_id,
        duration_minutes=duration,
        store_id=store_id,
    )


@router.get("/week", response_model=WeekSlots)
async def get_week_slots(
    start_date: date = Query(..., description="First day of the seven-day view"),
    staff_id: Optional[int] = Query(None),
    duration: Optional[int] = Query(None, ge=15, le=480),
    store_id: Optional[int] = Query(None),
    tenant: TenantContext = Depends(get_tenant_context),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
) -> WeekSlots:
    """Get seven consecutive days of slots starting at start_date."""
    return await SlotService(db).get_week_slots(
        tenant.tenant_id,
        start_date,
        now,
        staff_id=staff_id,
        duration_minutes=duration,
        store_id=store_id,
    )
