from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.staff import Staff
from app.models.store import Store


async def get_store(
    db: AsyncSession, tenant_id: int, store_id: Optional[int] = None
) -> Store:
    """Load the requested store, or the tenant's first active store."""
    query = select(Store).where(Store.tenant_id == tenant_id, Store.is_active.is_(True))
    if store_id is not None:
        query = query.where(Store.id == store_id)
    result = await db.execute(query.order_by(Store.id).limit(1))
    store = result.scalar_one_or_none()
    if not store:
        raise NotFoundError("Store", store_id)
    return store


async def get_staff(
    db: AsyncSession, tenant_id: int, staff_id: int, for_update: bool = False
) -> Staff:
    query = select(Staff).where(
        Staff.tenant_id == tenant_id, Staff.id == staff_id, Staff.is_active.is_(True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    staff = result.scalar_one_or_none()
    if not staff:
        raise NotFoundError("Staff", staff_id)
    return staff


async def list_active_staff(
    db: AsyncSession, tenant_id: int, store_id: int
) -> List[Staff]:
    result = await db.execute(
        select(Staff)
        .where(
            Staff.tenant_id == tenant_id,
            Staff.store_id == store_id,
            Staff.is_active.is_(True),
        )
        .order_by(Staff.display_order, Staff.id)
    )
    return list(result.scalars().all())
