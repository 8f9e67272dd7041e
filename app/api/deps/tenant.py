from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.tenant import Tenant

logger = structlog.get_logger(__name__)


class TenantContext:
    """Tenant context for multi-tenant operations."""

    def __init__(self, tenant: Tenant):
        self.tenant = tenant
        self.tenant_id = tenant.id
        self.slug = tenant.slug


async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(
        None, description="Tenant id or slug for multi-tenant operations"
    ),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    """
    Resolve the tenant named by the X-Tenant-ID header.

    Accepts either the numeric tenant id or the tenant slug. Every other
    dependency and service call is scoped to the returned tenant.
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )

    query = select(Tenant)
    if x_tenant_id.isdigit():
        query = query.where(Tenant.id == int(x_tenant_id))
    else:
        query = query.where(Tenant.slug == x_tenant_id)

    result = await db.execute(query)
    tenant = result.scalar_one_or_none()

    if not tenant:
        logger.warning("Tenant not found for context", tenant=x_tenant_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found"
        )

    if not tenant.is_active:
        logger.warning("Inactive tenant access attempted", tenant_id=tenant.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is inactive"
        )

    return TenantContext(tenant)
