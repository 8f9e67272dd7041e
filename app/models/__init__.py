# Import all models to ensure they are registered with SQLAlchemy
from . import (
    calendar_integration,
    calendar_sync_task,
    customer,
    reservation,
    staff,
    store,
    tenant,
)

__all__ = [
    "calendar_integration",
    "calendar_sync_task",
    "customer",
    "reservation",
    "staff",
    "store",
    "tenant",
]
