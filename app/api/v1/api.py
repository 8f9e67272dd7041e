from fastapi import APIRouter

from app.api.v1.endpoints import admin, reservations, slots

api_router = APIRouter()

# Availability (read path)
api_router.include_router(slots.router, prefix="/slots", tags=["slots"])

# Reservation booking, reschedule and cancel
api_router.include_router(
    reservations.router, prefix="/reservations", tags=["reservations"]
)

# Admin status changes and calendar sync operations
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
