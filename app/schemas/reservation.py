from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.reservation import ReservationSource


class AdminStatus(str, Enum):
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


class ReservationCreate(BaseModel):
    staff_id: int
    date: date
    start_time: time
    duration_minutes: Optional[int] = Field(None, ge=15, le=480)
    store_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_note: Optional[str] = None
    source: ReservationSource = ReservationSource.CUSTOMER


class ReservationReschedule(BaseModel):
    date: date
    start_time: time
    duration_minutes: Optional[int] = Field(None, ge=15, le=480)
    staff_id: Optional[int] = None


class ReservationCancel(BaseModel):
    reason: Optional[str] = None
    customer_id: Optional[int] = None


class ReservationStatusUpdate(BaseModel):
    status: AdminStatus
    reason: Optional[str] = None


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: UUID
    store_id: int
    staff_id: int
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    status: str
    source: str
    customer_note: Optional[str] = None
    cancel_reason: Optional[str] = None
    canceled_at: Optional[datetime] = None
    reschedule_count: int = 0
    external_calendar_id: Optional[str] = None
    external_event_id: Optional[str] = None


class ReservationListResponse(BaseModel):
    date: date
    reservations: List[ReservationResponse] = Field(default_factory=list)
