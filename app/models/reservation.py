import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class ReservationStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


class ReservationSource(enum.Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


ALLOWED_TRANSITIONS = {
    ReservationStatus.PENDING: [
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELED,
        ReservationStatus.NO_SHOW,
    ],
    ReservationStatus.CONFIRMED: [
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELED,
        ReservationStatus.NO_SHOW,
    ],
    ReservationStatus.COMPLETED: [],  # Final state
    ReservationStatus.CANCELED: [],  # Final state
    ReservationStatus.NO_SHOW: [],  # Final state
}

INACTIVE_STATUSES = (ReservationStatus.CANCELED.value, ReservationStatus.NO_SHOW.value)


class Reservation(Base):
    """A booked interval [start_time, end_time) with one staff member on one civil date."""

    __tablename__ = "reservations"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(
        UUID(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True
    )
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)

    # Participants
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    customer_name = Column(String, nullable=True)

    # Scheduling details (civil date and wall-clock in the store timezone)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Status management
    status = Column(
        String(20), nullable=False, default=ReservationStatus.PENDING.value, index=True
    )
    status_changed_at = Column(DateTime(timezone=True), nullable=True)
    source = Column(String(20), nullable=False, default=ReservationSource.CUSTOMER.value)

    customer_note = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    reschedule_count = Column(Integer, default=0, nullable=False)

    # External calendar cross-reference, written back by the sync queue
    external_calendar_id = Column(String(255), nullable=True)
    external_event_id = Column(String(255), nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_end_after_start"),
        CheckConstraint("duration_minutes > 0", name="check_positive_duration"),
        Index("ix_reservations_staff_date", "tenant_id", "staff_id", "date"),
    )

    staff = relationship("Staff")
    customer = relationship("Customer")

    def can_transition_to(self, new_status: ReservationStatus) -> bool:
        """Check if reservation can transition to the new status."""
        current = ReservationStatus(self.status)
        return new_status in ALLOWED_TRANSITIONS.get(current, [])

    def transition_to(
        self,
        new_status: ReservationStatus,
        now: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        """Transition reservation to new status with validation."""
        if not self.can_transition_to(new_status):
            return False

        self.status = new_status.value
        self.status_changed_at = now

        if new_status == ReservationStatus.CANCELED:
            self.canceled_at = now
            if reason:
                self.cancel_reason = reason

        return True

    @property
    def is_active(self) -> bool:
        """Active reservations block the staff member's time."""
        return self.status not in INACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<Reservation(id={self.id}, status='{self.status}', "
            f"date='{self.date}', start='{self.start_time}', staff_id={self.staff_id})>"
        )
