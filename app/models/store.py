import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.config import settings
from app.core.database import Base


class Store(Base):
    """Store-level schedule and booking policy configuration."""

    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(
        UUID(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True
    )
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    timezone = Column(String(50), nullable=False, default=settings.DEFAULT_TIMEZONE)

    # Schedule configuration. Day-of-week keys run 0 = Sunday .. 6 = Saturday.
    # {"1": {"isOpen": true, "openTime": "10:00", "closeTime": "20:00"}, ...}
    business_hours = Column(JSON, nullable=True)
    regular_holidays = Column(JSON, nullable=True)  # [0, 3]
    temporary_holidays = Column(JSON, nullable=True)  # ["2024-12-31", ...]
    temporary_open_days = Column(JSON, nullable=True)  # ["2024-01-08", ...]
    holiday_country = Column(String(2), nullable=True)  # ISO 3166 alpha-2

    # Booking policy
    slot_duration_minutes = Column(
        Integer, nullable=False, default=settings.DEFAULT_SLOT_DURATION_MINUTES
    )
    advance_booking_days = Column(
        Integer, nullable=False, default=settings.DEFAULT_ADVANCE_BOOKING_DAYS
    )
    cancel_deadline_hours = Column(
        Integer, nullable=False, default=settings.DEFAULT_CANCEL_DEADLINE_HOURS
    )
    min_lead_time_minutes = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tenant = relationship("Tenant", back_populates="stores")
    staff = relationship("Staff", back_populates="store")

    def __repr__(self):
        return f"<Store(id={self.id}, name='{self.name}', timezone='{self.timezone}')>"
