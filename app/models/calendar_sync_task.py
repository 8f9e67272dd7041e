import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.core.config import settings
from app.core.database import Base


class SyncAction(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncTaskStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # waiting out a backoff
    DEAD = "dead"


ACTIVE_STATUSES = (
    SyncTaskStatus.PENDING.value,
    SyncTaskStatus.RUNNING.value,
    SyncTaskStatus.FAILED.value,
)

_ACTIVE_PREDICATE = text("status IN ('pending', 'running', 'failed')")


class CalendarSyncTask(Base):
    """Durable request to mirror one reservation mutation to the external calendar."""

    __tablename__ = "calendar_sync_tasks"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(
        UUID(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True
    )
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False)
    action = Column(String(10), nullable=False)

    # Target refs. Resolved against the reservation and staff at run time when unset.
    calendar_id = Column(String(255), nullable=True)
    event_id = Column(String(255), nullable=True)

    status = Column(
        String(20), nullable=False, default=SyncTaskStatus.PENDING.value, index=True
    )
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(
        Integer, nullable=False, default=settings.CALENDAR_SYNC_MAX_ATTEMPTS
    )
    next_run_at = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text, nullable=True)
    rerun_requested = Column(Boolean, nullable=False, default=False)

    locked_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    succeeded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_calendar_sync_tasks_claim", "tenant_id", "status", "next_run_at"),
        Index(
            "uq_calendar_sync_tasks_active_key",
            "tenant_id",
            "reservation_id",
            "action",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    def __repr__(self):
        return (
            f"<CalendarSyncTask(id={self.id}, action='{self.action}', "
            f"status='{self.status}', attempts={self.attempts}/{self.max_attempts})>"
        )
