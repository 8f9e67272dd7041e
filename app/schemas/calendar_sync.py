from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CalendarSyncSummary(BaseModel):
    pending: int = 0
    running: int = 0
    failed: int = 0
    dead: int = 0
    next_run_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ProcessRequest(BaseModel):
    limit: int = Field(20, ge=1, le=500)


class ProcessResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    dead: int = 0
    skipped: int = 0
    remaining_pending: int = 0


class RetryRequest(BaseModel):
    include_failed: bool = False
    limit: int = Field(100, ge=1, le=1000)


class RetryResult(BaseModel):
    reset: int = 0
    from_dead: int = 0
    from_failed: int = 0


class ReclaimResult(BaseModel):
    reclaimed: int = 0
    dead: int = 0
