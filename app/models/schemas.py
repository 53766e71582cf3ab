"""
Pydantic models for the share ingest API.

Shared data models across the application.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# =====================================================
# Job Models
# =====================================================

JOB_STARTED = "started"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_INTERRUPTED = "interrupted"

TERMINAL_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED, JOB_INTERRUPTED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """State of one ingestion run."""
    job_id: str
    status: str = JOB_STARTED  # started, running, completed, failed, interrupted
    progress: float = Field(default=0.0, ge=0, le=100)
    should_stop: bool = False
    result: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# =====================================================
# Share Job API Models
# =====================================================

class StartJobRequest(BaseModel):
    """Request to ingest a share."""
    share: str
    username: str
    password: str
    ignores: List[str] = []


class StartJobResponse(BaseModel):
    """Response for a launched ingestion job."""
    job_id: str
    share: str
    success: bool


class StopResponse(BaseModel):
    """Response for stop requests."""
    message: str
    stopped: int = 0


# =====================================================
# Mount API Models
# =====================================================

class MountRequest(BaseModel):
    """Request to mount a share locally."""
    share: str
    username: str
    password: str


class MountRecordModel(BaseModel):
    """Mount ledger entry as exposed by the API."""
    mount_id: str
    mount_point: str
    target_path: str
    list_name: str
    mount_time: str
    status: str  # mounted, unmounted, failed


# =====================================================
# Response Models
# =====================================================

class OperationStatus(BaseModel):
    """Generic operation status."""
    status: str
    message: str
    details: Optional[Dict[str, Any]] = None
