"""Sync job schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


OPEN_STATUSES = (SyncStatus.PENDING, SyncStatus.IN_PROGRESS)


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"  # reserved, not scheduled yet


class SyncJob(BaseModel):
    """One row of crm_sync_logs."""

    id: str
    account_id: str
    provider: str
    sync_type: SyncType = SyncType.FULL
    status: SyncStatus = SyncStatus.PENDING
    records_synced: int = 0
    records_failed: int = 0
    started_at: datetime
    completed_at: datetime | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in OPEN_STATUSES


class SyncTriggerResponse(BaseModel):
    """Response after triggering a sync."""

    success: bool = True
    sync_id: str
    message: str


class SyncJobResponse(BaseModel):
    """Single sync job status."""

    id: str
    provider: str
    sync_type: SyncType
    status: SyncStatus
    records_synced: int
    records_failed: int
    started_at: datetime
    completed_at: datetime | None
    error_message: str | None

    @classmethod
    def from_job(cls, job: SyncJob) -> "SyncJobResponse":
        return cls(
            id=job.id,
            provider=job.provider,
            sync_type=job.sync_type,
            status=job.status,
            records_synced=job.records_synced,
            records_failed=job.records_failed,
            started_at=job.started_at,
            completed_at=job.completed_at,
            error_message=job.error_message,
        )


class SyncStatusResponse(BaseModel):
    """Latest sync jobs for one provider."""

    logs: list[SyncJobResponse]
