"""Pydantic schemas for records, jobs and API responses."""

from donorsync.schemas.crm import (
    NormalizedConstituent,
    NormalizedDonation,
    NormalizedRecord,
    RecordKind,
)
from donorsync.schemas.sync import (
    SyncJob,
    SyncJobResponse,
    SyncStatus,
    SyncStatusResponse,
    SyncTriggerResponse,
    SyncType,
)

__all__ = [
    # Records
    "NormalizedConstituent",
    "NormalizedDonation",
    "NormalizedRecord",
    "RecordKind",
    # Sync
    "SyncJob",
    "SyncJobResponse",
    "SyncStatus",
    "SyncStatusResponse",
    "SyncTriggerResponse",
    "SyncType",
]
