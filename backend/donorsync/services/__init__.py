"""Business logic services."""

from donorsync.services.sync_service import SyncCoordinator, build_sync_coordinator
from donorsync.services.job_store import InMemoryJobStore, JobStore, SupabaseJobStore
from donorsync.services.record_store import (
    InMemoryRecordStore,
    RecordStore,
    SupabaseRecordStore,
)
from donorsync.services.rate_limiter import RateLimiter

__all__ = [
    "InMemoryJobStore",
    "InMemoryRecordStore",
    "JobStore",
    "RateLimiter",
    "RecordStore",
    "SupabaseJobStore",
    "SupabaseRecordStore",
    "SyncCoordinator",
    "build_sync_coordinator",
]
