"""Sync job persistence.

Two implementations share one interface: ``SupabaseJobStore`` writes the
``crm_sync_logs`` table, ``InMemoryJobStore`` keeps rows in a dict and backs
the tests and local runs without Supabase.

Every update method returns the updated job, or ``None`` when the row is
missing or already terminal. Terminal rows are never modified.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx
from postgrest.exceptions import APIError

from donorsync.database import Database
from donorsync.exceptions import JobStoreError
from donorsync.schemas.sync import SyncJob, SyncStatus, SyncType


class JobStore(ABC):
    """Persistence for SyncJob rows."""

    @abstractmethod
    def create_job(
        self,
        account_id: str,
        provider: str,
        sync_type: SyncType,
        started_at: datetime,
    ) -> SyncJob:
        """Insert a pending job with zeroed counters."""

    @abstractmethod
    def get_job(self, job_id: str) -> SyncJob | None: ...

    @abstractmethod
    def get_active_job(self, account_id: str, provider: str) -> SyncJob | None:
        """Newest in_progress job for the key."""

    @abstractmethod
    def get_last_completed_job(self, account_id: str, provider: str) -> SyncJob | None:
        """Most recently completed job for the key."""

    @abstractmethod
    def list_jobs(self, account_id: str, provider: str, limit: int) -> list[SyncJob]:
        """Newest first."""

    @abstractmethod
    def _update_open(self, job_id: str, data: dict[str, Any]) -> SyncJob | None: ...

    def mark_in_progress(self, job_id: str) -> SyncJob | None:
        return self._update_open(job_id, {"status": SyncStatus.IN_PROGRESS})

    def update_progress(
        self, job_id: str, records_synced: int, records_failed: int
    ) -> SyncJob | None:
        return self._update_open(job_id, {
            "records_synced": records_synced,
            "records_failed": records_failed,
        })

    def mark_completed(
        self,
        job_id: str,
        records_synced: int,
        records_failed: int,
        completed_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> SyncJob | None:
        data: dict[str, Any] = {
            "status": SyncStatus.COMPLETED,
            "records_synced": records_synced,
            "records_failed": records_failed,
            "completed_at": completed_at,
        }
        if metadata is not None:
            data["metadata"] = metadata
        return self._update_open(job_id, data)

    def mark_failed(
        self,
        job_id: str,
        error_message: str,
        completed_at: datetime,
        records_synced: int | None = None,
        records_failed: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SyncJob | None:
        data: dict[str, Any] = {
            "status": SyncStatus.FAILED,
            "error_message": error_message,
            "completed_at": completed_at,
        }
        if records_synced is not None:
            data["records_synced"] = records_synced
        if records_failed is not None:
            data["records_failed"] = records_failed
        if metadata is not None:
            data["metadata"] = metadata
        return self._update_open(job_id, data)


class SupabaseJobStore(JobStore):
    """Job rows in the crm_sync_logs table."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _serialize(data: dict[str, Any]) -> dict[str, Any]:
        row = {}
        for key, value in data.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, (SyncStatus, SyncType)):
                value = value.value
            row[key] = value
        return row

    @staticmethod
    def _to_job(row: dict | None) -> SyncJob | None:
        if row is None:
            return None
        if row.get("metadata") is None:
            row = {**row, "metadata": {}}
        return SyncJob.model_validate(row)

    def create_job(self, account_id, provider, sync_type, started_at):
        try:
            row = self.db.create_crm_sync_log(self._serialize({
                "account_id": account_id,
                "provider": provider,
                "sync_type": sync_type,
                "status": SyncStatus.PENDING,
                "records_synced": 0,
                "records_failed": 0,
                "started_at": started_at,
            }))
        except APIError as e:
            raise JobStoreError(f"Failed to create sync log: {e.message}") from e
        return self._to_job(row)

    def get_job(self, job_id):
        return self._to_job(self.db.get_crm_sync_log_by_id(job_id))

    def get_active_job(self, account_id, provider):
        return self._to_job(self.db.get_latest_crm_sync_log(
            account_id, provider, SyncStatus.IN_PROGRESS.value
        ))

    def get_last_completed_job(self, account_id, provider):
        return self._to_job(self.db.get_latest_crm_sync_log(
            account_id, provider, SyncStatus.COMPLETED.value, order_by="completed_at"
        ))

    def list_jobs(self, account_id, provider, limit):
        rows = self.db.get_crm_sync_logs(account_id, provider, limit=limit)
        return [self._to_job(row) for row in rows]

    def _update_open(self, job_id, data):
        try:
            row = self.db.update_open_crm_sync_log(job_id, self._serialize(data))
        except APIError as e:
            raise JobStoreError(f"Failed to update sync log {job_id}: {e.message}") from e
        except httpx.HTTPError as e:
            raise JobStoreError(f"Failed to update sync log {job_id}: {e}") from e
        return self._to_job(row)


class InMemoryJobStore(JobStore):
    """Thread-safe dict-backed job store."""

    def __init__(self):
        self._jobs: dict[str, SyncJob] = {}
        self._lock = threading.Lock()

    def add(self, job: SyncJob) -> SyncJob:
        """Insert a fully-formed job row (fixtures, imports)."""
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def create_job(self, account_id, provider, sync_type, started_at):
        job = SyncJob(
            id=str(uuid.uuid4()),
            account_id=account_id,
            provider=provider,
            sync_type=sync_type,
            status=SyncStatus.PENDING,
            started_at=started_at,
            created_at=started_at,
        )
        return self.add(job).model_copy(deep=True)

    def get_job(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def _matching(self, account_id, provider, status=None) -> list[SyncJob]:
        return [
            job for job in self._jobs.values()
            if job.account_id == account_id
            and job.provider == provider
            and (status is None or job.status == status)
        ]

    def get_active_job(self, account_id, provider):
        with self._lock:
            jobs = self._matching(account_id, provider, SyncStatus.IN_PROGRESS)
            if not jobs:
                return None
            return max(jobs, key=lambda j: j.started_at).model_copy(deep=True)

    def get_last_completed_job(self, account_id, provider):
        with self._lock:
            jobs = self._matching(account_id, provider, SyncStatus.COMPLETED)
            if not jobs:
                return None
            return max(jobs, key=lambda j: j.completed_at).model_copy(deep=True)

    def list_jobs(self, account_id, provider, limit):
        with self._lock:
            jobs = sorted(
                self._matching(account_id, provider),
                key=lambda j: j.started_at,
                reverse=True,
            )
            return [job.model_copy(deep=True) for job in jobs[:limit]]

    def _update_open(self, job_id, data):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return None
            updated = job.model_copy(update=data, deep=True)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)
