"""Tests for sync job persistence."""

from datetime import timedelta
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from conftest import ACCOUNT_ID, PROVIDER, T0
from donorsync.exceptions import JobStoreError
from donorsync.schemas.sync import SyncJob, SyncStatus, SyncType
from donorsync.services.job_store import InMemoryJobStore, SupabaseJobStore


class TestInMemoryJobStore:
    @pytest.fixture(autouse=True)
    def setup(self):
        self.store = InMemoryJobStore()

    def test_create_job_is_pending_with_zero_counters(self):
        job = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)

        assert job.status == SyncStatus.PENDING
        assert job.records_synced == 0
        assert job.records_failed == 0
        assert job.started_at == T0
        assert self.store.get_job(job.id) == job

    def test_lifecycle(self):
        job = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)

        assert self.store.mark_in_progress(job.id).status == SyncStatus.IN_PROGRESS
        assert self.store.update_progress(job.id, 40, 2).records_synced == 40

        done = self.store.mark_completed(
            job.id, 50, 2, completed_at=T0 + timedelta(minutes=3), metadata={"duration_ms": 5}
        )
        assert done.status == SyncStatus.COMPLETED
        assert done.records_synced == 50
        assert done.completed_at == T0 + timedelta(minutes=3)
        assert done.metadata == {"duration_ms": 5}

    def test_terminal_rows_are_never_modified(self):
        job = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)
        self.store.mark_failed(job.id, "sync timed out", completed_at=T0)

        assert self.store.update_progress(job.id, 99, 0) is None
        assert self.store.mark_completed(job.id, 99, 0, completed_at=T0) is None
        assert self.store.mark_failed(job.id, "again", completed_at=T0) is None

        row = self.store.get_job(job.id)
        assert row.status == SyncStatus.FAILED
        assert row.error_message == "sync timed out"
        assert row.records_synced == 0

    def test_mark_failed_keeps_counters_unless_given(self):
        job = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)
        self.store.update_progress(job.id, 12, 1)

        failed = self.store.mark_failed(job.id, "boom", completed_at=T0)

        assert failed.records_synced == 12
        assert failed.records_failed == 1

    def test_missing_job(self):
        assert self.store.get_job("nope") is None
        assert self.store.mark_in_progress("nope") is None

    def test_get_active_job_picks_newest_in_progress(self):
        older = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)
        newer = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0 + timedelta(minutes=1))
        self.store.mark_in_progress(older.id)
        self.store.mark_in_progress(newer.id)
        self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0 + timedelta(minutes=2))

        assert self.store.get_active_job(ACCOUNT_ID, PROVIDER).id == newer.id
        assert self.store.get_active_job(ACCOUNT_ID, "other") is None

    def test_get_last_completed_orders_by_completion(self):
        first = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)
        second = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0 + timedelta(minutes=1))
        self.store.mark_completed(first.id, 1, 0, completed_at=T0 + timedelta(minutes=10))
        self.store.mark_completed(second.id, 1, 0, completed_at=T0 + timedelta(minutes=5))

        assert self.store.get_last_completed_job(ACCOUNT_ID, PROVIDER).id == first.id

    def test_list_jobs_newest_first(self):
        ids = [
            self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0 + timedelta(minutes=i)).id
            for i in range(4)
        ]
        self.store.create_job("acct-2", PROVIDER, SyncType.FULL, T0)

        jobs = self.store.list_jobs(ACCOUNT_ID, PROVIDER, limit=3)

        assert [j.id for j in jobs] == list(reversed(ids))[:3]

    def test_returned_jobs_are_copies(self):
        job = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)
        job.metadata["touched"] = True

        assert self.store.get_job(job.id).metadata == {}


class TestSupabaseJobStore:
    @pytest.fixture(autouse=True)
    def setup(self):
        self.db = MagicMock()
        self.store = SupabaseJobStore(self.db)

    def row(self, **overrides):
        row = {
            "id": "job-1",
            "account_id": ACCOUNT_ID,
            "provider": PROVIDER,
            "sync_type": "full",
            "status": "pending",
            "records_synced": 0,
            "records_failed": 0,
            "started_at": T0.isoformat(),
            "completed_at": None,
            "error_message": None,
            "metadata": None,
            "created_at": T0.isoformat(),
        }
        row.update(overrides)
        return row

    def test_create_job_serializes_enums_and_datetimes(self):
        self.db.create_crm_sync_log.return_value = self.row()

        job = self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)

        self.db.create_crm_sync_log.assert_called_once_with({
            "account_id": ACCOUNT_ID,
            "provider": PROVIDER,
            "sync_type": "full",
            "status": "pending",
            "records_synced": 0,
            "records_failed": 0,
            "started_at": T0.isoformat(),
        })
        assert job.id == "job-1"
        assert job.started_at == T0
        assert job.metadata == {}

    def test_create_job_wraps_api_errors(self):
        self.db.create_crm_sync_log.side_effect = APIError({"message": "relation does not exist"})

        with pytest.raises(JobStoreError, match="relation does not exist"):
            self.store.create_job(ACCOUNT_ID, PROVIDER, SyncType.FULL, T0)

    def test_mark_completed_goes_through_open_update(self):
        self.db.update_open_crm_sync_log.return_value = self.row(
            status="completed", records_synced=5, completed_at=T0.isoformat()
        )

        job = self.store.mark_completed("job-1", 5, 0, completed_at=T0, metadata={"kinds": {}})

        self.db.update_open_crm_sync_log.assert_called_once_with("job-1", {
            "status": "completed",
            "records_synced": 5,
            "records_failed": 0,
            "completed_at": T0.isoformat(),
            "metadata": {"kinds": {}},
        })
        assert job.status == SyncStatus.COMPLETED

    def test_update_wraps_api_errors(self):
        self.db.update_open_crm_sync_log.side_effect = APIError(
            {"message": "upstream connect error", "code": "503"}
        )

        with pytest.raises(JobStoreError, match="upstream connect error"):
            self.store.update_progress("job-1", 3, 0)

    def test_update_wraps_transport_errors(self):
        self.db.update_open_crm_sync_log.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(JobStoreError, match="connection refused"):
            self.store.mark_failed("job-1", "boom", completed_at=T0)

    def test_update_on_terminal_row_returns_none(self):
        self.db.update_open_crm_sync_log.return_value = None

        assert self.store.update_progress("job-1", 3, 0) is None

    def test_active_and_last_completed_queries(self):
        self.db.get_latest_crm_sync_log.return_value = None

        assert self.store.get_active_job(ACCOUNT_ID, PROVIDER) is None
        assert self.store.get_last_completed_job(ACCOUNT_ID, PROVIDER) is None

        self.db.get_latest_crm_sync_log.assert_any_call(ACCOUNT_ID, PROVIDER, "in_progress")
        self.db.get_latest_crm_sync_log.assert_any_call(
            ACCOUNT_ID, PROVIDER, "completed", order_by="completed_at"
        )

    def test_list_jobs(self):
        self.db.get_crm_sync_logs.return_value = [self.row(id="a"), self.row(id="b")]

        jobs = self.store.list_jobs(ACCOUNT_ID, PROVIDER, 5)

        self.db.get_crm_sync_logs.assert_called_once_with(ACCOUNT_ID, PROVIDER, limit=5)
        assert [job.id for job in jobs] == ["a", "b"]
        assert all(isinstance(job, SyncJob) for job in jobs)
