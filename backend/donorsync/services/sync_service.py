"""Sync service - single-flight CRM syncs per account and provider.

``SyncCoordinator.start_sync`` runs the pre-flight checks on the caller's
thread, creates the job row and hands the fetch/merge loop to a daemon
thread, returning before any record is fetched. Status is read back from the
job store, never from the running loop.

Pre-flight, in order:
    1. Concurrency guard. An in_progress job younger than the stale threshold
       rejects the trigger; an older one is marked failed ("sync timed out")
       and the trigger proceeds.
    2. Minimum interval since the last completed job.
    3. Credential resolution.
    4. Job creation (pending -> in_progress) and launch.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from donorsync.config import Settings, SyncConfig
from donorsync.database import Database, get_admin_client
from donorsync.exceptions import (
    AlreadyRunningError,
    CredentialError,
    JobClosedError,
    JobStoreError,
    NoCredentialError,
    RecordStoreError,
    ServiceShuttingDownError,
    SyncCancelledError,
    TooSoonError,
    format_wait,
)
from donorsync.logging_config import get_logger
from donorsync.schemas.crm import NormalizedRecord, RecordKind
from donorsync.schemas.sync import SyncJob, SyncType
from donorsync.services.credential_service import (
    CredentialProvider,
    SupabaseCredentialProvider,
)
from donorsync.services.crm import AdapterRegistry, build_default_registry
from donorsync.services.crm.base import Batch, ProviderAdapter
from donorsync.services.crm.utils import sanitize_error_message, truncate
from donorsync.services.job_store import JobStore, SupabaseJobStore
from donorsync.services.rate_limiter import RateLimiter
from donorsync.services.record_store import RecordStore, SupabaseRecordStore


logger = get_logger("sync")

MAX_ERROR_MESSAGE_LENGTH = 1000
MAPPING_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncProgress:
    """Running totals for one job. Only the job's own thread touches it."""

    records_synced: int = 0
    records_failed: int = 0
    kinds: dict[str, dict[str, Any]] = field(default_factory=dict)

    def add(self, kind: RecordKind, synced: int, failed: int) -> None:
        self.records_synced += synced
        self.records_failed += failed
        totals = self.kinds.setdefault(kind.value, {"synced": 0, "failed": 0, "capped": False})
        totals["synced"] += synced
        totals["failed"] += failed

    def mark_capped(self, kind: RecordKind) -> None:
        self.kinds.setdefault(kind.value, {"synced": 0, "failed": 0, "capped": False})
        self.kinds[kind.value]["capped"] = True

    def metadata(self, started: float) -> dict[str, Any]:
        return {
            "kinds": self.kinds,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }


class SyncCoordinator:
    """Starts and runs CRM sync jobs."""

    def __init__(
        self,
        job_store: JobStore,
        record_store: RecordStore,
        credentials: CredentialProvider,
        adapters: AdapterRegistry,
        rate_limiter: RateLimiter,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.job_store = job_store
        self.record_store = record_store
        self.credentials = credentials
        self.adapters = adapters
        self.rate_limiter = rate_limiter
        self.config = config or SyncConfig()
        self.clock = clock

        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._runs: dict[str, threading.Thread] = {}
        self._runs_lock = threading.Lock()
        self._stopping = threading.Event()

    # ------------------------------------------------------------------
    # Trigger / status
    # ------------------------------------------------------------------

    def start_sync(self, account_id: str, provider: str) -> SyncJob:
        """
        Validate, create and launch a sync job.

        Returns:
            The new job, already in_progress. The run continues in the
            background; poll get_sync_status for the outcome.

        Raises:
            UnknownProviderError: No adapter is registered for the provider.
            AlreadyRunningError: A non-stale job is in progress for the key.
            TooSoonError: The last completed job is within the minimum interval.
            NoCredentialError: No usable credential for the key.
            ServiceShuttingDownError: shutdown() has been called.
        """
        adapter = self.adapters.get(provider)
        if self._stopping.is_set():
            raise ServiceShuttingDownError()

        with self._lock_for(account_id, provider):
            now = self.clock()
            self._check_not_running(account_id, provider, now)
            self._check_min_interval(account_id, provider, now)
            credential = self._resolve_credential(account_id, provider)

            job = self.job_store.create_job(account_id, provider, SyncType.FULL, now)
            job = self.job_store.mark_in_progress(job.id) or job

        logger.info(f"Started {provider} sync {job.id} for account {account_id}")
        self._launch(job, adapter, credential)
        return job

    def get_sync_status(
        self, account_id: str, provider: str, limit: int | None = None
    ) -> list[SyncJob]:
        """Most recent jobs for the key, newest first."""
        self.adapters.get(provider)
        return self.job_store.list_jobs(
            account_id, provider, limit or self.config.status_history_limit
        )

    def join(self, job_id: str, timeout: float | None = None) -> bool:
        """Wait for a launched run to finish. True when it is no longer running."""
        with self._runs_lock:
            thread = self._runs.get(job_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def shutdown(self, timeout: float | None = None) -> None:
        """Refuse new syncs and stop running ones at their next batch boundary."""
        self._stopping.set()
        with self._runs_lock:
            threads = list(self._runs.values())
        for thread in threads:
            thread.join(timeout)

    @property
    def active_job_ids(self) -> list[str]:
        with self._runs_lock:
            return list(self._runs)

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def _lock_for(self, account_id: str, provider: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault((account_id, provider), threading.Lock())

    def _check_not_running(self, account_id: str, provider: str, now: datetime) -> None:
        """Reject a live in_progress job for the key, or fail it once stale."""
        active = self.job_store.get_active_job(account_id, provider)
        if active is None:
            return

        age = now - active.started_at
        if age <= self.config.stale_threshold:
            logger.info(f"Rejected {provider} sync for {account_id}: job {active.id} still running")
            raise AlreadyRunningError(active.id)

        threshold = format_wait(self.config.stale_threshold)
        self.job_store.mark_failed(
            active.id,
            f"sync timed out (exceeded {threshold})",
            completed_at=now,
        )
        logger.warning(f"Marked stale {provider} sync {active.id} as failed (age {age})")

    def _check_min_interval(self, account_id: str, provider: str, now: datetime) -> None:
        last = self.job_store.get_last_completed_job(account_id, provider)
        if last is None or last.completed_at is None:
            return

        elapsed = now - last.completed_at
        if elapsed < self.config.min_sync_interval:
            retry_after = self.config.min_sync_interval - elapsed
            logger.info(f"Rejected {provider} sync for {account_id}: retry in {format_wait(retry_after)}")
            raise TooSoonError(retry_after, self.config.min_sync_interval)

    def _resolve_credential(self, account_id: str, provider: str) -> str:
        try:
            return self.credentials.resolve(account_id, provider)
        except CredentialError as e:
            logger.info(f"Rejected {provider} sync for {account_id}: {e}")
            raise NoCredentialError(provider) from e

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _launch(self, job: SyncJob, adapter: ProviderAdapter, credential: str) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(job, adapter, credential),
            name=f"crm-sync-{job.id}",
            daemon=True,
        )
        with self._runs_lock:
            self._runs[job.id] = thread
        thread.start()

    def _run(self, job: SyncJob, adapter: ProviderAdapter, credential: str) -> None:
        progress = SyncProgress()
        started = time.monotonic()

        try:
            for kind in adapter.record_kinds:
                self._sync_kind(job, adapter, credential, kind, progress)

            completed = self.job_store.mark_completed(
                job.id,
                progress.records_synced,
                progress.records_failed,
                completed_at=self.clock(),
                metadata=progress.metadata(started),
            )
            if completed is None:
                raise JobClosedError(f"Sync job {job.id} was closed before completion")
            logger.info(
                f"{adapter.display_name} sync {job.id} completed: "
                f"{progress.records_synced} synced, {progress.records_failed} failed"
            )
        except JobClosedError as e:
            logger.warning(f"{e}; abandoning run")
        except Exception as e:
            message = truncate(sanitize_error_message(e), MAX_ERROR_MESSAGE_LENGTH)
            logger.exception(f"{adapter.display_name} sync {job.id} failed: {message}")
            self._record_failure(job, message, progress, started)
        finally:
            with self._runs_lock:
                self._runs.pop(job.id, None)

    def _record_failure(
        self, job: SyncJob, message: str, progress: SyncProgress, started: float
    ) -> None:
        # Nothing above this thread can receive an error; a failed write here
        # leaves the row in_progress for the stale check to clean up.
        try:
            self.job_store.mark_failed(
                job.id,
                message,
                completed_at=self.clock(),
                records_synced=progress.records_synced,
                records_failed=progress.records_failed,
                metadata=progress.metadata(started),
            )
        except Exception:
            logger.exception(f"Could not record failure of sync {job.id}")

    def _sync_kind(
        self,
        job: SyncJob,
        adapter: ProviderAdapter,
        credential: str,
        kind: RecordKind,
        progress: SyncProgress,
    ) -> None:
        batches = iter(adapter.fetch_batches(credential, kind, self.config.batch_size))
        try:
            while True:
                if self._stopping.is_set():
                    raise SyncCancelledError("sync cancelled: service shutting down")

                batch = next(batches, None)
                if not batch:
                    return

                synced, failed = self._merge_batch(job, adapter, kind, batch)
                progress.add(kind, synced, failed)

                self._save_progress(job, progress)

                if (
                    kind in adapter.capped_kinds
                    and progress.records_synced >= self.config.max_records_per_account
                ):
                    logger.info(
                        f"{adapter.display_name} sync {job.id} reached the "
                        f"{self.config.max_records_per_account} record cap during {kind.value}"
                    )
                    progress.mark_capped(kind)
                    return

                self.rate_limiter.wait(adapter.provider)
        finally:
            _close(batches)

    def _save_progress(self, job: SyncJob, progress: SyncProgress) -> None:
        # Counters are rewritten after every batch and at completion
        try:
            updated = self.job_store.update_progress(
                job.id, progress.records_synced, progress.records_failed
            )
        except JobStoreError as e:
            logger.warning(f"Could not save progress of sync {job.id}: {e}")
            return
        if updated is None:
            raise JobClosedError(f"Sync job {job.id} was closed mid-run")

    def _merge_batch(
        self, job: SyncJob, adapter: ProviderAdapter, kind: RecordKind, batch: Batch
    ) -> tuple[int, int]:
        """Map and upsert one batch; returns (synced, failed)."""
        synced_at = self.clock()
        records: list[NormalizedRecord] = []
        unmapped = 0

        for raw in batch:
            try:
                record = adapter.map_record(kind, raw)
            except MAPPING_ERRORS as e:
                unmapped += 1
                logger.warning(f"Skipping unmappable {adapter.provider} {kind.value} record: {e}")
                continue
            records.append(record.model_copy(update={
                "account_id": job.account_id,
                "synced_at": synced_at,
            }))

        if not records:
            return 0, unmapped

        try:
            written = self.record_store.upsert_batch(records)
        except RecordStoreError as e:
            logger.error(f"Error upserting {adapter.provider} {kind.value} batch for sync {job.id}: {e}")
            return 0, len(batch)

        return written, unmapped


def _close(iterator: Iterator[Batch]) -> None:
    close = getattr(iterator, "close", None)
    if close is not None:
        close()


def build_sync_coordinator(settings: Settings) -> SyncCoordinator:
    """Coordinator wired to Supabase with the service-role client."""
    db = Database(get_admin_client())
    return SyncCoordinator(
        job_store=SupabaseJobStore(db),
        record_store=SupabaseRecordStore(db),
        credentials=SupabaseCredentialProvider(db),
        adapters=build_default_registry(settings),
        rate_limiter=RateLimiter(
            settings.crm_rate_limit_delay_ms,
            settings.crm_rate_limit_overrides_ms,
        ),
        config=SyncConfig.from_settings(settings),
    )
