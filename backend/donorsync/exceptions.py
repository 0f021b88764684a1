"""Error types raised by the CRM sync engine."""

import math
from datetime import timedelta


class DonorSyncError(Exception):
    """Base class for all sync engine errors."""


# --- Pre-flight rejections (returned to the caller of start_sync) ---


class SyncRejectedError(DonorSyncError):
    """A sync trigger was refused before any job was created."""


class UnknownProviderError(SyncRejectedError):
    def __init__(self, provider: str):
        super().__init__(f"Invalid CRM provider: {provider}")
        self.provider = provider


class AlreadyRunningError(SyncRejectedError):
    def __init__(self, job_id: str):
        super().__init__(
            "A sync is already in progress. Please wait for it to complete."
        )
        self.job_id = job_id


class TooSoonError(SyncRejectedError):
    def __init__(self, retry_after: timedelta, min_interval: timedelta):
        self.retry_after = retry_after
        self.min_interval = min_interval
        super().__init__(
            f"Please wait at least {format_wait(min_interval)} between syncs. "
            f"Try again in {format_wait(retry_after)}."
        )


class NoCredentialError(SyncRejectedError):
    def __init__(self, provider: str):
        super().__init__("No API key found. Please connect your CRM first.")
        self.provider = provider


class ServiceShuttingDownError(SyncRejectedError):
    def __init__(self):
        super().__init__("Sync service is shutting down")


# --- Collaborator errors ---


class CredentialError(DonorSyncError):
    """The credential provider could not produce a usable secret."""


class CredentialNotFoundError(CredentialError):
    pass


class JobStoreError(DonorSyncError):
    """A sync job row could not be written."""


class RecordStoreError(DonorSyncError):
    """A batch could not be merged into the record store."""


class ProviderError(DonorSyncError):
    """A CRM provider request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """The provider rejected the credential (revoked or malformed key)."""


class ProviderTransientError(ProviderError):
    """Timeouts, connection drops, rate limiting and 5xx gateway errors."""


# --- Run loop control ---


class SyncCancelledError(DonorSyncError):
    pass


class JobClosedError(DonorSyncError):
    """The job row was closed by someone else while the run was in flight."""


def format_wait(duration: timedelta) -> str:
    """Render a wait like '4 minutes 10 seconds'."""
    total = max(0, math.ceil(duration.total_seconds()))
    minutes, seconds = divmod(total, 60)
    parts = []
    if minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    if seconds or not parts:
        parts.append(f"{seconds} second{'s' if seconds != 1 else ''}")
    return " ".join(parts)
