"""Pytest configuration and fixtures."""

import os
import threading
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet

# Set test environment before importing settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("SUPABASE_URL", "https://project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ["ENABLE_CRON_JOBS"] = "false"

from donorsync.config import SyncConfig  # noqa: E402
from donorsync.schemas.crm import (  # noqa: E402
    NormalizedConstituent,
    NormalizedDonation,
    RecordKind,
)
from donorsync.services.credential_service import StaticCredentialProvider  # noqa: E402
from donorsync.services.crm.base import AdapterRegistry, ProviderAdapter  # noqa: E402
from donorsync.services.job_store import InMemoryJobStore  # noqa: E402
from donorsync.services.rate_limiter import RateLimiter  # noqa: E402
from donorsync.services.record_store import InMemoryRecordStore  # noqa: E402
from donorsync.services.sync_service import SyncCoordinator  # noqa: E402


ACCOUNT_ID = "acct-1"
PROVIDER = "fakecrm"
SECRET = "fake-api-key"
T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable wall clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAdapter(ProviderAdapter):
    """
    Scripted adapter.

    `batches` maps a RecordKind to a list of batches; an Exception in the list
    is raised instead of yielding. With `block_at=i` the generator stops
    before yielding batch i of the first kind until `release` is set.
    """

    provider = PROVIDER
    display_name = "Fake CRM"

    def __init__(self, batches=None, block_at=None):
        self.batches = batches or {}
        self.block_at = block_at
        self.waiting = threading.Event()
        self.release = threading.Event()
        self.fetched: list[tuple[RecordKind, int]] = []
        self.calls: list[tuple[str, RecordKind, int]] = []

    def fetch_batches(self, credential, kind, batch_size):
        self.calls.append((credential, kind, batch_size))
        for index, batch in enumerate(self.batches.get(kind, [])):
            if self.block_at == index and kind == self.record_kinds[0]:
                self.waiting.set()
                self.release.wait(timeout=5)
            if isinstance(batch, Exception):
                raise batch
            self.fetched.append((kind, index))
            yield batch

    def map_record(self, kind, raw):
        if raw.get("bad"):
            raise ValueError(f"record {raw.get('id')} is unmappable")
        if kind == RecordKind.ENTITIES:
            return NormalizedConstituent(
                provider=self.provider,
                external_id=raw["id"],
                full_name=raw.get("name", "Jane Donor"),
                email=(raw.get("email") or {}).get("value"),
            )
        return NormalizedDonation(
            provider=self.provider,
            external_id=raw["id"],
            amount=raw.get("amount", 25.0),
        )


def entities(*ids):
    return [{"id": external_id, "name": f"Donor {external_id}"} for external_id in ids]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def credentials():
    return StaticCredentialProvider({(ACCOUNT_ID, PROVIDER): SECRET})


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def rate_limiter(sleeps):
    return RateLimiter(200, sleep=sleeps.append)


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def make_coordinator(job_store, record_store, credentials, rate_limiter, clock):
    """Build a coordinator around the shared fakes; config fields as kwargs."""
    coordinators = []

    def _make(adapter, **config):
        config.setdefault("batch_size", 2)
        coordinator = SyncCoordinator(
            job_store=job_store,
            record_store=record_store,
            credentials=credentials,
            adapters=AdapterRegistry([adapter]),
            rate_limiter=rate_limiter,
            config=SyncConfig(**config),
            clock=clock,
        )
        coordinators.append((coordinator, adapter))
        return coordinator

    yield _make

    for coordinator, fake in coordinators:
        if isinstance(fake, FakeAdapter):
            fake.release.set()
        coordinator.shutdown(timeout=5)


@pytest.fixture
def coordinator(make_coordinator, adapter):
    return make_coordinator(adapter)
