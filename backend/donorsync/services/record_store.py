"""Normalized record persistence, merged on (account_id, provider, external_id)."""

import threading
from abc import ABC, abstractmethod

import httpx
from postgrest.exceptions import APIError

from donorsync.database import Database
from donorsync.exceptions import RecordStoreError
from donorsync.schemas.crm import NormalizedRecord, RecordKind, RECORD_TYPES


class RecordStore(ABC):
    @abstractmethod
    def upsert_batch(self, records: list[NormalizedRecord]) -> int:
        """
        Merge a batch of records.

        Returns:
            Number of records written.

        Raises:
            RecordStoreError: If the batch could not be written. The whole
                batch counts as failed; there is no partial accounting.
        """


def _group_by_table(records: list[NormalizedRecord]) -> dict[str, list[NormalizedRecord]]:
    grouped: dict[str, list[NormalizedRecord]] = {}
    for record in records:
        if record.account_id is None:
            raise RecordStoreError(
                f"Record {record.provider}:{record.external_id} has no account_id"
            )
        grouped.setdefault(record.table, []).append(record)
    return grouped


class SupabaseRecordStore(RecordStore):
    """Writes crm_constituents / crm_donations through PostgREST upserts."""

    def __init__(self, db: Database):
        self.db = db

    def upsert_batch(self, records):
        if not records:
            return 0
        written = 0
        for table, rows in _group_by_table(records).items():
            try:
                self.db.upsert_crm_records(table, [r.to_row() for r in rows])
            except APIError as e:
                raise RecordStoreError(f"Upsert into {table} failed: {e.message}") from e
            except httpx.HTTPError as e:
                raise RecordStoreError(f"Upsert into {table} failed: {e}") from e
            written += len(rows)
        return written


class InMemoryRecordStore(RecordStore):
    """Dict-backed store keyed by table and merge key."""

    def __init__(self):
        self._records: dict[tuple[str, str, str, str], NormalizedRecord] = {}
        self._lock = threading.Lock()

    def upsert_batch(self, records):
        grouped = _group_by_table(records)
        with self._lock:
            for table, rows in grouped.items():
                for record in rows:
                    key = (table, *record.merge_key)
                    self._records[key] = record.model_copy(deep=True)
        return len(records)

    def get_records(
        self,
        kind: RecordKind,
        account_id: str | None = None,
        provider: str | None = None,
    ) -> list[NormalizedRecord]:
        table = RECORD_TYPES[kind].table
        with self._lock:
            return [
                record.model_copy(deep=True)
                for (record_table, acct, prov, _), record in self._records.items()
                if record_table == table
                and (account_id is None or acct == account_id)
                and (provider is None or prov == provider)
            ]

    def count(self) -> int:
        with self._lock:
            return len(self._records)
