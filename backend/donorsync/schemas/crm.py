"""Normalized CRM record schemas shared by every provider adapter."""

from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field


class RecordKind(str, Enum):
    """Record families a provider can sync."""

    ENTITIES = "entities"  # constituents / contacts / donors
    TRANSACTIONS = "transactions"  # donations / gifts


class NormalizedRecord(BaseModel):
    """Fields every merged record carries.

    (account_id, provider, external_id) is the merge key. Adapters leave
    account_id and synced_at unset; the coordinator stamps them before the
    batch is written.
    """

    kind: ClassVar[RecordKind]
    table: ClassVar[str]

    account_id: str | None = None
    provider: str
    external_id: str = Field(..., min_length=1)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime | None = None

    @property
    def merge_key(self) -> tuple[str | None, str, str]:
        return (self.account_id, self.provider, self.external_id)

    def to_row(self) -> dict[str, Any]:
        """Serialize for a PostgREST upsert."""
        return self.model_dump(mode="json")


class NormalizedConstituent(NormalizedRecord):
    """A donor / contact record."""

    kind: ClassVar[RecordKind] = RecordKind.ENTITIES
    table: ClassVar[str] = "crm_constituents"

    # Name
    first_name: str | None = None
    last_name: str | None = None
    full_name: str

    # Contact
    email: str | None = None
    phone: str | None = None

    # Address
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None

    # Giving summary
    total_lifetime_giving: float | None = None
    largest_gift: float | None = None
    last_gift_amount: float | None = None
    last_gift_date: date | None = None
    first_gift_date: date | None = None
    gift_count: int | None = None


class NormalizedDonation(NormalizedRecord):
    """A single gift / donation transaction."""

    kind: ClassVar[RecordKind] = RecordKind.TRANSACTIONS
    table: ClassVar[str] = "crm_donations"

    constituent_external_id: str | None = None
    amount: float
    donation_date: date | None = None
    donation_type: str | None = None
    campaign_name: str | None = None
    fund_name: str | None = None
    payment_method: str | None = None
    status: str | None = None
    notes: str | None = None


RECORD_TYPES: dict[RecordKind, type[NormalizedRecord]] = {
    RecordKind.ENTITIES: NormalizedConstituent,
    RecordKind.TRANSACTIONS: NormalizedDonation,
}
