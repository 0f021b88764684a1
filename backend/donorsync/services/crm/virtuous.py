"""Virtuous CRM adapter.

API reference: https://docs.virtuoussoftware.com/
Records are paged through the Query API (``POST /Contact/Query`` and
``POST /Gift/Query``) which answers ``{"list": [...], "total": n}``.
The account is rate limited to 10k requests an hour.
"""

from typing import Any

from donorsync.schemas.crm import NormalizedConstituent, NormalizedDonation, RecordKind
from donorsync.services.crm.base import Batch, HttpProviderAdapter, RawRecord
from donorsync.services.crm.utils import (
    clean_string,
    require_external_id,
    safe_parse_date,
    safe_parse_int,
    safe_parse_number,
)


VIRTUOUS_BASE_URL = "https://api.virtuoussoftware.com/api"


def _primary_method(methods: list[dict], kind: str) -> str | None:
    """Pick the primary contact method whose type mentions `kind`."""
    matching = [m for m in methods if kind in (m.get("type") or "").lower()]
    if not matching:
        return None
    primary = next((m for m in matching if m.get("isPrimary")), matching[0])
    return clean_string(primary.get("value"))


class VirtuousAdapter(HttpProviderAdapter):
    provider = "virtuous"
    display_name = "Virtuous"
    base_url = VIRTUOUS_BASE_URL

    def auth_headers(self, credential):
        return {"Authorization": f"Bearer {credential}"}

    def fetch_page(self, client, credential, kind, skip, take) -> tuple[Batch, int]:
        if kind == RecordKind.ENTITIES:
            path = "/Contact/Query"
            query: dict[str, Any] = {"skip": skip, "take": take, "sortBy": "Id", "descending": False}
        else:
            path = "/Gift/Query"
            query = {"skip": skip, "take": take, "sortBy": "GiftDate", "descending": True}

        body = self.request(client, "POST", path, credential, json=query)
        results = body.get("list") or []
        total = body.get("total", skip + len(results))
        return results, total

    # --- Mappers ---

    def map_entity(self, raw: RawRecord) -> NormalizedConstituent:
        individuals = raw.get("contactIndividuals") or []
        primary = next((i for i in individuals if i.get("isPrimary")), None)
        if primary is None and individuals:
            primary = individuals[0]
        primary = primary or {}

        is_org = raw.get("contactType") in ("Organization", "Foundation")
        first_name = None if is_org else clean_string(primary.get("firstName"))
        last_name = None if is_org else clean_string(primary.get("lastName"))
        full_name = clean_string(raw.get("name")) or " ".join(
            part for part in (first_name, last_name) if part
        ) or "Unknown"

        methods = primary.get("contactMethods") or []
        address = raw.get("address") or {}
        street = ", ".join(
            part for part in (
                clean_string(address.get("address1")),
                clean_string(address.get("address2")),
            ) if part
        )

        return NormalizedConstituent(
            provider=self.provider,
            external_id=require_external_id(raw.get("id"), "Virtuous contact"),
            first_name=first_name,
            last_name=last_name,
            full_name=full_name,
            email=_primary_method(methods, "email"),
            phone=_primary_method(methods, "phone"),
            street_address=street or None,
            city=clean_string(address.get("city")),
            state=clean_string(address.get("state")),
            zip_code=clean_string(address.get("postal")),
            country=clean_string(address.get("country")),
            total_lifetime_giving=safe_parse_number(raw.get("lifeToDateGiving")),
            largest_gift=safe_parse_number(raw.get("largestGiftAmount")),
            last_gift_amount=safe_parse_number(raw.get("lastGiftAmount")),
            last_gift_date=safe_parse_date(raw.get("lastGiftDate")),
            first_gift_date=safe_parse_date(raw.get("firstGiftDate")),
            gift_count=safe_parse_int(raw.get("giftCount")),
            custom_fields={
                "virtuous_contact_type": raw.get("contactType"),
                "virtuous_informal_name": raw.get("informalName"),
                "virtuous_year_to_date_giving": safe_parse_number(raw.get("yearToDateGiving")),
                "virtuous_tags": raw.get("tags"),
            },
            raw_payload=raw,
        )

    def map_transaction(self, raw: RawRecord) -> NormalizedDonation:
        amount = safe_parse_number(raw.get("amount"))
        if amount is None:
            raise ValueError(f"Virtuous gift {raw.get('id')} has no amount")

        designations = raw.get("designations") or []
        fund_name = clean_string(designations[0].get("projectName")) if designations else None

        return NormalizedDonation(
            provider=self.provider,
            external_id=require_external_id(raw.get("id"), "Virtuous gift"),
            constituent_external_id=clean_string(raw.get("contactId")),
            amount=amount,
            donation_date=safe_parse_date(raw.get("giftDate")),
            donation_type=clean_string(raw.get("giftType")),
            campaign_name=clean_string(raw.get("segmentName") or raw.get("campaignName")),
            fund_name=fund_name,
            payment_method=clean_string(raw.get("transactionSource")),
            status=clean_string(raw.get("status")),
            notes=clean_string(raw.get("notes")),
            custom_fields={
                "virtuous_segment_code": raw.get("segmentCode"),
                "virtuous_receipt_date": raw.get("receiptDate"),
                "virtuous_is_tax_deductible": raw.get("isTaxDeductible"),
            },
            raw_payload=raw,
        )
