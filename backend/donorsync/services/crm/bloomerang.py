"""Bloomerang adapter.

REST API v2: https://api.bloomerang.co/v2
Auth is a per-organization API key sent as ``X-API-Key``. List endpoints
page with ``skip``/``take`` and answer ``{"Total": n, "Results": [...]}``.
"""

from typing import Any

from donorsync.schemas.crm import NormalizedConstituent, NormalizedDonation, RecordKind
from donorsync.services.crm.base import Batch, HttpProviderAdapter, RawRecord
from donorsync.services.crm.utils import (
    clean_string,
    require_external_id,
    safe_parse_date,
    safe_parse_number,
)


BLOOMERANG_BASE_URL = "https://api.bloomerang.co/v2"


class BloomerangAdapter(HttpProviderAdapter):
    provider = "bloomerang"
    display_name = "Bloomerang"
    base_url = BLOOMERANG_BASE_URL

    def auth_headers(self, credential):
        return {"X-API-Key": credential}

    def fetch_page(self, client, credential, kind, skip, take) -> tuple[Batch, int]:
        if kind == RecordKind.ENTITIES:
            path = "/constituents"
            params: dict[str, Any] = {
                "skip": skip,
                "take": take,
                "orderBy": "Id",
                "orderDirection": "Asc",
                "status": "Active",  # Only sync active constituents
            }
        else:
            path = "/transactions"
            params = {
                "skip": skip,
                "take": take,
                "orderBy": "Date",
                "orderDirection": "Desc",
            }

        body = self.request(client, "GET", path, credential, params=params)
        results = body.get("Results") or []
        total = body.get("Total", skip + len(results))
        return results, total

    # --- Mappers ---

    def map_entity(self, raw: RawRecord) -> NormalizedConstituent:
        is_org = raw.get("Type") == "Organization"
        first_name = None if is_org else clean_string(raw.get("FirstName"))
        last_name = None if is_org else clean_string(raw.get("LastName"))
        full_name = clean_string(raw.get("FullName")) or " ".join(
            part for part in (first_name, clean_string(raw.get("MiddleName")), last_name) if part
        ) or "Unknown"

        email = (raw.get("PrimaryEmail") or {}).get("Value")
        phone = (raw.get("PrimaryPhone") or {}).get("Number")
        address = raw.get("PrimaryAddress") or {}

        return NormalizedConstituent(
            provider=self.provider,
            external_id=require_external_id(raw.get("Id"), "Bloomerang constituent"),
            first_name=first_name,
            last_name=last_name,
            full_name=full_name,
            email=clean_string(email),
            phone=clean_string(phone),
            street_address=clean_string(address.get("Street")),
            city=clean_string(address.get("City")),
            state=clean_string(address.get("State")),
            zip_code=clean_string(address.get("PostalCode")),
            country=clean_string(address.get("Country")),
            custom_fields={
                "bloomerang_account_number": raw.get("AccountNumber"),
                "bloomerang_type": raw.get("Type"),
                "bloomerang_status": raw.get("Status"),
                "bloomerang_informal_name": raw.get("InformalName"),
                "bloomerang_created_date": raw.get("CreatedDate"),
            },
            raw_payload=raw,
        )

    def map_transaction(self, raw: RawRecord) -> NormalizedDonation:
        amount = safe_parse_number(raw.get("Amount"))
        if amount is None:
            raise ValueError(f"Bloomerang transaction {raw.get('Id')} has no amount")

        # A transaction can split across designations; the first one names it
        designations = raw.get("Designations") or []
        designation = designations[0] if designations else {}

        return NormalizedDonation(
            provider=self.provider,
            external_id=require_external_id(raw.get("Id"), "Bloomerang transaction"),
            constituent_external_id=clean_string(raw.get("AccountId")),
            amount=amount,
            donation_date=safe_parse_date(raw.get("Date")),
            donation_type=clean_string(designation.get("Type")),
            campaign_name=clean_string((designation.get("Campaign") or {}).get("Name")),
            fund_name=clean_string((designation.get("Fund") or {}).get("Name")),
            payment_method=clean_string(raw.get("Method")),
            notes=clean_string(designation.get("Note")),
            custom_fields={
                "bloomerang_transaction_number": raw.get("TransactionNumber"),
                "bloomerang_appeal": (designation.get("Appeal") or {}).get("Name"),
                "bloomerang_designation_count": len(designations),
            },
            raw_payload=raw,
        )
