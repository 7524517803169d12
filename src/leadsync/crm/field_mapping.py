"""Provider field mappings and the canonical lead normalizer.

Defines:
- ProviderFieldMap: where each canonical field lives in a provider's record.
- HUBSPOT_FIELDS / SALESFORCE_FIELDS / ZOHO_FIELDS / DYNAMICS_FIELDS.
- normalize_record(): pure provider record -> CanonicalLead conversion.
- to_provider_fields(): the inverse for outbound pushes, canonical values to
  each field's primary native name.

Normalization never raises on missing or oddly typed fields: absent values
become "", timestamps that don't parse become None. Enum membership of the
status is decided later by the reconciliation engine.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.leadsync.crm.schemas import CanonicalLead, CRMProvider


# ── Field Maps ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProviderFieldMap:
    """Native field names for each canonical field.

    Tuples list fallbacks in priority order (first non-empty wins).
    ``properties_key`` names a nested dict holding the fields (HubSpot's
    ``properties``); None means fields sit at the top level.
    """

    id_field: str
    first_name: tuple[str, ...]
    last_name: tuple[str, ...]
    email: tuple[str, ...]
    phone: tuple[str, ...]
    company: tuple[str, ...]
    job_title: tuple[str, ...]
    status: tuple[str, ...]
    created_at: tuple[str, ...]
    updated_at: tuple[str, ...]
    properties_key: str | None = None

    @property
    def requested_fields(self) -> list[str]:
        """Native field names to request from the provider API."""
        fields: list[str] = []
        for group in (
            self.first_name,
            self.last_name,
            self.email,
            self.phone,
            self.company,
            self.job_title,
            self.status,
        ):
            fields.extend(group)
        return fields


HUBSPOT_FIELDS = ProviderFieldMap(
    id_field="id",
    first_name=("firstname",),
    last_name=("lastname",),
    email=("email",),
    phone=("phone", "mobilephone"),
    company=("company",),
    job_title=("jobtitle",),
    status=("hs_lead_status",),
    created_at=("createdate",),
    updated_at=("lastmodifieddate",),
    properties_key="properties",
)

SALESFORCE_FIELDS = ProviderFieldMap(
    id_field="Id",
    first_name=("FirstName",),
    last_name=("LastName",),
    email=("Email",),
    phone=("Phone", "MobilePhone"),
    company=("Company",),
    job_title=("Title",),
    status=("Status",),
    created_at=("CreatedDate",),
    updated_at=("LastModifiedDate",),
)

ZOHO_FIELDS = ProviderFieldMap(
    id_field="id",
    first_name=("First_Name",),
    last_name=("Last_Name",),
    email=("Email",),
    phone=("Phone", "Mobile"),
    company=("Company",),
    job_title=("Designation",),
    status=("Lead_Status",),
    created_at=("Created_Time",),
    updated_at=("Modified_Time",),
)

DYNAMICS_FIELDS = ProviderFieldMap(
    id_field="leadid",
    first_name=("firstname",),
    last_name=("lastname",),
    email=("emailaddress1",),
    phone=("telephone1", "mobilephone"),
    company=("companyname",),
    job_title=("jobtitle",),
    status=("statuscode",),
    created_at=("createdon",),
    updated_at=("modifiedon",),
)

FIELD_MAPS: dict[str, ProviderFieldMap] = {
    CRMProvider.HUBSPOT.value: HUBSPOT_FIELDS,
    CRMProvider.SALESFORCE.value: SALESFORCE_FIELDS,
    CRMProvider.ZOHO.value: ZOHO_FIELDS,
    CRMProvider.DYNAMICS.value: DYNAMICS_FIELDS,
}


# ── Conversion Helpers ─────────────────────────────────────────────────────


def _text(value: Any) -> str:
    """Coerce a native value to a stripped string; None and containers become ""."""
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _first(source: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = _text(source.get(key))
        if value:
            return value
    return ""


def _timestamp(source: dict[str, Any], keys: tuple[str, ...]) -> datetime | None:
    raw = _first(source, keys)
    if not raw:
        return None
    try:
        # Salesforce emits +0000 offsets, which fromisoformat accepts on 3.11+
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def full_name(first_name: str, last_name: str) -> str:
    """Assemble a display name from its parts, dropping missing halves."""
    return f"{first_name} {last_name}".strip()


def normalize_record(
    provider: str, record: dict[str, Any], field_map: ProviderFieldMap
) -> CanonicalLead:
    """Map one provider record to a CanonicalLead.

    Args:
        provider: Source provider identifier.
        record: Raw record as returned by the provider API.
        field_map: Native field names for ``provider``.

    Returns:
        CanonicalLead with "" for every missing string field.
    """
    if not isinstance(record, dict):
        record = {}

    source = record
    if field_map.properties_key is not None:
        nested = record.get(field_map.properties_key)
        source = nested if isinstance(nested, dict) else {}

    first = _first(source, field_map.first_name)
    last = _first(source, field_map.last_name)

    created_at = _timestamp(source, field_map.created_at) or _timestamp(
        record, ("createdAt",)
    )
    updated_at = _timestamp(source, field_map.updated_at) or _timestamp(
        record, ("updatedAt",)
    )

    return CanonicalLead(
        external_id=_text(record.get(field_map.id_field)),
        source_provider=provider,
        first_name=first,
        last_name=last,
        full_name=full_name(first, last),
        email=_first(source, field_map.email),
        phone=_first(source, field_map.phone),
        company=_first(source, field_map.company),
        job_title=_first(source, field_map.job_title),
        raw_status=_first(source, field_map.status).lower(),
        created_at=created_at,
        updated_at=updated_at,
    )


OUTBOUND_FIELDS = ("first_name", "last_name", "email", "phone", "company", "job_title")


def to_provider_fields(
    values: Mapping[str, Any], field_map: ProviderFieldMap
) -> dict[str, str]:
    """Map canonical lead values to native field names for a create call.

    Each canonical field is written to the first name in its fallback tuple.
    Empty values are left out so the provider applies its own defaults.
    Status is not pushed.
    """
    fields: dict[str, str] = {}
    for name in OUTBOUND_FIELDS:
        value = _text(values.get(name))
        if value:
            fields[getattr(field_map, name)[0]] = value
    return fields
