"""Pydantic schemas for platform leads and their CRM sync edges.

Defines:
- Enums: LeadStatus, LeadOrigin, CrmSyncStatus
- SyncEdge: one directional link between a platform lead and a CRM record
- LeadCreate / LeadUpdate / LeadRead / LeadFilter: lead store payloads
- coerce_import_status(): allow-list mapping for inbound CRM statuses
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class LeadStatus(str, Enum):
    """Closed status enumeration for platform leads."""

    NEW = "new"
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"
    QUALIFIED = "qualified"


class LeadOrigin(str, Enum):
    """Authoritative source of a lead. Platform-authored leads are never
    overwritten by inbound reconciliation."""

    PLATFORM = "platform"
    CRM = "crm"


class CrmSyncStatus(str, Enum):
    """Sync state of a lead relative to its CRM counterpart."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


# Inbound CRM statuses accepted as-is when creating or updating a lead.
# Anything else falls back to LeadStatus.NEW on create and is ignored on update.
IMPORTABLE_STATUSES: frozenset[str] = frozenset({"hot", "warm", "cold", "qualified"})


def coerce_import_status(raw_status: str | None) -> LeadStatus | None:
    """Map a provider's raw status through the import allow-list.

    Returns the matching LeadStatus (case-insensitive) or None when the raw
    status is empty or not one of IMPORTABLE_STATUSES.
    """
    if not raw_status:
        return None
    lowered = raw_status.strip().lower()
    if lowered in IMPORTABLE_STATUSES:
        return LeadStatus(lowered)
    return None


# ── Sync Edges ──────────────────────────────────────────────────────────────


class SyncEdge(BaseModel):
    """Directional link from a platform lead to a record in an external CRM.

    ``provider`` may be None for legacy edges recorded before the provider
    was tracked; such an edge matches the external id on any provider.
    """

    provider: str | None = None
    external_id: str

    def matches(self, provider: str, external_id: str) -> bool:
        if self.external_id != external_id:
            return False
        return self.provider is None or self.provider == provider


# ── Lead Payloads ───────────────────────────────────────────────────────────


class LeadCreate(BaseModel):
    """Schema for inserting a lead into the tenant lead store."""

    form_id: str | None = None
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    phone: str = ""
    company: str = ""
    job_title: str = ""
    status: LeadStatus = LeadStatus.NEW
    source: str = "form"
    lead_origin: LeadOrigin = LeadOrigin.PLATFORM
    crm_id: str | None = None
    crm_provider: str | None = None
    origin_crm_id: str | None = None
    origin_crm_provider: str | None = None
    crm_sync_status: CrmSyncStatus = CrmSyncStatus.PENDING
    last_synced_at: datetime | None = None
    notes: str = ""


class LeadUpdate(BaseModel):
    """Field-level lead update. None means "leave unchanged"."""

    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    phone: str | None = None
    company: str | None = None
    job_title: str | None = None
    status: LeadStatus | None = None
    crm_sync_status: CrmSyncStatus | None = None
    last_synced_at: datetime | None = None
    lead_score: int | None = None
    qualification_category: str | None = None


class LeadRead(BaseModel):
    """A persisted platform lead."""

    id: str
    tenant_id: str
    form_id: str | None = None
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    phone: str = ""
    company: str = ""
    job_title: str = ""
    status: LeadStatus = LeadStatus.NEW
    source: str = "form"
    lead_origin: LeadOrigin = LeadOrigin.PLATFORM
    crm_id: str | None = None
    crm_provider: str | None = None
    origin_crm_id: str | None = None
    origin_crm_provider: str | None = None
    crm_sync_status: CrmSyncStatus = CrmSyncStatus.PENDING
    last_synced_at: datetime | None = None
    lead_score: int | None = None
    qualification_category: str | None = None
    notes: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def exported_to(self) -> SyncEdge | None:
        """Edge to the CRM record the platform pushed this lead out as.

        Only platform-authored leads can carry an exported-to edge; on a
        CRM-origin lead ``crm_id`` is the id it was imported as.
        """
        if self.lead_origin != LeadOrigin.PLATFORM or not self.crm_id:
            return None
        return SyncEdge(provider=self.crm_provider, external_id=self.crm_id)


class LeadFilter(BaseModel):
    """Selection criteria for listing leads."""

    lead_ids: list[str] | None = None
    status: LeadStatus | None = None
    limit: int = Field(default=50, ge=1)
