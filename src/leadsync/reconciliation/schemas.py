"""Pydantic schemas for reconciliation results, lead export requests, and sync status reporting."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.leadsync.crm.schemas import CRMProvider


class ReconciliationSummary(BaseModel):
    """Counts for one reconciliation run. Not persisted.

    ``total`` is the number of normalized candidates, reflections included.
    ``providers_failed`` lists providers whose fetch was abandoned.
    """

    imported: int = 0
    updated: int = 0
    skipped: int = 0
    total: int = 0
    providers_failed: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.imported > 0 or self.updated > 0


class LeadExportRequest(BaseModel):
    """Target provider for pushing one platform lead."""

    provider: CRMProvider


class ConnectionSyncStatus(BaseModel):
    provider: str
    status: str
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    last_error: str | None = None


class SyncStatusReport(BaseModel):
    """Tenant-level view of CRM sync health."""

    connections: list[ConnectionSyncStatus] = Field(default_factory=list)
    total_leads: int = 0
    synced_leads: int = 0
    pending_leads: int = 0
    failed_leads: int = 0
    sync_percentage: float = 0.0
