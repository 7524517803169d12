"""Tenant CRM sync status -- connection health plus lead sync counts."""

from __future__ import annotations

import structlog

from src.leadsync.crm.repository import ConnectionStore
from src.leadsync.leads.schemas import CrmSyncStatus
from src.leadsync.leads.store import LeadStore
from src.leadsync.reconciliation.schemas import ConnectionSyncStatus, SyncStatusReport

logger = structlog.get_logger(__name__)


async def get_sync_status(
    tenant_id: str,
    connections: ConnectionStore,
    leads: LeadStore,
) -> SyncStatusReport:
    """Summarize sync state for a tenant.

    Args:
        tenant_id: Tenant UUID string.
        connections: Connection store.
        leads: Lead store.

    Returns:
        SyncStatusReport. ``sync_percentage`` is synced/total rounded to one
        decimal, 0.0 for a tenant without leads.
    """
    connection_rows = await connections.list_connections(tenant_id)
    counts = await leads.count_by_sync_status(tenant_id)

    total = sum(counts.values())
    synced = counts.get(CrmSyncStatus.SYNCED.value, 0)
    percentage = round(synced / total * 100, 1) if total else 0.0

    logger.debug("reconciliation.sync_status", tenant_id=tenant_id, total=total, synced=synced)

    return SyncStatusReport(
        connections=[
            ConnectionSyncStatus(
                provider=c.provider,
                status=c.status.value,
                last_sync_at=c.last_sync_at,
                last_sync_status=c.last_sync_status,
                last_error=c.last_error,
            )
            for c in connection_rows
        ],
        total_leads=total,
        synced_leads=synced,
        pending_leads=counts.get(CrmSyncStatus.PENDING.value, 0),
        failed_leads=counts.get(CrmSyncStatus.FAILED.value, 0),
        sync_percentage=percentage,
    )
