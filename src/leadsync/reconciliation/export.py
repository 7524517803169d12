"""Lead exporter -- pushes a platform lead to one connected CRM.

The push records the exported-to edge (``crm_provider``, ``crm_id``) on the
lead, which is what the LoopGuard reads on the next inbound pass. The export
holds the same per-tenant lock as reconciliation so a run can never fetch
the new CRM record before its edge is stored.

A lead carries one exported-to edge: pushing it again to the same provider
returns it unchanged, pushing it to a second provider is rejected.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.leadsync.crm.credentials import CredentialManager
from src.leadsync.crm.errors import (
    LeadExportError,
    LeadNotFoundError,
    ProviderUnavailableError,
    UnsupportedProviderError,
)
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.crm.repository import ConnectionStore
from src.leadsync.leads.schemas import (
    CrmSyncStatus,
    LeadOrigin,
    LeadRead,
    LeadUpdate,
    SyncEdge,
)
from src.leadsync.leads.store import LeadStore
from src.leadsync.reconciliation.locking import LocalTenantLocks, TenantLocks

logger = structlog.get_logger(__name__)


class LeadExporter:
    """Creates platform leads in a tenant's connected CRM.

    Args:
        leads: Tenant lead store.
        connections: Provider connection store.
        credentials: Credential manager for token freshness.
        adapters: Provider adapter registry.
        locks: Per-tenant exclusion shared with the reconciliation engine.
    """

    def __init__(
        self,
        leads: LeadStore,
        connections: ConnectionStore,
        credentials: CredentialManager,
        adapters: AdapterRegistry,
        locks: TenantLocks | None = None,
    ) -> None:
        self._leads = leads
        self._connections = connections
        self._credentials = credentials
        self._adapters = adapters
        self._locks = locks or LocalTenantLocks()

    async def export_lead(self, tenant_id: str, lead_id: str, provider: str) -> LeadRead:
        """Push one platform lead to ``provider`` and record the edge.

        Returns:
            The lead with its exported-to edge set.

        Raises:
            LeadNotFoundError: No such lead for the tenant.
            LeadExportError: CRM-origin lead, lead already exported to another
                provider, or no active connection for ``provider``.
            UnsupportedProviderError: No adapter for ``provider``.
            ProviderUnavailableError: The provider call failed; the lead is
                marked ``failed``.
            ReconciliationInProgressError: The tenant lock is held.
        """
        async with self._locks.hold(tenant_id):
            lead = await self._leads.get_lead(tenant_id, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)
            if lead.lead_origin != LeadOrigin.PLATFORM:
                raise LeadExportError(
                    f"lead {lead_id} was imported from a CRM and cannot be exported"
                )

            edge = lead.exported_to
            if edge is not None:
                if edge.provider in (None, provider):
                    logger.info(
                        "export.already_exported",
                        tenant_id=tenant_id,
                        lead_id=lead_id,
                        provider=provider,
                        crm_id=edge.external_id,
                    )
                    return lead
                raise LeadExportError(
                    f"lead {lead_id} is already exported to {edge.provider}"
                )

            adapter = self._adapters.get(provider)
            if adapter is None:
                raise UnsupportedProviderError(provider)

            connections = await self._connections.list_active_connections(tenant_id)
            connection = next((c for c in connections if c.provider == provider), None)
            if connection is None:
                raise LeadExportError(f"no active {provider} connection")

            try:
                access_token = await self._credentials.ensure_fresh_token(connection)
                external_id = await adapter.push_lead(
                    access_token, connection.credentials, lead
                )
            except ProviderUnavailableError as exc:
                logger.warning(
                    "export.push_failed",
                    tenant_id=tenant_id,
                    lead_id=lead_id,
                    provider=provider,
                    error=str(exc),
                )
                await self._leads.update_lead(
                    tenant_id, lead_id, LeadUpdate(crm_sync_status=CrmSyncStatus.FAILED)
                )
                raise

            exported = await self._leads.record_export(
                tenant_id,
                lead_id,
                SyncEdge(provider=provider, external_id=external_id),
                datetime.now(timezone.utc),
            )
            logger.info(
                "export.completed",
                tenant_id=tenant_id,
                lead_id=lead_id,
                provider=provider,
                crm_id=external_id,
            )
            return exported
