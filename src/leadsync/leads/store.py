"""Lead store and form catalog abstract base classes.

The reconciliation engine, the lead exporter and the batch qualification
orchestrator depend on these interfaces only. LeadRepository / FormRepository
(SQLAlchemy) implement them for production; tests use in-memory
implementations.

All methods take tenant_id as first argument. Implementations raise
DuplicateLeadError when a create violates a uniqueness constraint. Other
backend errors propagate unchanged; the engine decides which are run-level.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.leadsync.leads.schemas import (
    LeadCreate,
    LeadFilter,
    LeadRead,
    LeadUpdate,
    SyncEdge,
)


class LeadStore(ABC):
    """Abstract interface for tenant-scoped lead persistence.

    Methods:
        get_lead: Fetch one lead by platform id.
        find_match: Identity resolution by email or imported-from edge.
        list_exported_edges: Exported-to edges of platform-origin leads.
        record_export: Store the exported-to edge after an outbound push.
        create_lead: Insert a lead; DuplicateLeadError on conflict.
        update_lead: Apply a field-level update.
        list_leads: Select leads for batch operations.
        count_by_sync_status: Lead counts grouped by crm_sync_status.
    """

    @abstractmethod
    async def get_lead(self, tenant_id: str, lead_id: str) -> LeadRead | None:
        """Fetch a lead by id."""
        ...

    @abstractmethod
    async def find_match(
        self, tenant_id: str, email: str, provider: str, external_id: str
    ) -> LeadRead | None:
        """Find the lead matching ``email`` or the imported-from edge ``(provider, external_id)``.

        An empty ``email`` drops the email clause so blank emails never match.
        The same external id under another provider is a different record.
        """
        ...

    @abstractmethod
    async def list_exported_edges(self, tenant_id: str) -> list[SyncEdge]:
        """Return exported-to edges (platform-origin leads with a crm_id)."""
        ...

    @abstractmethod
    async def record_export(
        self, tenant_id: str, lead_id: str, edge: SyncEdge, synced_at: datetime
    ) -> LeadRead:
        """Set the exported-to edge (crm_provider, crm_id) and mark the lead synced.

        Raises ValueError if the lead does not exist.
        """
        ...

    @abstractmethod
    async def create_lead(self, tenant_id: str, data: LeadCreate) -> LeadRead:
        """Insert a lead. Raises DuplicateLeadError on uniqueness conflict."""
        ...

    @abstractmethod
    async def update_lead(
        self, tenant_id: str, lead_id: str, data: LeadUpdate
    ) -> LeadRead:
        """Apply non-None fields of ``data``. Raises ValueError if not found."""
        ...

    @abstractmethod
    async def list_leads(self, tenant_id: str, filters: LeadFilter) -> list[LeadRead]:
        """List leads matching ``filters``, newest first, at most ``filters.limit``."""
        ...

    @abstractmethod
    async def count_by_sync_status(self, tenant_id: str) -> dict[str, int]:
        """Return ``{crm_sync_status: count}`` for the tenant."""
        ...


class FormCatalog(ABC):
    """Abstract interface for the tenant's form catalog."""

    @abstractmethod
    async def find_or_create_import_form(self, tenant_id: str) -> str:
        """Return the id of the CRM import form, creating it on first use."""
        ...
