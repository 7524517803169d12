"""In-memory test doubles for the lead, form and connection stores.

InMemoryLeadStore enforces the same uniqueness rules as the leads table
(non-empty email, origin provider + origin_crm_id) so create races can be
simulated.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from src.leadsync.config import Settings
from src.leadsync.core.tenant import TenantContext
from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.errors import DuplicateLeadError
from src.leadsync.crm.field_mapping import HUBSPOT_FIELDS
from src.leadsync.crm.repository import ConnectionStore
from src.leadsync.crm.schemas import (
    ConnectionStatus,
    OAuthTokens,
    PageOptions,
    ProviderConnection,
)
from src.leadsync.leads.schemas import (
    CrmSyncStatus,
    LeadCreate,
    LeadFilter,
    LeadRead,
    LeadUpdate,
    SyncEdge,
)
from src.leadsync.leads.store import FormCatalog, LeadStore

TENANT_ID = "11111111-1111-1111-1111-111111111111"


def make_settings(**overrides: Any) -> Settings:
    """Settings with client credentials configured and no inter-call delay."""
    values: dict[str, Any] = {
        "HUBSPOT_CLIENT_ID": "hs-client",
        "HUBSPOT_CLIENT_SECRET": "hs-secret",
        "SALESFORCE_CLIENT_ID": "sf-client",
        "SALESFORCE_CLIENT_SECRET": "sf-secret",
        "QUALIFY_DELAY_SECONDS": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


def make_connection(
    provider: str = "hubspot",
    tenant_id: str = TENANT_ID,
    token_expiry: datetime | None = None,
    refresh_token: str | None = "refresh-1",
    credentials: dict[str, Any] | None = None,
    **kwargs: Any,
) -> ProviderConnection:
    return ProviderConnection(
        id=kwargs.pop("id", str(uuid.uuid4())),
        tenant_id=tenant_id,
        provider=provider,
        tokens=OAuthTokens(
            access_token=kwargs.pop("access_token", "access-1"),
            refresh_token=refresh_token,
            token_expiry=token_expiry,
        ),
        credentials=credentials or {},
        **kwargs,
    )


def hubspot_record(
    external_id: str,
    email: str = "",
    firstname: str = "",
    lastname: str = "",
    **properties: Any,
) -> dict[str, Any]:
    """Raw HubSpot contact as returned by the v3 objects API."""
    props = {"email": email, "firstname": firstname, "lastname": lastname}
    props.update(properties)
    return {"id": external_id, "properties": props}


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


def _same_origin(lead: LeadRead, provider: str | None, external_id: str | None) -> bool:
    """Imported-from edge match, scoped by provider like the leads unique index."""
    if not external_id:
        return False
    return lead.origin_crm_provider == provider and lead.origin_crm_id == external_id


class InMemoryLeadStore(LeadStore):
    """Lead store with the same uniqueness rules as the leads table.

    ``fail_on`` maps a method name to an exception raised on every call.
    """

    def __init__(self) -> None:
        self.leads: dict[str, LeadRead] = {}
        self.fail_on: dict[str, Exception] = {}
        self.create_calls = 0
        self.update_calls = 0

    def _check(self, method: str) -> None:
        if method in self.fail_on:
            raise self.fail_on[method]

    def add(self, tenant_id: str = TENANT_ID, **fields: Any) -> LeadRead:
        """Seed a lead directly, bypassing create_lead."""
        lead = LeadRead(id=str(uuid.uuid4()), tenant_id=tenant_id, **fields)
        self.leads[lead.id] = lead
        return lead

    def for_tenant(self, tenant_id: str = TENANT_ID) -> list[LeadRead]:
        return [lead for lead in self.leads.values() if lead.tenant_id == tenant_id]

    async def get_lead(self, tenant_id: str, lead_id: str) -> LeadRead | None:
        lead = self.leads.get(lead_id)
        if lead and lead.tenant_id == tenant_id:
            return lead
        return None

    async def find_match(
        self, tenant_id: str, email: str, provider: str, external_id: str
    ) -> LeadRead | None:
        self._check("find_match")
        by_email = None
        for lead in self.for_tenant(tenant_id):
            if _same_origin(lead, provider, external_id):
                return lead
            if email and lead.email == email and by_email is None:
                by_email = lead
        return by_email

    async def list_exported_edges(self, tenant_id: str) -> list[SyncEdge]:
        self._check("list_exported_edges")
        return [
            lead.exported_to
            for lead in self.for_tenant(tenant_id)
            if lead.exported_to is not None
        ]

    async def create_lead(self, tenant_id: str, data: LeadCreate) -> LeadRead:
        self._check("create_lead")
        self.create_calls += 1
        for lead in self.for_tenant(tenant_id):
            if data.email and lead.email == data.email:
                raise DuplicateLeadError(f"email already exists: {data.email}")
            if data.origin_crm_id and _same_origin(
                lead, data.origin_crm_provider, data.origin_crm_id
            ):
                raise DuplicateLeadError(
                    f"origin edge already exists: {data.origin_crm_provider}/{data.origin_crm_id}"
                )
        now = datetime.now(timezone.utc)
        lead = LeadRead(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self.leads[lead.id] = lead
        return lead

    async def update_lead(
        self, tenant_id: str, lead_id: str, data: LeadUpdate
    ) -> LeadRead:
        self._check("update_lead")
        self.update_calls += 1
        lead = await self.get_lead(tenant_id, lead_id)
        if lead is None:
            raise ValueError(f"Lead not found: {lead_id}")
        lead_dict = lead.model_dump()
        lead_dict.update(data.model_dump(exclude_none=True))
        lead_dict["updated_at"] = datetime.now(timezone.utc)
        updated = LeadRead(**lead_dict)
        self.leads[lead_id] = updated
        return updated

    async def record_export(
        self, tenant_id: str, lead_id: str, edge: SyncEdge, synced_at: datetime
    ) -> LeadRead:
        self._check("record_export")
        lead = await self.get_lead(tenant_id, lead_id)
        if lead is None:
            raise ValueError(f"Lead not found: {lead_id}")
        updated = lead.model_copy(
            update={
                "crm_id": edge.external_id,
                "crm_provider": edge.provider,
                "crm_sync_status": CrmSyncStatus.SYNCED,
                "last_synced_at": synced_at,
            }
        )
        self.leads[lead_id] = updated
        return updated

    async def list_leads(self, tenant_id: str, filters: LeadFilter) -> list[LeadRead]:
        result = self.for_tenant(tenant_id)
        if filters.lead_ids is not None:
            result = [lead for lead in result if lead.id in filters.lead_ids]
        if filters.status is not None:
            result = [lead for lead in result if lead.status == filters.status]
        return result[: filters.limit]

    async def count_by_sync_status(self, tenant_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for lead in self.for_tenant(tenant_id):
            key = lead.crm_sync_status.value
            counts[key] = counts.get(key, 0) + 1
        return counts


class InMemoryFormCatalog(FormCatalog):
    def __init__(self) -> None:
        self.forms: dict[str, str] = {}
        self.error: Exception | None = None

    async def find_or_create_import_form(self, tenant_id: str) -> str:
        if self.error is not None:
            raise self.error
        return self.forms.setdefault(tenant_id, str(uuid.uuid4()))


class InMemoryConnectionStore(ConnectionStore):
    def __init__(self, connections: list[ProviderConnection] | None = None) -> None:
        self.connections: dict[str, ProviderConnection] = {
            c.id: c for c in connections or []
        }
        self.saved_tokens: dict[str, OAuthTokens] = {}
        self.sync_results: list[tuple[str, str, str | None]] = []
        self.tenants: list[TenantContext] = []
        self.error: Exception | None = None

    def add(self, connection: ProviderConnection) -> ProviderConnection:
        self.connections[connection.id] = connection
        return connection

    async def list_active_connections(self, tenant_id: str) -> list[ProviderConnection]:
        if self.error is not None:
            raise self.error
        return [
            c
            for c in self.connections.values()
            if c.tenant_id == tenant_id and c.status == ConnectionStatus.ACTIVE
        ]

    async def list_connections(self, tenant_id: str) -> list[ProviderConnection]:
        return [c for c in self.connections.values() if c.tenant_id == tenant_id]

    async def save_tokens(self, connection_id: str, tokens: OAuthTokens) -> None:
        self.saved_tokens[connection_id] = tokens
        conn = self.connections[connection_id]
        self.connections[connection_id] = conn.model_copy(
            update={"tokens": tokens, "consecutive_auth_failures": 0, "last_error": None}
        )

    async def record_auth_failure(
        self, connection_id: str, error: str, threshold: int
    ) -> ConnectionStatus:
        conn = self.connections[connection_id]
        failures = conn.consecutive_auth_failures + 1
        status = ConnectionStatus.INACTIVE if failures >= threshold else conn.status
        self.connections[connection_id] = conn.model_copy(
            update={
                "consecutive_auth_failures": failures,
                "status": status,
                "last_error": error,
            }
        )
        return status

    async def record_sync_result(
        self, connection_id: str, status: str, error: str | None = None
    ) -> None:
        self.sync_results.append((connection_id, status, error))
        conn = self.connections[connection_id]
        self.connections[connection_id] = conn.model_copy(
            update={
                "last_sync_at": datetime.now(timezone.utc),
                "last_sync_status": status,
                "last_error": error,
            }
        )

    async def list_tenants_with_active_connections(self) -> list[TenantContext]:
        if self.error is not None:
            raise self.error
        return list(self.tenants)


class FakeAdapter(ProviderAdapter):
    """Adapter returning scripted records, or raising ``error`` on fetch.

    ``push_lead`` answers ``push_id`` or raises ``push_error``; pushed leads
    are kept in ``pushed``.
    """

    field_map = HUBSPOT_FIELDS

    def __init__(
        self,
        provider: str = "hubspot",
        records: list[dict[str, Any]] | None = None,
        error: Exception | None = None,
        push_id: str = "crm-900",
        push_error: Exception | None = None,
    ) -> None:
        super().__init__()
        self.provider = provider
        self.records = records or []
        self.error = error
        self.push_id = push_id
        self.push_error = push_error
        self.calls: list[tuple[str, PageOptions]] = []
        self.pushed: list[tuple[str, LeadRead]] = []

    async def fetch_leads(
        self,
        access_token: str,
        credentials: dict[str, Any],
        page: PageOptions,
    ) -> list[dict[str, Any]]:
        self.calls.append((access_token, page))
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def push_lead(
        self,
        access_token: str,
        credentials: dict[str, Any],
        lead: LeadRead,
    ) -> str:
        self.pushed.append((access_token, lead))
        if self.push_error is not None:
            raise self.push_error
        return self.push_id
