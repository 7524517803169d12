"""Pydantic schemas for CRM connections, paging, and canonical leads.

Defines:
- Enums: CRMProvider, ConnectionStatus
- Connection state: OAuthTokens, ProviderConnection, RefreshedTokens
- Fetch contract: PageOptions
- Normalized record: CanonicalLead
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class CRMProvider(str, Enum):
    """External CRM providers with a shipped adapter."""

    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"
    ZOHO = "zoho"
    DYNAMICS = "dynamics"


class ConnectionStatus(str, Enum):
    """Lifecycle status of a tenant's provider connection."""

    ACTIVE = "active"
    INACTIVE = "inactive"


# ── Connection Schemas ──────────────────────────────────────────────────────


class OAuthTokens(BaseModel):
    """OAuth token pair held for one connection."""

    access_token: str
    refresh_token: str | None = None
    token_expiry: datetime | None = None


class ProviderConnection(BaseModel):
    """Per-tenant, per-provider credential and status record.

    ``provider`` is a plain string rather than CRMProvider because the
    connection catalog may reference providers that are no longer supported.
    ``credentials`` holds provider-specific addressing info such as
    ``instance_url`` (Salesforce), ``api_domain`` (Zoho) or ``resource``
    (Dynamics).
    """

    id: str
    tenant_id: str
    provider: str
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    tokens: OAuthTokens
    credentials: dict[str, Any] = Field(default_factory=dict)
    consecutive_auth_failures: int = 0
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    last_error: str | None = None


class RefreshedTokens(BaseModel):
    """Normalized token endpoint response for a refresh_token grant."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None


# ── Fetch Contract ──────────────────────────────────────────────────────────


class PageOptions(BaseModel):
    """One bounded page request.

    ``cursor`` is adapter-specific: HubSpot's ``after`` token, or the
    offset / page number for the other providers. None means first page.
    """

    limit: int = Field(default=100, ge=1, le=200)
    cursor: str | None = None


# ── Canonical Lead ──────────────────────────────────────────────────────────


class CanonicalLead(BaseModel):
    """Provider-agnostic lead produced by an adapter's normalize().

    String fields are never None so that name assembly and comparisons are
    always well-defined. ``(external_id, source_provider)`` identifies the
    record within one reconciliation pass.
    """

    external_id: str
    source_provider: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    job_title: str = ""
    raw_status: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
