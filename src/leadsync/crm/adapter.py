"""Provider adapter abstract base class -- the interface every CRM source implements.

Each adapter hides its provider's pagination style (cursor, offset-limit,
page/per-page, top/skip) behind fetch_leads(page=PageOptions) and maps raw
records to CanonicalLead via normalize(). Adapters are stateless apart from
an optional injected httpx client, so one instance serves every tenant.

push_lead() is the outbound direction: it creates a platform lead in the
provider and returns the new record id, which becomes the lead's exported-to
edge.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.leadsync.crm.errors import ProviderUnavailableError
from src.leadsync.crm.field_mapping import ProviderFieldMap, normalize_record
from src.leadsync.crm.http import provider_client, request_json
from src.leadsync.crm.schemas import CanonicalLead, PageOptions
from src.leadsync.leads.schemas import LeadRead


class ProviderAdapter(ABC):
    """Abstract interface for exchanging leads with one CRM provider.

    Subclasses set ``provider`` and ``field_map`` and implement
    ``fetch_leads`` and ``push_lead``.

    Args:
        client: Optional shared httpx client. When None, each fetch opens
            and closes its own client.
        timeout: Request timeout in seconds for self-owned clients.
    """

    provider: str
    field_map: ProviderFieldMap

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    @abstractmethod
    async def fetch_leads(
        self,
        access_token: str,
        credentials: dict[str, Any],
        page: PageOptions,
    ) -> list[dict[str, Any]]:
        """Fetch one bounded page of raw lead records.

        Raises:
            ProviderUnavailableError: Network, HTTP, or auth failure.
        """
        ...

    @abstractmethod
    async def push_lead(
        self,
        access_token: str,
        credentials: dict[str, Any],
        lead: LeadRead,
    ) -> str:
        """Create ``lead`` in the provider and return the new record id.

        Raises:
            ProviderUnavailableError: Network, HTTP, or auth failure, or a
                response without a record id.
        """
        ...

    def normalize(self, record: dict[str, Any]) -> CanonicalLead:
        """Map a raw record to a CanonicalLead. Never raises."""
        return normalize_record(self.provider, record, self.field_map)

    # ── Shared helpers ──────────────────────────────────────────────────────

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _get(
        self,
        url: str,
        access_token: str,
        params: dict[str, Any],
        result_key: str,
    ) -> list[dict[str, Any]]:
        async with provider_client(self._client, self._timeout) as client:
            body = await request_json(
                client,
                self.provider,
                "GET",
                url,
                params=params,
                headers=self._auth_headers(access_token),
            )
        records = body.get(result_key) or []
        if not isinstance(records, list):
            raise ProviderUnavailableError(
                self.provider, f"'{result_key}' in response is not a list"
            )
        return [r for r in records if isinstance(r, dict)]

    async def _post(
        self,
        url: str,
        access_token: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        request_headers = self._auth_headers(access_token)
        request_headers["Content-Type"] = "application/json"
        request_headers.update(headers or {})
        async with provider_client(self._client, self._timeout) as client:
            return await request_json(
                client,
                self.provider,
                "POST",
                url,
                json=payload,
                headers=request_headers,
            )

    def _created_id(self, value: Any) -> str:
        """Validate the record id a create call returned."""
        if value is None or isinstance(value, (dict, list)) or not str(value).strip():
            raise ProviderUnavailableError(
                self.provider, "create response carried no record id"
            )
        return str(value).strip()

    def _require_credential(
        self, credentials: dict[str, Any], *keys: str, default: str | None = None
    ) -> str:
        """Return the first non-empty credential among ``keys`` with trailing '/' removed."""
        for key in keys:
            value = credentials.get(key)
            if value:
                return str(value).rstrip("/")
        if default is not None:
            return default
        raise ProviderUnavailableError(
            self.provider, f"connection credentials missing {keys[0]}"
        )

    @staticmethod
    def _offset(page: PageOptions) -> int:
        """Interpret the cursor as a non-negative integer offset."""
        if page.cursor is None:
            return 0
        try:
            return max(int(page.cursor), 0)
        except ValueError:
            return 0
