"""Zoho CRM adapter -- Leads module of the v3 API, page/per_page paging."""

from __future__ import annotations

from typing import Any

from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.field_mapping import ZOHO_FIELDS, to_provider_fields
from src.leadsync.crm.schemas import CRMProvider, PageOptions
from src.leadsync.leads.schemas import LeadRead

ZOHO_DEFAULT_API_DOMAIN = "https://www.zohoapis.com"


class ZohoAdapter(ProviderAdapter):
    """Reads ``api_domain`` from the connection credentials (data-center specific)."""

    provider = CRMProvider.ZOHO.value
    field_map = ZOHO_FIELDS

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Zoho-oauthtoken {access_token}",
            "Accept": "application/json",
        }

    async def fetch_leads(
        self,
        access_token: str,
        credentials: dict[str, Any],
        page: PageOptions,
    ) -> list[dict[str, Any]]:
        api_domain = self._require_credential(
            credentials, "api_domain", "apiDomain", default=ZOHO_DEFAULT_API_DOMAIN
        )
        # Zoho pages are 1-based
        page_number = max(self._offset(page), 1)
        params = {
            "page": page_number,
            "per_page": page.limit,
            "sort_by": "Modified_Time",
            "sort_order": "desc",
            "fields": ",".join(
                [*self.field_map.requested_fields, "Created_Time", "Modified_Time"]
            ),
        }
        url = f"{api_domain}/crm/v3/Leads"
        return await self._get(url, access_token, params, "data")

    async def push_lead(
        self,
        access_token: str,
        credentials: dict[str, Any],
        lead: LeadRead,
    ) -> str:
        api_domain = self._require_credential(
            credentials, "api_domain", "apiDomain", default=ZOHO_DEFAULT_API_DOMAIN
        )
        fields = to_provider_fields(lead.model_dump(), self.field_map)
        fields.setdefault("Last_Name", "Unknown")
        fields["Lead_Source"] = lead.source or "Web Form"
        body = await self._post(
            f"{api_domain}/crm/v3/Leads", access_token, {"data": [fields]}
        )
        # {"data": [{"code": "SUCCESS", "details": {"id": ...}, "status": "success"}]}
        results = body.get("data")
        first = results[0] if isinstance(results, list) and results else {}
        details = first.get("details") if isinstance(first, dict) else None
        return self._created_id(details.get("id") if isinstance(details, dict) else None)
