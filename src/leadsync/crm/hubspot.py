"""HubSpot adapter -- contacts via the CRM v3 objects API, cursor paging with ``after``.

Outbound pushes create a contact in the ``lead`` lifecycle stage.
"""

from __future__ import annotations

from typing import Any

from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.field_mapping import HUBSPOT_FIELDS, to_provider_fields
from src.leadsync.crm.schemas import CRMProvider, PageOptions
from src.leadsync.leads.schemas import LeadRead

HUBSPOT_CONTACTS_URL = "https://api.hubapi.com/crm/v3/objects/contacts"


class HubSpotAdapter(ProviderAdapter):
    provider = CRMProvider.HUBSPOT.value
    field_map = HUBSPOT_FIELDS

    async def fetch_leads(
        self,
        access_token: str,
        credentials: dict[str, Any],
        page: PageOptions,
    ) -> list[dict[str, Any]]:
        properties = [*self.field_map.requested_fields, "createdate", "lastmodifieddate"]
        params: dict[str, Any] = {
            "limit": page.limit,
            "properties": ",".join(properties),
        }
        if page.cursor:
            params["after"] = page.cursor
        return await self._get(HUBSPOT_CONTACTS_URL, access_token, params, "results")

    async def push_lead(
        self,
        access_token: str,
        credentials: dict[str, Any],
        lead: LeadRead,
    ) -> str:
        properties = to_provider_fields(lead.model_dump(), self.field_map)
        properties.setdefault("lastname", "Unknown")
        properties["hs_lead_status"] = "NEW"
        properties["lifecyclestage"] = "lead"
        body = await self._post(
            HUBSPOT_CONTACTS_URL, access_token, {"properties": properties}
        )
        return self._created_id(body.get("id"))
