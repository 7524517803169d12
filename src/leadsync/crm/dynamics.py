"""Microsoft Dynamics 365 adapter -- Web API leads entity set, $top/$skip paging."""

from __future__ import annotations

from typing import Any

from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.field_mapping import DYNAMICS_FIELDS, to_provider_fields
from src.leadsync.crm.schemas import CRMProvider, PageOptions
from src.leadsync.leads.schemas import LeadRead

DYNAMICS_API_VERSION = "v9.2"


class DynamicsAdapter(ProviderAdapter):
    """Reads ``resource`` (the org URL, e.g. https://org.crm.dynamics.com) from credentials."""

    provider = CRMProvider.DYNAMICS.value
    field_map = DYNAMICS_FIELDS

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        headers = super()._auth_headers(access_token)
        headers["OData-MaxVersion"] = "4.0"
        headers["OData-Version"] = "4.0"
        return headers

    async def fetch_leads(
        self,
        access_token: str,
        credentials: dict[str, Any],
        page: PageOptions,
    ) -> list[dict[str, Any]]:
        resource = self._require_credential(credentials, "resource")
        select = ["leadid", *self.field_map.requested_fields, "createdon", "modifiedon"]
        params = {
            "$select": ",".join(select),
            "$top": page.limit,
            "$skip": self._offset(page),
            "$orderby": "createdon desc",
        }
        url = f"{resource}/api/data/{DYNAMICS_API_VERSION}/leads"
        return await self._get(url, access_token, params, "value")

    async def push_lead(
        self,
        access_token: str,
        credentials: dict[str, Any],
        lead: LeadRead,
    ) -> str:
        resource = self._require_credential(credentials, "resource")
        fields = to_provider_fields(lead.model_dump(), self.field_map)
        fields.setdefault("lastname", "Unknown")
        fields["subject"] = "Web Lead"
        url = f"{resource}/api/data/{DYNAMICS_API_VERSION}/leads"
        # Without return=representation the create answers 204 with no body
        body = await self._post(
            url, access_token, fields, headers={"Prefer": "return=representation"}
        )
        return self._created_id(body.get("leadid"))
