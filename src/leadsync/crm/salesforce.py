"""Salesforce adapter -- SOQL query against the instance's REST API, LIMIT/OFFSET paging."""

from __future__ import annotations

from typing import Any

from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.field_mapping import SALESFORCE_FIELDS, to_provider_fields
from src.leadsync.crm.schemas import CRMProvider, PageOptions
from src.leadsync.leads.schemas import LeadRead

SALESFORCE_API_VERSION = "v58.0"


def build_soql(fields: list[str], limit: int, offset: int) -> str:
    """Build the lead query, newest first."""
    columns = ", ".join(["Id", *fields, "CreatedDate", "LastModifiedDate"])
    return (
        f"SELECT {columns} FROM Lead "
        f"ORDER BY CreatedDate DESC LIMIT {int(limit)} OFFSET {int(offset)}"
    )


class SalesforceAdapter(ProviderAdapter):
    """Reads ``instance_url`` from the connection credentials."""

    provider = CRMProvider.SALESFORCE.value
    field_map = SALESFORCE_FIELDS

    async def fetch_leads(
        self,
        access_token: str,
        credentials: dict[str, Any],
        page: PageOptions,
    ) -> list[dict[str, Any]]:
        instance_url = self._require_credential(credentials, "instance_url", "instanceUrl")
        url = f"{instance_url}/services/data/{SALESFORCE_API_VERSION}/query"
        soql = build_soql(self.field_map.requested_fields, page.limit, self._offset(page))
        return await self._get(url, access_token, {"q": soql}, "records")

    async def push_lead(
        self,
        access_token: str,
        credentials: dict[str, Any],
        lead: LeadRead,
    ) -> str:
        instance_url = self._require_credential(credentials, "instance_url", "instanceUrl")
        fields = to_provider_fields(lead.model_dump(), self.field_map)
        # LastName and Company are required on the Lead object
        fields.setdefault("LastName", "Unknown")
        fields.setdefault("Company", "Unknown")
        fields["LeadSource"] = lead.source or "Web"
        url = f"{instance_url}/services/data/{SALESFORCE_API_VERSION}/sobjects/Lead"
        body = await self._post(url, access_token, fields)
        return self._created_id(body.get("id"))
