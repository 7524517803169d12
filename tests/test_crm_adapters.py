"""Wire-level tests for the provider adapters and the shared HTTP helper.

Every adapter is driven through an httpx.MockTransport client, so requests
are inspected exactly as they would leave the process. Retry backoff is
disabled via the tenacity wait on ``_send``.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest
from tenacity import wait_none

from src.leadsync.crm.dynamics import DynamicsAdapter
from src.leadsync.crm.errors import ProviderUnavailableError
from src.leadsync.crm.http import _send, request_json
from src.leadsync.crm.hubspot import HUBSPOT_CONTACTS_URL, HubSpotAdapter
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.crm.salesforce import SalesforceAdapter, build_soql
from src.leadsync.crm.schemas import PageOptions
from src.leadsync.crm.zoho import ZohoAdapter
from src.leadsync.leads.schemas import LeadRead


# ── Helpers ────────────────────────────────────────────────────────────────


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        # Fresh instance per request; the last template repeats forever
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture(autouse=True)
def no_backoff():
    with patch.object(_send.retry, "wait", wait_none()):
        yield


# ── HubSpot ────────────────────────────────────────────────────────────────


class TestHubSpotAdapter:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        recorder = Recorder(httpx.Response(200, json={"results": [{"id": "1"}]}))
        async with recorder.client() as client:
            adapter = HubSpotAdapter(client=client)
            records = await adapter.fetch_leads("tok", {}, PageOptions(limit=25))

        assert records == [{"id": "1"}]
        request = recorder.requests[0]
        assert str(request.url).startswith(HUBSPOT_CONTACTS_URL)
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.url.params["limit"] == "25"
        assert "email" in request.url.params["properties"].split(",")
        assert "after" not in request.url.params

    @pytest.mark.asyncio
    async def test_cursor_becomes_after(self):
        recorder = Recorder(httpx.Response(200, json={"results": []}))
        async with recorder.client() as client:
            adapter = HubSpotAdapter(client=client)
            await adapter.fetch_leads("tok", {}, PageOptions(cursor="abc"))

        assert recorder.requests[0].url.params["after"] == "abc"

    @pytest.mark.asyncio
    async def test_non_dict_records_are_dropped(self):
        recorder = Recorder(httpx.Response(200, json={"results": [{"id": "1"}, "junk", 3]}))
        async with recorder.client() as client:
            records = await HubSpotAdapter(client=client).fetch_leads("t", {}, PageOptions())

        assert records == [{"id": "1"}]

    @pytest.mark.asyncio
    async def test_results_not_a_list(self):
        recorder = Recorder(httpx.Response(200, json={"results": {"id": "1"}}))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError):
                await HubSpotAdapter(client=client).fetch_leads("t", {}, PageOptions())


# ── Salesforce ─────────────────────────────────────────────────────────────


class TestSalesforceAdapter:
    def test_build_soql(self):
        soql = build_soql(["FirstName", "Email"], limit=10, offset=20)
        assert soql == (
            "SELECT Id, FirstName, Email, CreatedDate, LastModifiedDate FROM Lead "
            "ORDER BY CreatedDate DESC LIMIT 10 OFFSET 20"
        )

    @pytest.mark.asyncio
    async def test_uses_instance_url(self):
        recorder = Recorder(httpx.Response(200, json={"records": [{"Id": "00Q"}]}))
        async with recorder.client() as client:
            adapter = SalesforceAdapter(client=client)
            records = await adapter.fetch_leads(
                "tok",
                {"instance_url": "https://acme.my.salesforce.com/"},
                PageOptions(limit=5, cursor="10"),
            )

        assert records == [{"Id": "00Q"}]
        request = recorder.requests[0]
        assert request.url.host == "acme.my.salesforce.com"
        assert request.url.path == "/services/data/v58.0/query"
        assert request.url.params["q"].endswith("LIMIT 5 OFFSET 10")

    @pytest.mark.asyncio
    async def test_missing_instance_url(self):
        adapter = SalesforceAdapter()
        with pytest.raises(ProviderUnavailableError, match="instance_url"):
            await adapter.fetch_leads("tok", {}, PageOptions())


# ── Zoho ───────────────────────────────────────────────────────────────────


class TestZohoAdapter:
    @pytest.mark.asyncio
    async def test_default_domain_and_auth_header(self):
        recorder = Recorder(httpx.Response(200, json={"data": []}))
        async with recorder.client() as client:
            await ZohoAdapter(client=client).fetch_leads("tok", {}, PageOptions(limit=50))

        request = recorder.requests[0]
        assert str(request.url).startswith("https://www.zohoapis.com/crm/v3/Leads")
        assert request.headers["Authorization"] == "Zoho-oauthtoken tok"
        assert request.url.params["page"] == "1"
        assert request.url.params["per_page"] == "50"
        assert request.url.params["sort_by"] == "Modified_Time"

    @pytest.mark.asyncio
    async def test_regional_domain(self):
        recorder = Recorder(httpx.Response(200, json={"data": []}))
        async with recorder.client() as client:
            await ZohoAdapter(client=client).fetch_leads(
                "tok", {"api_domain": "https://www.zohoapis.eu"}, PageOptions(cursor="3")
            )

        assert recorder.requests[0].url.host == "www.zohoapis.eu"
        assert recorder.requests[0].url.params["page"] == "3"

    @pytest.mark.asyncio
    async def test_missing_data_key_is_empty(self):
        recorder = Recorder(httpx.Response(200, json={}))
        async with recorder.client() as client:
            records = await ZohoAdapter(client=client).fetch_leads("t", {}, PageOptions())

        assert records == []


# ── Dynamics ───────────────────────────────────────────────────────────────


class TestDynamicsAdapter:
    @pytest.mark.asyncio
    async def test_odata_request(self):
        recorder = Recorder(httpx.Response(200, json={"value": [{"leadid": "d1"}]}))
        async with recorder.client() as client:
            records = await DynamicsAdapter(client=client).fetch_leads(
                "tok",
                {"resource": "https://org.crm.dynamics.com"},
                PageOptions(limit=20, cursor="40"),
            )

        assert records == [{"leadid": "d1"}]
        request = recorder.requests[0]
        assert request.url.path == "/api/data/v9.2/leads"
        assert request.url.params["$top"] == "20"
        assert request.url.params["$skip"] == "40"
        assert request.url.params["$orderby"] == "createdon desc"
        assert request.headers["OData-Version"] == "4.0"

    @pytest.mark.asyncio
    async def test_missing_resource(self):
        with pytest.raises(ProviderUnavailableError, match="resource"):
            await DynamicsAdapter().fetch_leads("tok", {}, PageOptions())


# ── HTTP helper ────────────────────────────────────────────────────────────


class TestRequestJson:
    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        recorder = Recorder(
            httpx.Response(503),
            httpx.Response(429),
            httpx.Response(200, json={"ok": True}),
        )
        async with recorder.client() as client:
            body = await request_json(client, "hubspot", "GET", "https://crm.test/x")

        assert body == {"ok": True}
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self):
        recorder = Recorder(httpx.Response(500))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError, match="HTTP 500"):
                await request_json(client, "hubspot", "GET", "https://crm.test/x")

        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        recorder = Recorder(httpx.Response(401))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError) as exc_info:
                await request_json(client, "zoho", "GET", "https://crm.test/x")

        assert exc_info.value.provider == "zoho"
        assert exc_info.value.reason == "HTTP 401"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ProviderUnavailableError, match="ConnectError"):
                await request_json(client, "dynamics", "GET", "https://crm.test/x")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        recorder = Recorder(httpx.Response(200, text="<html>"))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError, match="not JSON"):
                await request_json(client, "hubspot", "GET", "https://crm.test/x")

    @pytest.mark.asyncio
    async def test_json_array_body(self):
        recorder = Recorder(httpx.Response(200, json=[1, 2]))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError, match="not a JSON object"):
                await request_json(client, "hubspot", "GET", "https://crm.test/x")


# ── Registry ───────────────────────────────────────────────────────────────


class TestAdapterRegistry:
    def test_default_registry_has_all_providers(self):
        registry = AdapterRegistry()
        assert registry.providers() == ["dynamics", "hubspot", "salesforce", "zoho"]
        assert isinstance(registry.get("zoho"), ZohoAdapter)

    def test_unknown_provider(self):
        assert AdapterRegistry().get("pipedrive") is None


# ── Outbound Push ──────────────────────────────────────────────────────────


def _platform_lead(**fields) -> LeadRead:
    values = {
        "id": "lead-1",
        "tenant_id": "tenant-1",
        "email": "ann@acme.com",
        "first_name": "Ann",
        "last_name": "Lee",
        "company": "Acme",
        "job_title": "CTO",
        "source": "website",
    }
    values.update(fields)
    return LeadRead(**values)


class TestPushLead:
    @pytest.mark.asyncio
    async def test_hubspot_creates_contact(self):
        recorder = Recorder(httpx.Response(201, json={"id": "501"}))
        async with recorder.client() as client:
            crm_id = await HubSpotAdapter(client=client).push_lead(
                "tok", {}, _platform_lead()
            )

        assert crm_id == "501"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == HUBSPOT_CONTACTS_URL
        assert request.headers["Authorization"] == "Bearer tok"
        properties = json.loads(request.content)["properties"]
        assert properties["email"] == "ann@acme.com"
        assert properties["firstname"] == "Ann"
        assert properties["jobtitle"] == "CTO"
        assert properties["lifecyclestage"] == "lead"

    @pytest.mark.asyncio
    async def test_hubspot_defaults_missing_last_name(self):
        recorder = Recorder(httpx.Response(201, json={"id": "502"}))
        async with recorder.client() as client:
            await HubSpotAdapter(client=client).push_lead(
                "tok", {}, _platform_lead(last_name="", phone="")
            )

        properties = json.loads(recorder.requests[0].content)["properties"]
        assert properties["lastname"] == "Unknown"
        assert "phone" not in properties

    @pytest.mark.asyncio
    async def test_salesforce_creates_lead_sobject(self):
        recorder = Recorder(httpx.Response(201, json={"id": "00Q9", "success": True}))
        async with recorder.client() as client:
            crm_id = await SalesforceAdapter(client=client).push_lead(
                "tok",
                {"instanceUrl": "https://acme.my.salesforce.com"},
                _platform_lead(company=""),
            )

        assert crm_id == "00Q9"
        request = recorder.requests[0]
        assert str(request.url) == (
            "https://acme.my.salesforce.com/services/data/v58.0/sobjects/Lead"
        )
        body = json.loads(request.content)
        assert body["LastName"] == "Lee"
        assert body["Company"] == "Unknown"
        assert body["LeadSource"] == "website"
        assert body["Title"] == "CTO"

    @pytest.mark.asyncio
    async def test_zoho_reads_id_from_details(self):
        recorder = Recorder(
            httpx.Response(
                201,
                json={"data": [{"code": "SUCCESS", "details": {"id": "z-77"}}]},
            )
        )
        async with recorder.client() as client:
            crm_id = await ZohoAdapter(client=client).push_lead(
                "tok", {}, _platform_lead()
            )

        assert crm_id == "z-77"
        request = recorder.requests[0]
        assert str(request.url) == "https://www.zohoapis.com/crm/v3/Leads"
        assert request.headers["Authorization"] == "Zoho-oauthtoken tok"
        record = json.loads(request.content)["data"][0]
        assert record["Last_Name"] == "Lee"
        assert record["Designation"] == "CTO"

    @pytest.mark.asyncio
    async def test_dynamics_asks_for_representation(self):
        recorder = Recorder(httpx.Response(201, json={"leadid": "d-1"}))
        async with recorder.client() as client:
            crm_id = await DynamicsAdapter(client=client).push_lead(
                "tok", {"resource": "https://org.crm.dynamics.com"}, _platform_lead()
            )

        assert crm_id == "d-1"
        request = recorder.requests[0]
        assert str(request.url) == "https://org.crm.dynamics.com/api/data/v9.2/leads"
        assert request.headers["Prefer"] == "return=representation"
        assert json.loads(request.content)["emailaddress1"] == "ann@acme.com"

    @pytest.mark.asyncio
    async def test_response_without_id(self):
        recorder = Recorder(httpx.Response(200, json={"data": [{"code": "DUPLICATE_DATA"}]}))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError, match="no record id"):
                await ZohoAdapter(client=client).push_lead("tok", {}, _platform_lead())

    @pytest.mark.asyncio
    async def test_http_error_surfaces_as_unavailable(self):
        recorder = Recorder(httpx.Response(400, json={"message": "bad"}))
        async with recorder.client() as client:
            with pytest.raises(ProviderUnavailableError, match="HTTP 400"):
                await HubSpotAdapter(client=client).push_lead("tok", {}, _platform_lead())

        assert len(recorder.requests) == 1
