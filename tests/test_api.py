"""Tests for the CRM, leads and health API endpoints and TenantMiddleware.

Uses a mini FastAPI app with only the routers under test, tenant dependency
overridden, and in-memory services on app.state.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from src.leadsync.api.deps import get_tenant
from src.leadsync.api.middleware import TenantMiddleware
from src.leadsync.api.v1 import crm, health, leads
from src.leadsync.core.tenant import TenantContext, get_current_tenant
from src.leadsync.crm.credentials import CredentialManager
from src.leadsync.crm.errors import (
    LeadExportError,
    LeadNotFoundError,
    ProviderUnavailableError,
    ReconciliationError,
    ReconciliationInProgressError,
    UnsupportedProviderError,
)
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.leads.schemas import CrmSyncStatus, LeadOrigin, LeadRead, LeadStatus
from src.leadsync.qualification.orchestrator import BatchQualificationOrchestrator
from src.leadsync.qualification.schemas import QualificationScore
from src.leadsync.qualification.scorer import LeadScorer
from src.leadsync.reconciliation.export import LeadExporter
from src.leadsync.reconciliation.schemas import ReconciliationSummary
from tests.doubles import (
    TENANT_ID,
    FakeAdapter,
    InMemoryConnectionStore,
    InMemoryLeadStore,
    make_connection,
    make_settings,
)


class FixedScorer(LeadScorer):
    async def score(self, lead: LeadRead) -> QualificationScore:
        return QualificationScore(score=80, category="hot")


def _tenant() -> TenantContext:
    return TenantContext(tenant_id=TENANT_ID, tenant_slug="acme", schema_name="tenant_acme")


def _make_app() -> FastAPI:
    app = FastAPI()
    app.include_router(crm.router, prefix="/v1")
    app.include_router(leads.router, prefix="/v1")

    async def override_tenant():
        return _tenant()

    app.dependency_overrides[get_tenant] = override_tenant
    return app


@pytest_asyncio.fixture
async def app_and_client():
    app = _make_app()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield app, client


# ── POST /crm/reconcile ──────────────────────────────────────────────────────


class TestReconcileEndpoint:
    @pytest.mark.asyncio
    async def test_returns_summary(self, app_and_client):
        app, client = app_and_client
        engine = MagicMock()
        engine.reconcile = AsyncMock(
            return_value=ReconciliationSummary(
                imported=2, updated=1, skipped=1, total=4, providers_failed=["zoho"]
            )
        )
        app.state.reconciliation_engine = engine

        response = await client.post("/v1/crm/reconcile")

        assert response.status_code == 200
        assert response.json() == {
            "imported": 2,
            "updated": 1,
            "skipped": 1,
            "total": 4,
            "providers_failed": ["zoho"],
        }
        engine.reconcile.assert_awaited_once_with(TENANT_ID)

    @pytest.mark.asyncio
    async def test_busy_tenant_is_409(self, app_and_client):
        app, client = app_and_client
        engine = MagicMock()
        engine.reconcile = AsyncMock(side_effect=ReconciliationInProgressError(TENANT_ID))
        app.state.reconciliation_engine = engine

        response = await client.post("/v1/crm/reconcile")

        assert response.status_code == 409
        assert "already running" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_run_level_failure_is_503(self, app_and_client):
        app, client = app_and_client
        engine = MagicMock()
        engine.reconcile = AsyncMock(
            side_effect=ReconciliationError("form catalog unavailable")
        )
        app.state.reconciliation_engine = engine

        response = await client.post("/v1/crm/reconcile")

        assert response.status_code == 503
        assert response.json()["detail"] == "form catalog unavailable"

    @pytest.mark.asyncio
    async def test_engine_not_initialized(self, app_and_client):
        _, client = app_and_client

        response = await client.post("/v1/crm/reconcile")

        assert response.status_code == 503
        assert response.json()["detail"] == "Reconciliation engine not initialized"


# ── GET /crm/status ──────────────────────────────────────────────────────────


class TestStatusEndpoint:
    @pytest.mark.asyncio
    async def test_reports_connections_and_counts(self, app_and_client):
        app, client = app_and_client
        lead_store = InMemoryLeadStore()
        lead_store.add(crm_sync_status=CrmSyncStatus.SYNCED)
        lead_store.add(crm_sync_status=CrmSyncStatus.FAILED)
        connections = InMemoryConnectionStore()
        connections.add(make_connection("salesforce", last_sync_status="partial"))
        app.state.lead_store = lead_store
        app.state.connection_store = connections

        response = await client.get("/v1/crm/status")

        assert response.status_code == 200
        body = response.json()
        assert body["total_leads"] == 2
        assert body["failed_leads"] == 1
        assert body["sync_percentage"] == 50.0
        assert body["connections"][0]["provider"] == "salesforce"
        assert body["connections"][0]["last_sync_status"] == "partial"


# ── POST /leads/qualify ──────────────────────────────────────────────────────


class TestQualifyEndpoint:
    @pytest.mark.asyncio
    async def test_qualifies_selected_leads(self, app_and_client):
        app, client = app_and_client
        store = InMemoryLeadStore()
        new_lead = store.add(company="Acme", status=LeadStatus.NEW)
        store.add(company="Globex", status=LeadStatus.COLD)
        app.state.qualification_orchestrator = BatchQualificationOrchestrator(
            store, FixedScorer(), settings=make_settings(), sleep=AsyncMock()
        )

        response = await client.post("/v1/leads/qualify", json={"status": "new"})

        assert response.status_code == 200
        body = response.json()
        assert body["qualified"] == 1
        assert body["results"] == [
            {"lead_id": new_lead.id, "score": 80, "category": "hot", "status": "hot"}
        ]
        assert store.leads[new_lead.id].status == LeadStatus.HOT

    @pytest.mark.asyncio
    async def test_invalid_status_is_422(self, app_and_client):
        app, client = app_and_client
        app.state.qualification_orchestrator = MagicMock()

        response = await client.post("/v1/leads/qualify", json={"status": "lukewarm"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_explicit_lead_ids(self, app_and_client):
        app, client = app_and_client
        store = InMemoryLeadStore()
        picked = store.add(company="Acme")
        store.add(company="Globex")
        app.state.qualification_orchestrator = BatchQualificationOrchestrator(
            store, FixedScorer(), settings=make_settings(), sleep=AsyncMock()
        )

        response = await client.post("/v1/leads/qualify", json={"lead_ids": [picked.id]})

        assert response.status_code == 200
        assert [r["lead_id"] for r in response.json()["results"]] == [picked.id]

    @pytest.mark.asyncio
    async def test_malformed_lead_id_is_422(self, app_and_client):
        app, client = app_and_client
        orchestrator = MagicMock()
        orchestrator.select_leads = AsyncMock()
        app.state.qualification_orchestrator = orchestrator

        response = await client.post(
            "/v1/leads/qualify", json={"lead_ids": ["not-a-uuid"]}
        )

        assert response.status_code == 422
        orchestrator.select_leads.assert_not_awaited()


# ── POST /leads/{lead_id}/export ─────────────────────────────────────────────


class TestExportEndpoint:
    @pytest.mark.asyncio
    async def test_exports_platform_lead(self, app_and_client):
        app, client = app_and_client
        store = InMemoryLeadStore()
        lead = store.add(email="ann@acme.com", lead_origin=LeadOrigin.PLATFORM)
        connections = InMemoryConnectionStore([make_connection("hubspot")])
        app.state.lead_exporter = LeadExporter(
            leads=store,
            connections=connections,
            credentials=CredentialManager(connections=connections, settings=make_settings()),
            adapters=AdapterRegistry(adapters={"hubspot": FakeAdapter("hubspot", push_id="501")}),
        )

        response = await client.post(
            f"/v1/leads/{lead.id}/export", json={"provider": "hubspot"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["crm_id"] == "501"
        assert body["crm_provider"] == "hubspot"
        assert body["crm_sync_status"] == "synced"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, expected",
        [
            (LeadNotFoundError("x"), 404),
            (LeadExportError("already exported to zoho"), 409),
            (ReconciliationInProgressError(TENANT_ID), 409),
            (UnsupportedProviderError("hubspot"), 422),
            (ProviderUnavailableError("hubspot", "HTTP 500"), 502),
        ],
    )
    async def test_error_mapping(self, app_and_client, error, expected):
        app, client = app_and_client
        exporter = MagicMock()
        exporter.export_lead = AsyncMock(side_effect=error)
        app.state.lead_exporter = exporter
        lead_id = "3f2b8c1e-0000-4000-8000-000000000001"

        response = await client.post(
            f"/v1/leads/{lead_id}/export", json={"provider": "hubspot"}
        )

        assert response.status_code == expected
        exporter.export_lead.assert_awaited_once_with(TENANT_ID, lead_id, "hubspot")

    @pytest.mark.asyncio
    async def test_unknown_provider_is_422(self, app_and_client):
        app, client = app_and_client
        app.state.lead_exporter = MagicMock()

        response = await client.post(
            "/v1/leads/3f2b8c1e-0000-4000-8000-000000000001/export",
            json={"provider": "pipedrive"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_malformed_lead_id_is_422(self, app_and_client):
        app, client = app_and_client
        app.state.lead_exporter = MagicMock()

        response = await client.post("/v1/leads/42/export", json={"provider": "hubspot"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_exporter_not_initialized(self, app_and_client):
        _, client = app_and_client

        response = await client.post(
            "/v1/leads/3f2b8c1e-0000-4000-8000-000000000001/export",
            json={"provider": "hubspot"},
        )

        assert response.status_code == 503


# ── Health ───────────────────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self):
        app = FastAPI()
        app.include_router(health.router)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


# ── TenantMiddleware ─────────────────────────────────────────────────────────


def _middleware_app(redis_client=None) -> FastAPI:
    app = FastAPI()
    app.add_middleware(TenantMiddleware, redis_client=redis_client)

    @app.get("/health")
    async def ping():
        return {"status": "ok"}

    @app.get("/whoami")
    async def whoami():
        return {"schema": get_current_tenant().schema_name}

    return app


class TestTenantMiddleware:
    @pytest.mark.asyncio
    async def test_missing_header_is_400(self):
        transport = httpx.ASGITransport(app=_middleware_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/whoami")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_skip_paths_pass_through(self):
        transport = httpx.ASGITransport(app=_middleware_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_cached_tenant_sets_context(self):
        redis_client = MagicMock()
        redis_client.get = AsyncMock(
            return_value=json.dumps(
                {"tenant_id": TENANT_ID, "tenant_slug": "acme", "schema_name": "tenant_acme"}
            )
        )
        transport = httpx.ASGITransport(app=_middleware_app(redis_client))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/whoami", headers={"X-Tenant-ID": TENANT_ID})

        assert response.status_code == 200
        assert response.json() == {"schema": "tenant_acme"}
        redis_client.get.assert_awaited_once_with(f"tenant:lookup:{TENANT_ID}")
