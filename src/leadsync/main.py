"""FastAPI application factory.

Creates the app with tenant middleware, logging middleware, CORS, lifespan
events for database initialization and service wiring, the reconciliation
scheduler, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.leadsync.api.middleware.logging import LoggingMiddleware
from src.leadsync.api.middleware.tenant import TenantMiddleware
from src.leadsync.api.v1 import health
from src.leadsync.api.v1.router import router as v1_router
from src.leadsync.config import get_settings
from src.leadsync.core.database import close_db, get_shared_session, get_tenant_session, init_db
from src.leadsync.core.logging import configure_structlog
from src.leadsync.core.redis import close_redis, get_redis_pool
from src.leadsync.crm.credentials import CredentialManager
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.crm.repository import ConnectionRepository
from src.leadsync.leads.repository import FormRepository, LeadRepository
from src.leadsync.qualification.orchestrator import BatchQualificationOrchestrator
from src.leadsync.qualification.scorer import LLMLeadScorer
from src.leadsync.reconciliation.engine import ReconciliationEngine
from src.leadsync.reconciliation.export import LeadExporter
from src.leadsync.reconciliation.locking import RedisTenantLocks
from src.leadsync.reconciliation.scheduler import ReconciliationScheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # ── Stores ───────────────────────────────────────────────────────────
    lead_store = LeadRepository(session_factory=get_tenant_session)
    form_catalog = FormRepository(session_factory=get_tenant_session)
    connection_store = ConnectionRepository(session_factory=get_shared_session)
    app.state.lead_store = lead_store
    app.state.connection_store = connection_store

    # ── Reconciliation ───────────────────────────────────────────────────
    credentials = CredentialManager(connections=connection_store, settings=settings)
    adapters = AdapterRegistry(timeout=settings.CRM_HTTP_TIMEOUT)
    locks = RedisTenantLocks(
        get_redis_pool(), ttl_seconds=settings.CRM_RECONCILE_LOCK_TTL_SECONDS
    )
    engine = ReconciliationEngine(
        leads=lead_store,
        forms=form_catalog,
        connections=connection_store,
        credentials=credentials,
        adapters=adapters,
        locks=locks,
        settings=settings,
    )
    app.state.reconciliation_engine = engine
    app.state.lead_exporter = LeadExporter(
        leads=lead_store,
        connections=connection_store,
        credentials=credentials,
        adapters=adapters,
        locks=locks,
    )

    scheduler = ReconciliationScheduler(
        engine=engine, connections=connection_store, settings=settings
    )
    app.state.reconciliation_scheduler = scheduler
    scheduler.start()

    # ── Qualification ────────────────────────────────────────────────────
    # The scorer has no router without LLM keys; scoring then fails per
    # lead and surfaces in the batch errors.
    scorer = LLMLeadScorer(settings=settings)
    if scorer.router is None:
        log.warning("qualification.no_llm_keys")
    app.state.qualification_orchestrator = BatchQualificationOrchestrator(
        leads=lead_store, scorer=scorer, settings=settings
    )

    log.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    # ── Shutdown ─────────────────────────────────────────────────────────
    scheduler.stop()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LeadSync API",
        version="0.1.0",
        description="Multi-tenant CRM lead reconciliation and qualification",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves tenant context from X-Tenant-ID)
    app.add_middleware(TenantMiddleware, redis_client=get_redis_pool())

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (outermost -- logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router, prefix="/api/v1")

    return app


# Module-level app for uvicorn
app = create_app()
