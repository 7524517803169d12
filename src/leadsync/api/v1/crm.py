"""REST API endpoints for CRM reconciliation.

Provides a manual reconciliation trigger and a sync status view for the
current tenant. Services come from app.state (built in the lifespan).
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.leadsync.api.deps import get_app_service, get_tenant
from src.leadsync.core.tenant import TenantContext
from src.leadsync.crm.errors import ReconciliationError, ReconciliationInProgressError
from src.leadsync.reconciliation.engine import ReconciliationEngine
from src.leadsync.reconciliation.schemas import ReconciliationSummary, SyncStatusReport
from src.leadsync.reconciliation.status import get_sync_status

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/crm", tags=["crm"])


def _get_engine(request: Request) -> ReconciliationEngine:
    return get_app_service(request, "reconciliation_engine", "Reconciliation engine")


@router.post("/reconcile", response_model=ReconciliationSummary)
async def reconcile(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> ReconciliationSummary:
    """Run one reconciliation for the current tenant.

    Returns 409 if a run for this tenant is already in progress, 503 if
    the run could not start (connection store, form catalog or lead store
    unreachable).
    """
    engine = _get_engine(request)
    try:
        return await engine.reconcile(tenant.tenant_id)
    except ReconciliationInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ReconciliationError as exc:
        logger.error("crm.reconcile_failed", tenant_id=tenant.tenant_id, error=str(exc))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.get("/status", response_model=SyncStatusReport)
async def sync_status(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> SyncStatusReport:
    """Connection health and lead sync counts for the current tenant."""
    connections = get_app_service(request, "connection_store", "Connection store")
    leads = get_app_service(request, "lead_store", "Lead store")
    return await get_sync_status(tenant.tenant_id, connections, leads)
