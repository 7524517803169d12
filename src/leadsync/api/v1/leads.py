"""REST API endpoints for lead qualification and outbound CRM export."""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.leadsync.api.deps import get_app_service, get_tenant
from src.leadsync.core.tenant import TenantContext
from src.leadsync.crm.errors import (
    LeadExportError,
    LeadNotFoundError,
    ProviderUnavailableError,
    ReconciliationInProgressError,
    UnsupportedProviderError,
)
from src.leadsync.leads.schemas import LeadRead
from src.leadsync.qualification.orchestrator import BatchQualificationOrchestrator
from src.leadsync.qualification.schemas import (
    BatchQualificationRequest,
    BatchQualificationResult,
)
from src.leadsync.reconciliation.export import LeadExporter
from src.leadsync.reconciliation.schemas import LeadExportRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"])


def _get_orchestrator(request: Request) -> BatchQualificationOrchestrator:
    return get_app_service(
        request, "qualification_orchestrator", "Qualification orchestrator"
    )


def _get_exporter(request: Request) -> LeadExporter:
    return get_app_service(request, "lead_exporter", "Lead exporter")


@router.post("/qualify", response_model=BatchQualificationResult)
async def qualify_leads(
    body: BatchQualificationRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> BatchQualificationResult:
    """Score a batch of leads.

    Selection follows the body: explicit ``lead_ids``, a ``status`` filter,
    and a ``limit`` capped at QUALIFY_BATCH_MAX. Per-lead scorer failures
    are reported in ``errors`` and never fail the request.
    """
    orchestrator = _get_orchestrator(request)
    lead_ids = None
    if body.lead_ids is not None:
        lead_ids = [str(lead_id) for lead_id in body.lead_ids]
    selected = await orchestrator.select_leads(
        tenant.tenant_id,
        lead_ids=lead_ids,
        status=body.status,
        limit=body.limit,
    )
    return await orchestrator.qualify_batch(tenant.tenant_id, selected)


@router.post("/{lead_id}/export", response_model=LeadRead)
async def export_lead(
    lead_id: uuid.UUID,
    body: LeadExportRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> LeadRead:
    """Create a platform lead in one connected CRM and record the link.

    Returns 404 for an unknown lead, 409 when the lead cannot be exported
    or the tenant is reconciling, 422 for a provider without an adapter,
    and 502 when the provider call fails.
    """
    exporter = _get_exporter(request)
    try:
        return await exporter.export_lead(
            tenant.tenant_id, str(lead_id), body.provider.value
        )
    except LeadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except (LeadExportError, ReconciliationInProgressError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except UnsupportedProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        )
    except ProviderUnavailableError as exc:
        logger.error(
            "leads.export_failed",
            tenant_id=tenant.tenant_id,
            lead_id=str(lead_id),
            error=str(exc),
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
