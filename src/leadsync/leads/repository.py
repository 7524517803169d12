"""Lead repository -- async SQLAlchemy implementation of LeadStore and FormCatalog.

Uses the session_factory callable pattern: each method opens a session via
``async for session in self._session_factory()``. All methods take tenant_id
as first argument for tenant-scoped queries.

Uniqueness violations on ``leads`` (tenant+email and
tenant+origin_crm_provider+origin_crm_id) are translated to DuplicateLeadError
so the reconciliation engine can re-resolve the candidate against the row
that won the race.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from enum import Enum

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.crm.errors import DuplicateLeadError
from src.leadsync.leads.models import FormModel, LeadModel
from src.leadsync.leads.schemas import (
    CrmSyncStatus,
    LeadCreate,
    LeadFilter,
    LeadOrigin,
    LeadRead,
    LeadStatus,
    LeadUpdate,
    SyncEdge,
)
from src.leadsync.leads.store import FormCatalog, LeadStore

logger = structlog.get_logger(__name__)

CRM_IMPORT_FORM_NAME = "CRM Import"


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_lead(model: LeadModel) -> LeadRead:
    """Convert LeadModel to LeadRead schema."""
    return LeadRead(
        id=str(model.id),
        tenant_id=str(model.tenant_id),
        form_id=str(model.form_id) if model.form_id else None,
        email=model.email or "",
        first_name=model.first_name or "",
        last_name=model.last_name or "",
        full_name=model.full_name or "",
        phone=model.phone or "",
        company=model.company or "",
        job_title=model.job_title or "",
        status=LeadStatus(model.status),
        source=model.source,
        lead_origin=LeadOrigin(model.lead_origin),
        crm_id=model.crm_id,
        crm_provider=model.crm_provider,
        origin_crm_id=model.origin_crm_id,
        origin_crm_provider=model.origin_crm_provider,
        crm_sync_status=CrmSyncStatus(model.crm_sync_status),
        last_synced_at=model.last_synced_at,
        lead_score=model.lead_score,
        qualification_category=model.qualification_category,
        notes=model.notes or "",
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


# ── Lead Repository ─────────────────────────────────────────────────────────


class LeadRepository(LeadStore):
    """Async CRUD operations for tenant leads.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _get_model(
        session: AsyncSession, tenant_id: str, lead_id: str
    ) -> LeadModel | None:
        stmt = select(LeadModel).where(
            LeadModel.tenant_id == uuid.UUID(tenant_id),
            LeadModel.id == uuid.UUID(lead_id),
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_lead(self, tenant_id: str, lead_id: str) -> LeadRead | None:
        async for session in self._session_factory():
            model = await self._get_model(session, tenant_id, lead_id)
            if model is None:
                return None
            return _model_to_lead(model)

    async def find_match(
        self, tenant_id: str, email: str, provider: str, external_id: str
    ) -> LeadRead | None:
        """Resolve a CRM candidate to an existing lead.

        Matches ``email`` (when non-empty) or the imported-from edge
        ``(origin_crm_provider, origin_crm_id)``. When the two clauses hit
        different rows, the edge match wins because it is the more specific
        identity.

        Args:
            tenant_id: Tenant UUID string.
            email: Candidate email; empty string disables the email clause.
            provider: Candidate's source provider.
            external_id: Candidate id in the source CRM.

        Returns:
            LeadRead if a match is found, None otherwise.
        """
        clauses = [
            and_(
                LeadModel.origin_crm_provider == provider,
                LeadModel.origin_crm_id == external_id,
            )
        ]
        if email:
            clauses.append(LeadModel.email == email)

        async for session in self._session_factory():
            stmt = select(LeadModel).where(
                LeadModel.tenant_id == uuid.UUID(tenant_id),
                or_(*clauses),
            )
            result = await session.execute(stmt)
            models = result.scalars().all()
            if not models:
                return None

            best = next(
                (
                    m
                    for m in models
                    if m.origin_crm_provider == provider and m.origin_crm_id == external_id
                ),
                models[0],
            )
            return _model_to_lead(best)

    async def list_exported_edges(self, tenant_id: str) -> list[SyncEdge]:
        async for session in self._session_factory():
            stmt = select(LeadModel).where(
                LeadModel.tenant_id == uuid.UUID(tenant_id),
                LeadModel.lead_origin == LeadOrigin.PLATFORM.value,
                LeadModel.crm_id.is_not(None),
            )
            result = await session.execute(stmt)
            leads = [_model_to_lead(m) for m in result.scalars().all()]
            return [lead.exported_to for lead in leads if lead.exported_to is not None]

    async def record_export(
        self, tenant_id: str, lead_id: str, edge: SyncEdge, synced_at: datetime
    ) -> LeadRead:
        """Write the exported-to edge onto a platform lead.

        Raises:
            ValueError: If lead not found.
        """
        async for session in self._session_factory():
            model = await self._get_model(session, tenant_id, lead_id)
            if model is None:
                raise ValueError(f"Lead not found: tenant={tenant_id}, id={lead_id}")
            model.crm_provider = edge.provider
            model.crm_id = edge.external_id
            model.crm_sync_status = CrmSyncStatus.SYNCED.value
            model.last_synced_at = synced_at
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "leads.export_recorded",
                tenant_id=tenant_id,
                lead_id=lead_id,
                provider=edge.provider,
                crm_id=edge.external_id,
            )
            return _model_to_lead(model)

    async def create_lead(self, tenant_id: str, data: LeadCreate) -> LeadRead:
        """Insert a new lead.

        Args:
            tenant_id: Tenant UUID string.
            data: LeadCreate schema with lead details.

        Returns:
            LeadRead with all persisted fields.

        Raises:
            DuplicateLeadError: A lead with the same email or origin_crm_id
                already exists for this tenant.
        """
        async for session in self._session_factory():
            model = LeadModel(
                tenant_id=uuid.UUID(tenant_id),
                form_id=uuid.UUID(data.form_id) if data.form_id else None,
                email=data.email,
                first_name=data.first_name,
                last_name=data.last_name,
                full_name=data.full_name,
                phone=data.phone,
                company=data.company,
                job_title=data.job_title,
                status=data.status.value,
                source=data.source,
                lead_origin=data.lead_origin.value,
                crm_id=data.crm_id,
                crm_provider=data.crm_provider,
                origin_crm_id=data.origin_crm_id,
                origin_crm_provider=data.origin_crm_provider,
                crm_sync_status=data.crm_sync_status.value,
                last_synced_at=data.last_synced_at,
                notes=data.notes,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info(
                    "leads.create_conflict",
                    tenant_id=tenant_id,
                    origin_crm_id=data.origin_crm_id,
                )
                raise DuplicateLeadError(str(exc.orig)) from exc
            await session.refresh(model)
            return _model_to_lead(model)

    async def update_lead(
        self, tenant_id: str, lead_id: str, data: LeadUpdate
    ) -> LeadRead:
        """Update an existing lead.

        Args:
            tenant_id: Tenant UUID string.
            lead_id: Lead UUID string.
            data: LeadUpdate with fields to update.

        Returns:
            Updated LeadRead.

        Raises:
            ValueError: If lead not found.
        """
        async for session in self._session_factory():
            model = await self._get_model(session, tenant_id, lead_id)
            if model is None:
                raise ValueError(f"Lead not found: tenant={tenant_id}, id={lead_id}")

            # Update only non-None fields
            update_data = data.model_dump(exclude_none=True)
            for key, value in update_data.items():
                if isinstance(value, Enum):
                    value = value.value
                setattr(model, key, value)

            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_lead(model)

    async def list_leads(self, tenant_id: str, filters: LeadFilter) -> list[LeadRead]:
        async for session in self._session_factory():
            stmt = select(LeadModel).where(
                LeadModel.tenant_id == uuid.UUID(tenant_id),
            )
            if filters.lead_ids is not None:
                stmt = stmt.where(
                    LeadModel.id.in_([uuid.UUID(i) for i in filters.lead_ids]),
                )
            if filters.status is not None:
                stmt = stmt.where(LeadModel.status == filters.status.value)

            stmt = stmt.order_by(LeadModel.created_at.desc()).limit(filters.limit)
            result = await session.execute(stmt)
            return [_model_to_lead(m) for m in result.scalars().all()]

    async def count_by_sync_status(self, tenant_id: str) -> dict[str, int]:
        async for session in self._session_factory():
            stmt = (
                select(LeadModel.crm_sync_status, func.count())
                .where(LeadModel.tenant_id == uuid.UUID(tenant_id))
                .group_by(LeadModel.crm_sync_status)
            )
            result = await session.execute(stmt)
            return {status: count for status, count in result.all()}


# ── Form Repository ─────────────────────────────────────────────────────────


class FormRepository(FormCatalog):
    """Form catalog backed by the tenant ``forms`` table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def find_or_create_import_form(self, tenant_id: str) -> str:
        """Return the CRM import form id, creating the form on first use.

        A concurrent creator losing the partial unique index race re-reads
        the winner's row.
        """
        async for session in self._session_factory():
            existing = await self._find_import_form(session, tenant_id)
            if existing is not None:
                return str(existing.id)

            model = FormModel(
                tenant_id=uuid.UUID(tenant_id),
                name=CRM_IMPORT_FORM_NAME,
                description="Leads imported from connected CRM providers",
                form_type="custom",
                is_crm_import_form=True,
                is_active=True,
                config={"is_crm_import_form": True},
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._find_import_form(session, tenant_id)
                if existing is None:
                    raise
                return str(existing.id)

            await session.refresh(model)
            logger.info("forms.import_form_created", tenant_id=tenant_id, form_id=str(model.id))
            return str(model.id)

    @staticmethod
    async def _find_import_form(session: AsyncSession, tenant_id: str) -> FormModel | None:
        stmt = select(FormModel).where(
            FormModel.tenant_id == uuid.UUID(tenant_id),
            FormModel.is_crm_import_form.is_(True),
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
