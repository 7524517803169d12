"""Lead persistence models -- tenant-scoped tables for leads and forms.

Two SQLAlchemy models using TenantBase for schema_translate_map isolation:
- LeadModel: Platform leads, form-captured or imported from a CRM
- FormModel: Capture forms; one flagged form receives CRM imports

IMPORTANT: The two unique indexes on leads are the create-conflict signal the
reconciliation engine relies on when two runs race for the same candidate.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.leadsync.core.database import TenantBase


class LeadModel(TenantBase):
    """A lead in the tenant's lead store.

    ``lead_origin`` marks the authoritative source. ``origin_crm_id`` is the
    imported-from edge; ``crm_id`` on a platform lead is the exported-to edge.
    """

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "origin_crm_provider",
            "origin_crm_id",
            name="uq_leads_tenant_origin_edge",
        ),
        Index(
            "uq_leads_tenant_email",
            "tenant_id",
            "email",
            unique=True,
            postgresql_where=text("email <> ''"),
        ),
        Index("ix_leads_tenant_crm_id", "tenant_id", "crm_id"),
        Index("ix_leads_tenant_status", "tenant_id", "status"),
        {"schema": "tenant"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    form_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    email: Mapped[str] = mapped_column(String(320), default="", server_default=text("''"))
    first_name: Mapped[str] = mapped_column(String(200), default="", server_default=text("''"))
    last_name: Mapped[str] = mapped_column(String(200), default="", server_default=text("''"))
    full_name: Mapped[str] = mapped_column(String(400), default="", server_default=text("''"))
    phone: Mapped[str] = mapped_column(String(50), default="", server_default=text("''"))
    company: Mapped[str] = mapped_column(String(300), default="", server_default=text("''"))
    job_title: Mapped[str] = mapped_column(String(200), default="", server_default=text("''"))
    status: Mapped[str] = mapped_column(
        String(20), default="new", server_default=text("'new'")
    )
    source: Mapped[str] = mapped_column(
        String(50), default="form", server_default=text("'form'")
    )
    lead_origin: Mapped[str] = mapped_column(
        String(20), default="platform", server_default=text("'platform'")
    )
    crm_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    crm_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    origin_crm_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    origin_crm_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    crm_sync_status: Mapped[str] = mapped_column(
        String(20), default="pending", server_default=text("'pending'")
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    lead_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    qualification_category: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class FormModel(TenantBase):
    """Lead capture form.

    CRM-imported leads reference the form flagged ``is_crm_import_form``.
    The flag, not the name, identifies it, and the partial unique index keeps
    repeated runs from creating a second one.
    """

    __tablename__ = "forms"
    __table_args__ = (
        Index(
            "uq_forms_tenant_crm_import",
            "tenant_id",
            unique=True,
            postgresql_where=text("is_crm_import_form"),
        ),
        {"schema": "tenant"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    form_type: Mapped[str] = mapped_column(
        String(50), default="custom", server_default=text("'custom'")
    )
    is_crm_import_form: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    config: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
