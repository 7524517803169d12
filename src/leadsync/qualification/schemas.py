"""Pydantic schemas for batch lead qualification."""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import BaseModel, Field

from src.leadsync.leads.schemas import LeadStatus


class QualificationCategory(str, Enum):
    """Scorer categories that map directly onto lead statuses."""

    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class QualificationScore(BaseModel):
    """Scorer output for one lead.

    ``category`` is kept as the raw lowercased string; only values in
    QualificationCategory change the lead's status.
    """

    score: int = Field(ge=0, le=100)
    category: str | None = None


class BatchQualificationRequest(BaseModel):
    """Selection for a batch run. Everything optional; limit is capped server-side."""

    lead_ids: list[uuid.UUID] | None = None
    status: LeadStatus | None = None
    limit: int | None = Field(default=None, ge=1)


class LeadQualificationResult(BaseModel):
    lead_id: str
    score: int
    category: str | None = None
    status: str


class LeadQualificationError(BaseModel):
    lead_id: str
    error: str


class BatchQualificationResult(BaseModel):
    qualified: int = 0
    failed: int = 0
    results: list[LeadQualificationResult] = Field(default_factory=list)
    errors: list[LeadQualificationError] = Field(default_factory=list)
