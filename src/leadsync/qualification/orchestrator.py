"""Batch qualification orchestrator -- scores a bounded set of leads one at a time.

Leads are scored sequentially with a fixed pause between scorer calls
(QUALIFY_DELAY_SECONDS) to stay under LLM rate limits. A failing lead is
reported in ``errors`` and the batch moves on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.leadsync.config import Settings, get_settings
from src.leadsync.core.isolation import partition, run_isolated
from src.leadsync.leads.schemas import LeadFilter, LeadRead, LeadStatus, LeadUpdate
from src.leadsync.leads.store import LeadStore
from src.leadsync.qualification.schemas import (
    BatchQualificationResult,
    LeadQualificationError,
    LeadQualificationResult,
    QualificationCategory,
)
from src.leadsync.qualification.scorer import LeadScorer

logger = structlog.get_logger(__name__)

_CATEGORY_STATUS = {c.value: LeadStatus(c.value) for c in QualificationCategory}


class BatchQualificationOrchestrator:
    """Selects leads and fans them out to a LeadScorer.

    Args:
        leads: Lead store used for selection and persisting scores.
        scorer: Scorer invoked once per lead.
        settings: Application settings (batch cap, delay).
        sleep: Sleep coroutine between scorer calls, replaceable in tests.
    """

    def __init__(
        self,
        leads: LeadStore,
        scorer: LeadScorer,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._leads = leads
        self._scorer = scorer
        self._settings = settings or get_settings()
        self._sleep = sleep

    async def select_leads(
        self,
        tenant_id: str,
        lead_ids: list[str] | None = None,
        status: LeadStatus | None = None,
        limit: int | None = None,
    ) -> list[LeadRead]:
        """Pick the leads for a batch.

        ``limit`` is capped at QUALIFY_BATCH_MAX; None means the cap.
        """
        cap = self._settings.QUALIFY_BATCH_MAX
        effective = cap if limit is None else max(1, min(limit, cap))
        return await self._leads.list_leads(
            tenant_id,
            LeadFilter(lead_ids=lead_ids, status=status, limit=effective),
        )

    async def qualify_batch(
        self, tenant_id: str, leads: list[LeadRead]
    ) -> BatchQualificationResult:
        """Score and persist each lead, isolating failures.

        On success the lead's ``lead_score`` and ``qualification_category``
        are saved, and its ``status`` becomes the category when that is
        hot, warm or cold.
        """

        async def qualify(lead: LeadRead) -> LeadQualificationResult:
            scored = await self._scorer.score(lead)
            new_status = _CATEGORY_STATUS.get(scored.category or "")
            updated = await self._leads.update_lead(
                tenant_id,
                lead.id,
                LeadUpdate(
                    lead_score=scored.score,
                    qualification_category=scored.category,
                    status=new_status,
                ),
            )
            return LeadQualificationResult(
                lead_id=lead.id,
                score=scored.score,
                category=scored.category,
                status=updated.status.value,
            )

        outcomes = await run_isolated(
            leads,
            qualify,
            delay_seconds=self._settings.QUALIFY_DELAY_SECONDS,
            event="qualification.lead_failed",
            sleep=self._sleep,
        )
        succeeded, failed = partition(outcomes)

        result = BatchQualificationResult(
            qualified=len(succeeded),
            failed=len(failed),
            results=[o.value for o in succeeded],
            errors=[
                LeadQualificationError(lead_id=o.item.id, error=str(o.error))
                for o in failed
            ],
        )
        logger.info(
            "qualification.batch_complete",
            tenant_id=tenant_id,
            qualified=result.qualified,
            failed=result.failed,
        )
        return result
