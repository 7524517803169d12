"""Lead scorers -- ABC plus an LLM-backed implementation via LiteLLM Router.

The LLM scorer asks for a BANT-style assessment and reads back only the
``score`` (0-100) and ``category`` (hot/warm/cold) fields. Claude is the
primary model with GPT-4o-mini as fallback.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod

import structlog
from litellm import Router

from src.leadsync.config import Settings, get_settings
from src.leadsync.leads.schemas import LeadRead
from src.leadsync.qualification.schemas import QualificationScore

logger = structlog.get_logger(__name__)

SCORING_SYSTEM_PROMPT = (
    "You qualify B2B sales leads using the BANT framework "
    "(Budget, Authority, Need, Timeline).\n"
    "Score each dimension 0-25 from the lead's company, job title and any notes, "
    "then sum them into a total 'score' (0-100).\n"
    "Assign 'category': 80-100 = hot, 60-79 = warm, below 60 = cold.\n"
    'Respond ONLY with JSON: {"score": <int>, "category": "hot|warm|cold"}'
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class LeadScorer(ABC):
    """Produces a qualification score for one lead."""

    @abstractmethod
    async def score(self, lead: LeadRead) -> QualificationScore:
        ...


def parse_score(content: str) -> QualificationScore:
    """Parse the model's JSON reply.

    Tolerates a surrounding markdown code fence.

    Raises:
        ValueError: The reply is not JSON or lacks a valid score.
    """
    cleaned = _FENCE.sub("", content.strip()).strip()
    data = json.loads(cleaned)
    if not isinstance(data, dict) or "score" not in data:
        raise ValueError("scorer reply has no 'score'")
    category = data.get("category")
    return QualificationScore(
        score=max(0, min(100, int(round(float(data["score"]))))),
        category=str(category).strip().lower() if category else None,
    )


def _lead_prompt(lead: LeadRead) -> str:
    lines = [
        f"Name: {lead.full_name or 'unknown'}",
        f"Company: {lead.company or 'unknown'}",
        f"Job title: {lead.job_title or 'unknown'}",
        f"Email domain: {lead.email.split('@')[-1] if '@' in lead.email else 'unknown'}",
        f"Source: {lead.source}",
    ]
    if lead.notes:
        lines.append(f"Notes: {lead.notes}")
    return "\n".join(lines)


class LLMLeadScorer(LeadScorer):
    """BANT scorer backed by a LiteLLM Router.

    Args:
        settings: Application settings (API keys, timeout, retries).
        router: Pre-built Router; when None one is built from settings.
    """

    MODEL_GROUP = "qualification"

    def __init__(self, settings: Settings | None = None, router: Router | None = None) -> None:
        settings = settings or get_settings()
        self.router = router if router is not None else self._build_router(settings)

    def _build_router(self, settings: Settings) -> Router | None:
        model_list = []

        if settings.ANTHROPIC_API_KEY:
            model_list.append({
                "model_name": self.MODEL_GROUP,
                "litellm_params": {
                    "model": "anthropic/claude-sonnet-4-20250514",
                    "api_key": settings.ANTHROPIC_API_KEY,
                },
            })

        if settings.OPENAI_API_KEY:
            model_list.append({
                "model_name": self.MODEL_GROUP,
                "litellm_params": {
                    "model": "openai/gpt-4o-mini",
                    "api_key": settings.OPENAI_API_KEY,
                },
            })

        if not model_list:
            logger.warning("qualification.llm_unconfigured")
            return None

        return Router(
            model_list=model_list,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    async def score(self, lead: LeadRead) -> QualificationScore:
        """Score one lead.

        Raises:
            RuntimeError: If no LLM API keys are configured.
            ValueError: If the model reply cannot be parsed.
        """
        if not self.router:
            raise RuntimeError("No LLM API keys configured")

        response = await self.router.acompletion(
            model=self.MODEL_GROUP,
            messages=[
                {"role": "system", "content": SCORING_SYSTEM_PROMPT},
                {"role": "user", "content": _lead_prompt(lead)},
            ],
            max_tokens=200,
            temperature=0.0,
            metadata={"tenant_id": lead.tenant_id, "lead_id": lead.id},
        )
        content = response.choices[0].message.content or ""
        result = parse_score(content)
        logger.debug(
            "qualification.scored",
            lead_id=lead.id,
            score=result.score,
            category=result.category,
        )
        return result
