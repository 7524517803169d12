"""Batch lead qualification -- scorer interface, LLM scorer, and batch orchestrator."""

from src.leadsync.qualification.orchestrator import BatchQualificationOrchestrator
from src.leadsync.qualification.scorer import LeadScorer, LLMLeadScorer

__all__ = [
    "BatchQualificationOrchestrator",
    "LeadScorer",
    "LLMLeadScorer",
]
