"""CRM lead reconciliation -- inbound engine, outbound exporter, loop guard, run locks, and scheduler."""

from src.leadsync.reconciliation.engine import ReconciliationEngine
from src.leadsync.reconciliation.export import LeadExporter
from src.leadsync.reconciliation.loop_guard import LoopGuard
from src.leadsync.reconciliation.schemas import ReconciliationSummary, SyncStatusReport

__all__ = [
    "ReconciliationEngine",
    "LeadExporter",
    "LoopGuard",
    "ReconciliationSummary",
    "SyncStatusReport",
]
