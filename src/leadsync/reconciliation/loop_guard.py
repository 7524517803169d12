"""Loop guard -- stops leads the platform exported from coming back as imports.

When the platform pushes a lead to a CRM it records an exported-to edge
(``crm_id`` + ``crm_provider`` on the platform-origin lead). On the next
inbound pass that CRM record shows up as a candidate; the guard recognizes it
as a reflection of our own lead so it is neither re-imported nor allowed to
overwrite the platform copy.

Imported-from edges are not consulted: a lead created by an
earlier reconciliation must keep receiving updates from its source record.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.leadsync.crm.schemas import CanonicalLead
from src.leadsync.leads.schemas import SyncEdge


class LoopGuard:
    """Membership test over a tenant's exported-to edges.

    An edge recorded without a provider matches the external id on any
    provider (see ``SyncEdge.matches``).
    """

    def __init__(self, edges: Iterable[SyncEdge]) -> None:
        self._edges_by_id: dict[str, list[SyncEdge]] = {}
        for edge in edges:
            self._edges_by_id.setdefault(edge.external_id, []).append(edge)

    def __len__(self) -> int:
        return sum(len(edges) for edges in self._edges_by_id.values())

    def is_reflection(self, candidate: CanonicalLead) -> bool:
        """True if ``candidate`` is a CRM copy of a platform-exported lead."""
        return any(
            edge.matches(candidate.source_provider, candidate.external_id)
            for edge in self._edges_by_id.get(candidate.external_id, ())
        )
