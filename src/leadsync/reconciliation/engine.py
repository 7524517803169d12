"""Reconciliation engine -- pulls leads from every connected CRM and merges them.

One run for one tenant:
1. Load active provider connections (none -> zero summary).
2. Find or create the tenant's CRM import form.
3. Per connection: fresh token -> one bounded page -> normalize. A failing
   provider is logged, recorded in ``providers_failed``, and skipped.
4. Build the LoopGuard from exported-to edges; reflections are skipped.
5. Per candidate: resolve by email or imported-from edge, then create,
   update (CRM-origin match), or skip (platform-origin match).
6. Per-candidate failures count as skipped.

Run-level failures (connection store, form catalog, or lead store
unreachable before merging starts) raise ReconciliationError. A second run
for a tenant that is already reconciling raises
ReconciliationInProgressError.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from src.leadsync.config import Settings, get_settings
from src.leadsync.core.isolation import run_isolated
from src.leadsync.crm.credentials import CredentialManager
from src.leadsync.crm.errors import DuplicateLeadError, ReconciliationError
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.crm.repository import ConnectionStore
from src.leadsync.crm.schemas import CanonicalLead, PageOptions, ProviderConnection
from src.leadsync.leads.schemas import (
    CrmSyncStatus,
    LeadCreate,
    LeadOrigin,
    LeadRead,
    LeadStatus,
    LeadUpdate,
    coerce_import_status,
)
from src.leadsync.leads.store import FormCatalog, LeadStore
from src.leadsync.reconciliation.locking import LocalTenantLocks, TenantLocks
from src.leadsync.reconciliation.loop_guard import LoopGuard
from src.leadsync.reconciliation.schemas import ReconciliationSummary

logger = structlog.get_logger(__name__)

IMPORTED = "imported"
UPDATED = "updated"
SKIPPED = "skipped"

IMPORT_SOURCE = "import"

SYNC_SUCCESS = "success"
SYNC_FAILED = "failed"

Notifier = Callable[[str, ReconciliationSummary], Awaitable[None]]


# ── Merge Payloads ──────────────────────────────────────────────────────────


def build_lead_create(
    candidate: CanonicalLead, form_id: str, now: datetime
) -> LeadCreate:
    """New CRM-origin lead for an unmatched candidate."""
    return LeadCreate(
        form_id=form_id,
        email=candidate.email,
        first_name=candidate.first_name,
        last_name=candidate.last_name,
        full_name=candidate.full_name,
        phone=candidate.phone,
        company=candidate.company,
        job_title=candidate.job_title,
        status=coerce_import_status(candidate.raw_status) or LeadStatus.NEW,
        source=IMPORT_SOURCE,
        lead_origin=LeadOrigin.CRM,
        crm_id=candidate.external_id,
        crm_provider=candidate.source_provider,
        origin_crm_id=candidate.external_id,
        origin_crm_provider=candidate.source_provider,
        crm_sync_status=CrmSyncStatus.SYNCED,
        last_synced_at=now,
    )


def build_lead_update(candidate: CanonicalLead, now: datetime) -> LeadUpdate:
    """Non-destructive update: empty candidate fields leave stored values alone."""
    return LeadUpdate(
        first_name=candidate.first_name or None,
        last_name=candidate.last_name or None,
        full_name=candidate.full_name or None,
        phone=candidate.phone or None,
        company=candidate.company or None,
        job_title=candidate.job_title or None,
        status=coerce_import_status(candidate.raw_status),
        crm_sync_status=CrmSyncStatus.SYNCED,
        last_synced_at=now,
    )


# ── Engine ──────────────────────────────────────────────────────────────────


class ReconciliationEngine:
    """Orchestrates inbound CRM lead reconciliation for one tenant at a time.

    Args:
        leads: Tenant lead store.
        forms: Form catalog (import form lookup).
        connections: Provider connection store.
        credentials: Credential manager for token freshness.
        adapters: Provider adapter registry.
        locks: Per-tenant run exclusion. Defaults to in-process locks.
        notifier: Optional coroutine called with (tenant_id, summary) when a
            run imported or updated at least one lead.
        settings: Application settings.
    """

    def __init__(
        self,
        leads: LeadStore,
        forms: FormCatalog,
        connections: ConnectionStore,
        credentials: CredentialManager,
        adapters: AdapterRegistry,
        locks: TenantLocks | None = None,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._leads = leads
        self._forms = forms
        self._connections = connections
        self._credentials = credentials
        self._adapters = adapters
        self._locks = locks or LocalTenantLocks()
        self._notifier = notifier
        self._settings = settings or get_settings()

    async def reconcile(self, tenant_id: str) -> ReconciliationSummary:
        """Run one reconciliation pass for ``tenant_id``.

        Returns:
            ReconciliationSummary with imported/updated/skipped/total counts.

        Raises:
            ReconciliationInProgressError: Another run holds the tenant lock.
            ReconciliationError: A run-level dependency is unreachable.
        """
        async with self._locks.hold(tenant_id):
            return await self._run(tenant_id)

    async def _run(self, tenant_id: str) -> ReconciliationSummary:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.CRM_RECONCILE_DEADLINE_SECONDS

        try:
            connections = await self._connections.list_active_connections(tenant_id)
        except Exception as exc:
            raise ReconciliationError(f"connection store unavailable: {exc}") from exc

        if not connections:
            logger.info("reconciliation.no_connections", tenant_id=tenant_id)
            return ReconciliationSummary()

        logger.info(
            "reconciliation.started",
            tenant_id=tenant_id,
            providers=[c.provider for c in connections],
        )

        try:
            form_id = await self._forms.find_or_create_import_form(tenant_id)
        except Exception as exc:
            raise ReconciliationError(f"form catalog unavailable: {exc}") from exc

        candidates, providers_failed = await self._fetch_all(
            tenant_id, connections, deadline - loop.time()
        )

        try:
            guard = LoopGuard(await self._leads.list_exported_edges(tenant_id))
        except Exception as exc:
            raise ReconciliationError(f"lead store unavailable: {exc}") from exc

        now = datetime.now(timezone.utc)

        async def merge(candidate: CanonicalLead) -> str:
            return await self._merge(tenant_id, candidate, guard, form_id, now)

        outcomes = await run_isolated(
            candidates, merge, event="reconciliation.candidate_failed"
        )
        counts = Counter(o.value if o.ok else SKIPPED for o in outcomes)

        summary = ReconciliationSummary(
            imported=counts[IMPORTED],
            updated=counts[UPDATED],
            skipped=counts[SKIPPED],
            total=len(candidates),
            providers_failed=providers_failed,
        )
        logger.info(
            "reconciliation.completed",
            tenant_id=tenant_id,
            **summary.model_dump(),
        )

        if summary.changed and self._notifier is not None:
            try:
                await self._notifier(tenant_id, summary)
            except Exception as exc:
                logger.warning(
                    "reconciliation.notify_failed",
                    tenant_id=tenant_id,
                    error=str(exc),
                )

        return summary

    # ── Fetch Phase ─────────────────────────────────────────────────────────

    async def _fetch_all(
        self,
        tenant_id: str,
        connections: list[ProviderConnection],
        timeout: float,
    ) -> tuple[list[CanonicalLead], list[str]]:
        """Fetch one page per connection within ``timeout`` seconds.

        Returns:
            (candidates de-duplicated on (external_id, provider), failed providers)
        """
        semaphore = asyncio.Semaphore(max(self._settings.CRM_FETCH_CONCURRENCY, 1))
        tasks: dict[asyncio.Task[list[CanonicalLead] | None], ProviderConnection] = {
            asyncio.create_task(self._fetch_one(tenant_id, conn, semaphore)): conn
            for conn in connections
        }

        done, pending = await asyncio.wait(tasks, timeout=max(timeout, 0))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        candidates: list[CanonicalLead] = []
        seen: set[tuple[str, str]] = set()
        providers_failed: list[str] = []

        # Preserve connection order regardless of completion order
        for task, conn in tasks.items():
            if task in pending:
                logger.warning(
                    "reconciliation.provider_deadline_exceeded",
                    tenant_id=tenant_id,
                    provider=conn.provider,
                )
                providers_failed.append(conn.provider)
                await self._stamp(conn, SYNC_FAILED, "reconciliation deadline exceeded")
                continue

            exc = task.exception()
            if exc is not None:
                logger.warning(
                    "reconciliation.provider_failed",
                    tenant_id=tenant_id,
                    provider=conn.provider,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                providers_failed.append(conn.provider)
                await self._stamp(conn, SYNC_FAILED, str(exc))
                continue

            fetched = task.result()
            if fetched is None:
                continue
            await self._stamp(conn, SYNC_SUCCESS, None)

            for candidate in fetched:
                key = (candidate.external_id, candidate.source_provider)
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(candidate)

        return candidates, providers_failed

    async def _fetch_one(
        self,
        tenant_id: str,
        connection: ProviderConnection,
        semaphore: asyncio.Semaphore,
    ) -> list[CanonicalLead] | None:
        """Fetch and normalize one provider's page. None means unsupported provider."""
        adapter = self._adapters.get(connection.provider)
        if adapter is None:
            logger.info(
                "reconciliation.provider_unsupported",
                tenant_id=tenant_id,
                provider=connection.provider,
            )
            return None

        async with semaphore:
            access_token = await self._credentials.ensure_fresh_token(connection)
            records = await adapter.fetch_leads(
                access_token,
                connection.credentials,
                PageOptions(limit=self._settings.CRM_IMPORT_PAGE_SIZE),
            )

        candidates = [adapter.normalize(record) for record in records]
        logger.info(
            "reconciliation.provider_fetched",
            tenant_id=tenant_id,
            provider=connection.provider,
            count=len(candidates),
        )
        return candidates

    async def _stamp(
        self, connection: ProviderConnection, status: str, error: str | None
    ) -> None:
        try:
            await self._connections.record_sync_result(connection.id, status, error)
        except Exception as exc:
            logger.warning(
                "reconciliation.sync_stamp_failed",
                connection_id=connection.id,
                provider=connection.provider,
                error=str(exc),
            )

    # ── Merge Phase ─────────────────────────────────────────────────────────

    async def _merge(
        self,
        tenant_id: str,
        candidate: CanonicalLead,
        guard: LoopGuard,
        form_id: str,
        now: datetime,
    ) -> str:
        """Apply one candidate. Returns IMPORTED, UPDATED or SKIPPED."""
        if not candidate.external_id:
            logger.debug(
                "reconciliation.candidate_without_id",
                tenant_id=tenant_id,
                provider=candidate.source_provider,
            )
            return SKIPPED

        if guard.is_reflection(candidate):
            logger.debug(
                "reconciliation.reflection_skipped",
                tenant_id=tenant_id,
                provider=candidate.source_provider,
                external_id=candidate.external_id,
            )
            return SKIPPED

        match = await self._leads.find_match(
            tenant_id, candidate.email, candidate.source_provider, candidate.external_id
        )
        if match is None:
            try:
                await self._leads.create_lead(
                    tenant_id, build_lead_create(candidate, form_id, now)
                )
                return IMPORTED
            except DuplicateLeadError:
                # Lost a create race; apply the decision against the winner
                match = await self._leads.find_match(
                    tenant_id, candidate.email, candidate.source_provider, candidate.external_id
                )
                if match is None:
                    raise

        return await self._apply_to_match(tenant_id, match, candidate, now)

    async def _apply_to_match(
        self,
        tenant_id: str,
        match: LeadRead,
        candidate: CanonicalLead,
        now: datetime,
    ) -> str:
        if match.lead_origin == LeadOrigin.PLATFORM:
            logger.debug(
                "reconciliation.platform_lead_protected",
                tenant_id=tenant_id,
                lead_id=match.id,
                external_id=candidate.external_id,
            )
            return SKIPPED

        await self._leads.update_lead(
            tenant_id, match.id, build_lead_update(candidate, now)
        )
        return UPDATED
