"""Background scheduler for periodic CRM reconciliation.

Provides a lightweight APScheduler wrapper with one interval job (every
CRM_RECONCILE_INTERVAL_MINUTES, default 15) that visits every tenant with an
active CRM connection and runs the reconciliation engine for it.

Exports:
    ReconciliationScheduler: Async scheduler for periodic lead reconciliation.
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import structlog

from src.leadsync.config import Settings, get_settings
from src.leadsync.core.tenant import tenant_scope
from src.leadsync.crm.errors import ReconciliationInProgressError
from src.leadsync.crm.repository import ConnectionStore
from src.leadsync.reconciliation.engine import ReconciliationEngine

logger = structlog.get_logger(__name__)

JOB_ID = "crm_reconcile_all_tenants"


class ReconciliationScheduler:
    """Runs reconciliation for all connected tenants on a fixed interval.

    Tenant failures are logged and counted; the next tick is the retry.
    A tenant whose previous run is still going is skipped for this tick.

    Args:
        engine: ReconciliationEngine shared with the HTTP trigger.
        connections: Connection store used to enumerate tenants.
        settings: Application settings (interval).
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        connections: ConnectionStore,
        settings: Settings | None = None,
    ) -> None:
        self._engine = engine
        self._connections = connections
        self._settings = settings or get_settings()
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    def start(self) -> bool:
        """Start the scheduler. Returns False if it could not be started."""
        interval = self._settings.CRM_RECONCILE_INTERVAL_MINUTES
        try:
            self._scheduler = AsyncIOScheduler()
            self._scheduler.add_job(
                self.run_all_tenants,
                trigger=IntervalTrigger(minutes=interval),
                id=JOB_ID,
                name="CRM lead reconciliation for all connected tenants",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=interval * 60,
            )
            self._scheduler.start()
            self._started = True
            logger.info(
                "reconciliation_scheduler.started",
                jobs=[JOB_ID],
                interval_minutes=interval,
            )
            return True

        except Exception as exc:
            logger.warning(
                "reconciliation_scheduler.start_failed",
                error=str(exc),
            )
            return False

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler is not None and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("reconciliation_scheduler.stopped")

    async def run_all_tenants(self) -> dict[str, int]:
        """Reconcile every tenant that has an active CRM connection.

        Returns:
            Counts of tenants by outcome: success, failed, busy.
        """
        logger.info("reconciliation_scheduler.tick")

        try:
            tenants = await self._connections.list_tenants_with_active_connections()
        except Exception as exc:
            logger.warning(
                "reconciliation_scheduler.tenant_query_failed",
                error=str(exc),
            )
            return {"success": 0, "failed": 0, "busy": 0}

        results = {"success": 0, "failed": 0, "busy": 0}

        for tenant in tenants:
            try:
                with tenant_scope(tenant):
                    summary = await self._engine.reconcile(tenant.tenant_id)
                results["success"] += 1
                logger.info(
                    "reconciliation_scheduler.tenant_complete",
                    tenant_id=tenant.tenant_id,
                    imported=summary.imported,
                    updated=summary.updated,
                    skipped=summary.skipped,
                )
            except ReconciliationInProgressError:
                results["busy"] += 1
                logger.info(
                    "reconciliation_scheduler.tenant_busy",
                    tenant_id=tenant.tenant_id,
                )
            except Exception as exc:
                results["failed"] += 1
                logger.warning(
                    "reconciliation_scheduler.tenant_failed",
                    tenant_id=tenant.tenant_id,
                    error=str(exc),
                )

        logger.info("reconciliation_scheduler.tick_complete", tenants=len(tenants), **results)
        return results


__all__ = ["ReconciliationScheduler"]
