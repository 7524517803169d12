"""Per-tenant run exclusion for reconciliation.

Two implementations of the same async-context-manager contract:
- RedisTenantLocks: cross-process lock (redis-py Lock, non-blocking acquire,
  TTL so a crashed worker cannot wedge a tenant forever)
- LocalTenantLocks: in-process asyncio locks for single-worker deployments
  and tests

Both raise ReconciliationInProgressError immediately when the tenant is busy
rather than queueing a second run behind the first.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError

from src.leadsync.crm.errors import ReconciliationInProgressError

logger = structlog.get_logger(__name__)

LOCK_KEY_PREFIX = "leadsync:reconcile:"


class TenantLocks(ABC):
    """Mutual exclusion of reconciliation runs per tenant."""

    @abstractmethod
    def hold(self, tenant_id: str) -> AbstractAsyncContextManager[None]:
        """Async context manager held for the duration of one run."""
        ...


class LocalTenantLocks(TenantLocks):
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        if lock.locked():
            raise ReconciliationInProgressError(tenant_id)
        async with lock:
            yield


class RedisTenantLocks(TenantLocks):
    """Redis-backed run lock.

    Args:
        redis: Async Redis client.
        ttl_seconds: Lock expiry; should exceed the run deadline.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 900) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"{LOCK_KEY_PREFIX}{tenant_id}",
            timeout=self._ttl,
            blocking=False,
        )
        if not await lock.acquire():
            raise ReconciliationInProgressError(tenant_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # TTL elapsed before the run finished; another run may own it now
                logger.warning("reconciliation.lock_expired", tenant_id=tenant_id)
