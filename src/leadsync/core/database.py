"""Async SQLAlchemy engine for the lead store and the connection catalog.

Two schemas back the service:
- shared: tenants and their CRM provider connections (SharedBase)
- tenant: per-tenant leads and forms (TenantBase), remapped per session

Provides:
- get_shared_session(): session for the connection catalog, used by the
  scheduler's tenant sweep and by token persistence
- get_tenant_session(): session bound to the current tenant's schema, used by
  reconciliation runs, lead exports and qualification batches
- Pool checkout event that issues RESET ALL so one tenant's session settings
  never carry into the next tenant's run
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import MetaData, event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.leadsync.config import get_settings
from src.leadsync.core.tenant import get_current_tenant

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )

        # app.current_tenant_id must not survive a pool round-trip
        @event.listens_for(_engine.sync_engine, "checkout")
        def reset_tenant_context(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("RESET ALL")
            cursor.close()

    return _engine


# ── Declarative Bases ───────────────────────────────────────────────────────

shared_metadata = MetaData(schema="shared")
tenant_metadata = MetaData(schema="tenant")


class SharedBase(DeclarativeBase):
    """Tables every tenant shares: the tenant registry and CRM connections."""

    metadata = shared_metadata


class TenantBase(DeclarativeBase):
    """Per-tenant lead and form tables.

    Declared under the placeholder schema "tenant"; get_tenant_session()
    maps it to the tenant's own schema (e.g. "tenant_acme").
    """

    metadata = tenant_metadata


# ── Session Factories ───────────────────────────────────────────────────────


async def get_shared_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session on the shared schema for connection and tenant lookups."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


async def get_tenant_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session whose "tenant" schema resolves to the current tenant.

    The tenant comes from the current TenantContext: the HTTP middleware sets
    it for API calls, the scheduler sets it around each periodic run. Raises
    RuntimeError before touching the pool when no tenant is set.
    """
    tenant = get_current_tenant()
    engine = get_engine()

    async with engine.connect() as conn:
        conn = await conn.execution_options(
            schema_translate_map={"tenant": tenant.schema_name}
        )
        await conn.execute(
            text("SELECT set_config('app.current_tenant_id', :tid, false)"),
            {"tid": tenant.tenant_id},
        )

        async with AsyncSession(bind=conn, expire_on_commit=False) as session:
            yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the shared schema and the tenant and connection tables if missing.

    Tenant schemas are provisioned by alembic, not here.
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(text("CREATE SCHEMA IF NOT EXISTS shared"))
        await conn.run_sync(SharedBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
