"""Tenant resolution middleware.

Resolves the tenant from the X-Tenant-ID header against shared.tenants
(cached in Redis for 5 minutes) and sets TenantContext in contextvars for
the request scope. Paths in SKIP_TENANT_PATHS pass through untouched.
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis
import structlog
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.leadsync.core.database import get_engine
from src.leadsync.core.tenant import SKIP_TENANT_PATHS, TenantContext, tenant_scope

logger = structlog.get_logger(__name__)

TENANT_CACHE_TTL_SECONDS = 300


class TenantMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the tenant from the X-Tenant-ID header.

    Args:
        app: ASGI app.
        redis_client: Optional Redis client for the tenant lookup cache.
    """

    def __init__(self, app, redis_client: aioredis.Redis | None = None):
        super().__init__(app)
        self._redis = redis_client

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        tenant_id = request.headers.get("X-Tenant-ID")
        tenant_ctx = await self._resolve_tenant_by_id(tenant_id) if tenant_id else None

        if not tenant_ctx:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Missing or unknown tenant. Provide a valid X-Tenant-ID header."},
            )

        with tenant_scope(tenant_ctx):
            return await call_next(request)

    async def _resolve_tenant_by_id(self, tenant_id: str) -> TenantContext | None:
        """Resolve tenant by ID, using Redis cache when available."""
        cache_key = f"tenant:lookup:{tenant_id}"

        if self._redis:
            try:
                cached = await self._redis.get(cache_key)
                if cached:
                    data = json.loads(cached)
                    return TenantContext(
                        tenant_id=data["tenant_id"],
                        tenant_slug=data["tenant_slug"],
                        schema_name=data["schema_name"],
                    )
            except Exception as exc:
                logger.warning("tenant.cache_lookup_failed", tenant_id=tenant_id, error=str(exc))

        engine = get_engine()
        async with engine.connect() as conn:
            result = await conn.execute(
                text(
                    "SELECT id, slug, schema_name FROM shared.tenants "
                    "WHERE id::text = :tid AND is_active = true"
                ),
                {"tid": tenant_id},
            )
            row = result.first()

        if not row:
            return None

        ctx = TenantContext(
            tenant_id=str(row.id),
            tenant_slug=row.slug,
            schema_name=row.schema_name,
        )

        if self._redis:
            try:
                await self._redis.set(
                    cache_key,
                    json.dumps({
                        "tenant_id": ctx.tenant_id,
                        "tenant_slug": ctx.tenant_slug,
                        "schema_name": ctx.schema_name,
                    }),
                    ex=TENANT_CACHE_TTL_SECONDS,
                )
            except Exception as exc:
                logger.warning("tenant.cache_set_failed", tenant_id=tenant_id, error=str(exc))

        return ctx
