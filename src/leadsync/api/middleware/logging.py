"""Structured request logging middleware.

Logs every request with:
- method, path, status_code, duration_ms
- tenant_id (from context if available)
- request_id (UUID generated per request, added to response as X-Request-ID)
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.leadsync.core.tenant import get_current_tenant

logger = structlog.get_logger(__name__)


def _current_tenant_id() -> str | None:
    try:
        return get_current_tenant().tenant_id
    except RuntimeError:
        return None


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs every request with tenant context and timing.

    Generates a unique X-Request-ID for each request and includes it in
    both the log entry and the response headers. This middleware wraps the
    tenant middleware, so the tenant context is usually unset here and the
    raw X-Tenant-ID header is logged instead.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.monotonic()
        tenant_id = _current_tenant_id() or request.headers.get("X-Tenant-ID")

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            logger.error(
                "request_error",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
                tenant_id=tenant_id,
                request_id=request_id,
            )
            raise

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id

        log_method = logger.info if response.status_code < 400 else logger.warning
        if response.status_code >= 500:
            log_method = logger.error

        log_method(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            tenant_id=tenant_id,
            request_id=request_id,
        )

        return response
