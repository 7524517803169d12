"""FastAPI dependency injection for tenant context and app-scoped services.

Services are built once in the lifespan and stored on ``app.state``; the
getters here return them or answer 503 when startup could not build them.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.leadsync.core.tenant import TenantContext, get_current_tenant


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantMiddleware)."""
    try:
        return get_current_tenant()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing tenant context. Provide X-Tenant-ID header.",
        )


def get_app_service(request: Request, name: str, label: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service
