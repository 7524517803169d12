"""Tenant context propagation via Python contextvars.

The TenantContext is set by middleware at the start of each request, and by
the reconciliation scheduler around each per-tenant run. Every tenant-scoped
database session reads it via get_current_tenant().
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request or scheduled run."""

    tenant_id: str
    tenant_slug: str
    schema_name: str  # e.g., "tenant_acme"


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current call stack.

    Raises RuntimeError if no tenant context has been set.
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- call is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context. Returns a token for reset."""
    return _tenant_context.set(ctx)


@contextmanager
def tenant_scope(ctx: TenantContext) -> Iterator[TenantContext]:
    """Run a block with ``ctx`` as the current tenant, restoring the previous one."""
    token = set_tenant_context(ctx)
    try:
        yield ctx
    finally:
        _tenant_context.reset(token)


# ── Paths that skip tenant resolution ───────────────────────────────────────

SKIP_TENANT_PATHS = (
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
)
