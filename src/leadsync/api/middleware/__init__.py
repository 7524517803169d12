"""API middleware package."""

from src.leadsync.api.middleware.logging import LoggingMiddleware
from src.leadsync.api.middleware.tenant import TenantMiddleware

__all__ = ["LoggingMiddleware", "TenantMiddleware"]
