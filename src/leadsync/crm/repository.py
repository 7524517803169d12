"""CRM connection store -- ABC plus the shared-schema SQLAlchemy implementation.

Connections live in the shared schema so the scheduler can enumerate every
tenant with an active connection in one query. Token columns are written only
through save_tokens() (successful refresh) and record_auth_failure()
(failed refresh), both called by the CredentialManager.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.core.tenant import TenantContext
from src.leadsync.crm.schemas import ConnectionStatus, OAuthTokens, ProviderConnection
from src.leadsync.models.shared import CRMConnectionModel, Tenant

logger = structlog.get_logger(__name__)


class ConnectionStore(ABC):
    """Abstract interface for provider connection persistence.

    Methods:
        list_active_connections: Active connections for one tenant.
        list_connections: Every connection for one tenant, any status.
        save_tokens: Persist refreshed tokens and reset the failure counter.
        record_auth_failure: Count a failed refresh; deactivate at threshold.
        record_sync_result: Stamp last sync time, status and error.
        list_tenants_with_active_connections: Tenants the scheduler should visit.
    """

    @abstractmethod
    async def list_active_connections(self, tenant_id: str) -> list[ProviderConnection]:
        ...

    @abstractmethod
    async def list_connections(self, tenant_id: str) -> list[ProviderConnection]:
        ...

    @abstractmethod
    async def save_tokens(self, connection_id: str, tokens: OAuthTokens) -> None:
        ...

    @abstractmethod
    async def record_auth_failure(
        self, connection_id: str, error: str, threshold: int
    ) -> ConnectionStatus:
        """Increment the failure counter and return the resulting status."""
        ...

    @abstractmethod
    async def record_sync_result(
        self, connection_id: str, status: str, error: str | None = None
    ) -> None:
        ...

    @abstractmethod
    async def list_tenants_with_active_connections(self) -> list[TenantContext]:
        ...


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_connection(model: CRMConnectionModel) -> ProviderConnection:
    """Convert CRMConnectionModel to ProviderConnection schema."""
    return ProviderConnection(
        id=str(model.id),
        tenant_id=str(model.tenant_id),
        provider=model.provider,
        status=ConnectionStatus(model.status),
        tokens=OAuthTokens(
            access_token=model.access_token,
            refresh_token=model.refresh_token,
            token_expiry=model.token_expiry,
        ),
        credentials=model.credentials or {},
        consecutive_auth_failures=model.consecutive_auth_failures or 0,
        last_sync_at=model.last_sync_at,
        last_sync_status=model.last_sync_status,
        last_error=model.last_error,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class ConnectionRepository(ConnectionStore):
    """Shared-schema connection store.

    Args:
        session_factory: Async callable that yields AsyncSession instances
            (get_shared_session in production).
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def list_active_connections(self, tenant_id: str) -> list[ProviderConnection]:
        async for session in self._session_factory():
            stmt = select(CRMConnectionModel).where(
                CRMConnectionModel.tenant_id == uuid.UUID(tenant_id),
                CRMConnectionModel.status == ConnectionStatus.ACTIVE.value,
            )
            result = await session.execute(stmt)
            return [_model_to_connection(m) for m in result.scalars().all()]

    async def list_connections(self, tenant_id: str) -> list[ProviderConnection]:
        async for session in self._session_factory():
            stmt = (
                select(CRMConnectionModel)
                .where(CRMConnectionModel.tenant_id == uuid.UUID(tenant_id))
                .order_by(CRMConnectionModel.provider)
            )
            result = await session.execute(stmt)
            return [_model_to_connection(m) for m in result.scalars().all()]

    async def save_tokens(self, connection_id: str, tokens: OAuthTokens) -> None:
        async for session in self._session_factory():
            model = await self._get(session, connection_id)
            model.access_token = tokens.access_token
            model.refresh_token = tokens.refresh_token
            model.token_expiry = tokens.token_expiry
            model.consecutive_auth_failures = 0
            model.last_error = None
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def record_auth_failure(
        self, connection_id: str, error: str, threshold: int
    ) -> ConnectionStatus:
        """Count a failed token refresh.

        Args:
            connection_id: Connection UUID string.
            error: Failure reason stored in last_error.
            threshold: Consecutive failures after which the connection is
                deactivated.

        Returns:
            The connection status after recording the failure.
        """
        async for session in self._session_factory():
            model = await self._get(session, connection_id)
            model.consecutive_auth_failures = (model.consecutive_auth_failures or 0) + 1
            model.last_error = error
            if model.consecutive_auth_failures >= threshold:
                model.status = ConnectionStatus.INACTIVE.value
                logger.warning(
                    "crm.connection_deactivated",
                    connection_id=connection_id,
                    provider=model.provider,
                    failures=model.consecutive_auth_failures,
                )
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return ConnectionStatus(model.status)

    async def record_sync_result(
        self, connection_id: str, status: str, error: str | None = None
    ) -> None:
        async for session in self._session_factory():
            model = await self._get(session, connection_id)
            model.last_sync_at = datetime.now(timezone.utc)
            model.last_sync_status = status
            model.last_error = error
            await session.commit()

    async def list_tenants_with_active_connections(self) -> list[TenantContext]:
        async for session in self._session_factory():
            stmt = (
                select(Tenant.id, Tenant.slug, Tenant.schema_name)
                .join(CRMConnectionModel, CRMConnectionModel.tenant_id == Tenant.id)
                .where(
                    Tenant.is_active.is_(True),
                    CRMConnectionModel.status == ConnectionStatus.ACTIVE.value,
                )
                .distinct()
            )
            result = await session.execute(stmt)
            return [
                TenantContext(tenant_id=str(tid), tenant_slug=slug, schema_name=schema)
                for tid, slug, schema in result.all()
            ]

    @staticmethod
    async def _get(session: AsyncSession, connection_id: str) -> CRMConnectionModel:
        stmt = select(CRMConnectionModel).where(
            CRMConnectionModel.id == uuid.UUID(connection_id),
        )
        result = await session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            raise ValueError(f"CRM connection not found: id={connection_id}")
        return model
