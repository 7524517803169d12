"""Credential manager -- keeps each connection's access token fresh.

A token is stale when it has an expiry and less than the refresh margin
(default 5 minutes) remains. Refreshing exchanges the refresh token, persists
the new pair through the ConnectionStore, and resets the failure counter. A
failed refresh leaves stored tokens untouched, increments the counter, and
deactivates the connection once CRM_AUTH_FAILURE_THRESHOLD is reached.

At most one refresh per connection is in flight: callers racing on the same
connection wait on a per-connection asyncio.Lock and reuse the winner's token.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import httpx
import structlog

from src.leadsync.config import Settings, get_settings
from src.leadsync.crm.errors import CRMError, TokenRefreshError
from src.leadsync.crm.oauth import exchange_refresh_token
from src.leadsync.crm.repository import ConnectionStore
from src.leadsync.crm.schemas import OAuthTokens, ProviderConnection, RefreshedTokens

logger = structlog.get_logger(__name__)

TokenExchange = Callable[..., Awaitable[RefreshedTokens]]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def needs_refresh(tokens: OAuthTokens, now: datetime, margin: timedelta) -> bool:
    """True when ``tokens`` expire within ``margin`` of ``now``.

    Tokens without an expiry are treated as fresh.
    """
    if tokens.token_expiry is None:
        return False
    return _as_utc(tokens.token_expiry) - now < margin


class CredentialManager:
    """Ensures provider connections carry a usable access token.

    Args:
        connections: Store used to persist refreshed tokens and failures.
        settings: Application settings (client credentials, margin, threshold).
        exchange: Token exchange callable, exchange_refresh_token by default.
        http_client: Optional httpx client passed through to the exchange.
    """

    def __init__(
        self,
        connections: ConnectionStore,
        settings: Settings | None = None,
        exchange: TokenExchange = exchange_refresh_token,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._connections = connections
        self._settings = settings or get_settings()
        self._exchange = exchange
        self._http_client = http_client
        self._margin = timedelta(seconds=self._settings.CRM_TOKEN_REFRESH_MARGIN_SECONDS)
        self._locks: dict[str, asyncio.Lock] = {}
        self._refreshed: dict[str, OAuthTokens] = {}

    async def ensure_fresh_token(self, connection: ProviderConnection) -> str:
        """Return a non-stale access token for ``connection``.

        Args:
            connection: Connection as loaded at the start of the run.

        Returns:
            The current access token, refreshed first if it was stale.

        Raises:
            TokenRefreshError: Refresh was needed and failed.
        """
        now = datetime.now(timezone.utc)
        if not needs_refresh(connection.tokens, now, self._margin):
            return connection.tokens.access_token

        lock = self._locks.setdefault(connection.id, asyncio.Lock())
        async with lock:
            # A concurrent caller may have refreshed while we waited
            cached = self._refreshed.get(connection.id)
            if cached is not None and not needs_refresh(
                cached, datetime.now(timezone.utc), self._margin
            ):
                return cached.access_token

            tokens = await self._refresh(connection)
            self._refreshed[connection.id] = tokens
            return tokens.access_token

    async def _refresh(self, connection: ProviderConnection) -> OAuthTokens:
        provider = connection.provider
        refresh_token = connection.tokens.refresh_token
        client_credentials = self._settings.get_provider_credentials(provider)

        try:
            if not refresh_token:
                raise TokenRefreshError(provider, "connection has no refresh token")
            if client_credentials is None:
                raise TokenRefreshError(provider, "OAuth client credentials not configured")

            client_id, client_secret = client_credentials
            refreshed = await self._exchange(
                provider,
                refresh_token,
                client_id,
                client_secret,
                client=self._http_client,
                timeout=self._settings.CRM_HTTP_TIMEOUT,
            )
        except CRMError as exc:
            reason = exc.reason if isinstance(exc, TokenRefreshError) else str(exc)
            status = await self._connections.record_auth_failure(
                connection.id,
                reason,
                self._settings.CRM_AUTH_FAILURE_THRESHOLD,
            )
            logger.warning(
                "crm.token_refresh_failed",
                connection_id=connection.id,
                tenant_id=connection.tenant_id,
                provider=provider,
                reason=reason,
                connection_status=status.value,
            )
            if isinstance(exc, TokenRefreshError):
                raise
            raise TokenRefreshError(provider, reason) from exc

        expiry = None
        if refreshed.expires_in is not None:
            expiry = datetime.now(timezone.utc) + timedelta(
                seconds=refreshed.expires_in
            ) - self._margin

        tokens = OAuthTokens(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token or refresh_token,
            token_expiry=expiry,
        )
        await self._connections.save_tokens(connection.id, tokens)
        logger.info(
            "crm.token_refreshed",
            connection_id=connection.id,
            tenant_id=connection.tenant_id,
            provider=provider,
            token_expiry=expiry.isoformat() if expiry else None,
        )
        return tokens
