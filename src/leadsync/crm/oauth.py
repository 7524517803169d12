"""OAuth 2.0 refresh_token exchange against each provider's token endpoint."""

from __future__ import annotations

import httpx
import structlog

from src.leadsync.crm.errors import (
    ProviderUnavailableError,
    TokenRefreshError,
    UnsupportedProviderError,
)
from src.leadsync.crm.http import provider_client, request_json
from src.leadsync.crm.schemas import CRMProvider, RefreshedTokens

logger = structlog.get_logger(__name__)

TOKEN_URLS: dict[str, str] = {
    CRMProvider.HUBSPOT.value: "https://api.hubapi.com/oauth/v1/token",
    CRMProvider.SALESFORCE.value: "https://login.salesforce.com/services/oauth2/token",
    CRMProvider.ZOHO.value: "https://accounts.zoho.com/oauth/v2/token",
    CRMProvider.DYNAMICS.value: "https://login.microsoftonline.com/common/oauth2/v2.0/token",
}


async def exchange_refresh_token(
    provider: str,
    refresh_token: str,
    client_id: str,
    client_secret: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> RefreshedTokens:
    """Exchange a refresh token for a new access token.

    Args:
        provider: Provider identifier (key of TOKEN_URLS).
        refresh_token: Current refresh token.
        client_id: OAuth client id registered with the provider.
        client_secret: OAuth client secret.
        client: Optional httpx client (tests inject a MockTransport client).
        timeout: Request timeout when no client is given.

    Returns:
        RefreshedTokens as returned by the provider. ``refresh_token`` is None
        when the provider did not rotate it.

    Raises:
        UnsupportedProviderError: No token endpoint known for ``provider``.
        TokenRefreshError: The exchange failed or returned no access token.
    """
    token_url = TOKEN_URLS.get(provider)
    if token_url is None:
        raise UnsupportedProviderError(provider)

    form = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
    }

    async with provider_client(client, timeout) as http:
        try:
            body = await request_json(http, provider, "POST", token_url, data=form)
        except ProviderUnavailableError as exc:
            raise TokenRefreshError(provider, exc.reason) from exc

    access_token = body.get("access_token")
    if not access_token:
        raise TokenRefreshError(provider, "token response has no access_token")

    expires_in = body.get("expires_in")
    logger.info("crm.token_exchanged", provider=provider, expires_in=expires_in)
    return RefreshedTokens(
        access_token=access_token,
        refresh_token=body.get("refresh_token") or None,
        expires_in=int(expires_in) if expires_in is not None else None,
    )
