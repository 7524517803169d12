"""Outbound HTTP helpers shared by provider adapters and the OAuth exchange.

Transient failures (transport errors, 429, 5xx) are retried with tenacity,
3 attempts with exponential backoff 1-10s. Whatever is still failing after
that, plus every non-transient HTTP error, surfaces as
ProviderUnavailableError so the reconciliation engine can isolate the
provider.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.leadsync.crm.errors import ProviderUnavailableError

logger = structlog.get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)
async def _send(
    client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
) -> httpx.Response:
    response = await client.request(method, url, **kwargs)
    response.raise_for_status()
    return response


@asynccontextmanager
async def provider_client(
    client: httpx.AsyncClient | None, timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` if given, otherwise a short-lived client owned by the block."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


async def request_json(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> dict[str, Any]:
    """Send a request and decode a JSON object body.

    Args:
        client: httpx client to send through.
        provider: Provider identifier used in errors and logs.
        method: HTTP method.
        url: Absolute request URL.
        **kwargs: Passed through to httpx (params, headers, data, ...).

    Returns:
        Decoded JSON body.

    Raises:
        ProviderUnavailableError: Network failure, non-2xx status after
            retries, or a body that is not a JSON object.
    """
    try:
        response = await _send(client, method, url, **kwargs)
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        logger.warning(
            "crm.http_status_error",
            provider=provider,
            url=url,
            status=status,
        )
        raise ProviderUnavailableError(provider, f"HTTP {status}") from exc
    except httpx.HTTPError as exc:
        logger.warning(
            "crm.http_transport_error",
            provider=provider,
            url=url,
            error=str(exc),
        )
        raise ProviderUnavailableError(provider, f"{type(exc).__name__}: {exc}") from exc

    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderUnavailableError(provider, "response body is not JSON") from exc
    if not isinstance(body, dict):
        raise ProviderUnavailableError(provider, "response body is not a JSON object")
    return body
