"""Provider adapter registry -- lookup table from provider identifier to adapter.

Unknown identifiers resolve to None; the reconciliation engine skips such
connections without counting them as failures.
"""

from __future__ import annotations

import httpx
import structlog

from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.dynamics import DynamicsAdapter
from src.leadsync.crm.hubspot import HubSpotAdapter
from src.leadsync.crm.salesforce import SalesforceAdapter
from src.leadsync.crm.zoho import ZohoAdapter

logger = structlog.get_logger(__name__)

ADAPTER_CLASSES: dict[str, type[ProviderAdapter]] = {
    cls.provider: cls
    for cls in (HubSpotAdapter, SalesforceAdapter, ZohoAdapter, DynamicsAdapter)
}


class AdapterRegistry:
    """Holds one adapter instance per supported provider.

    Args:
        adapters: Explicit provider -> adapter mapping. When None, every
            class in ADAPTER_CLASSES is instantiated with ``client`` and
            ``timeout``.
        client: Optional shared httpx client for the default adapters.
        timeout: Request timeout for the default adapters.
    """

    def __init__(
        self,
        adapters: dict[str, ProviderAdapter] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        if adapters is None:
            adapters = {
                name: cls(client=client, timeout=timeout)
                for name, cls in ADAPTER_CLASSES.items()
            }
        self._adapters = dict(adapters)

    def get(self, provider: str) -> ProviderAdapter | None:
        """Return the adapter for ``provider`` or None if unsupported."""
        adapter = self._adapters.get(provider)
        if adapter is None:
            logger.debug("crm.adapter_not_found", provider=provider)
        return adapter

    def providers(self) -> list[str]:
        return sorted(self._adapters)
