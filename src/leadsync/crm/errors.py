"""Exception taxonomy for CRM integration and lead reconciliation.

Provider-level errors (ProviderUnavailableError and subclasses) are caught by
the reconciliation engine and only reflected in counters. Record-level errors
(DuplicateLeadError and anything raised while merging one candidate) count as
skipped. ReconciliationError is run-level and propagates to the trigger.
LeadNotFoundError and LeadExportError reject an outbound push before any
provider call is made.
"""

from __future__ import annotations


class CRMError(Exception):
    """Base class for CRM integration errors."""


class ProviderUnavailableError(CRMError):
    """A provider cannot be used for the current pass (network, HTTP, auth, timeout)."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason


class TokenRefreshError(ProviderUnavailableError):
    """Exchanging a refresh token for a new access token failed."""


class UnsupportedProviderError(CRMError):
    """Provider identifier has no adapter or no OAuth configuration."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported CRM provider: {provider}")
        self.provider = provider


class DuplicateLeadError(CRMError):
    """Lead store rejected a create because of a uniqueness constraint."""


class ReconciliationError(CRMError):
    """Run-level failure: lead store or form catalog unreachable."""


class ReconciliationInProgressError(CRMError):
    """Another reconciliation run holds the lock for this tenant."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Reconciliation already running for tenant {tenant_id}")
        self.tenant_id = tenant_id


class LeadNotFoundError(CRMError):
    """No lead with this id exists for the tenant."""

    def __init__(self, lead_id: str) -> None:
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class LeadExportError(CRMError):
    """A lead cannot be pushed to the requested provider."""
