"""CRM integration layer -- pluggable provider adapters for lead import and push.

Provides the ProviderAdapter interface with one implementation per provider:
- HubSpotAdapter: contacts, cursor paging
- SalesforceAdapter: SOQL, LIMIT/OFFSET paging
- ZohoAdapter: Leads module, page/per_page paging
- DynamicsAdapter: leads entity set, $top/$skip paging

Plus the CredentialManager that keeps OAuth tokens fresh and the
AdapterRegistry the reconciliation engine resolves providers through.
"""

from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.credentials import CredentialManager
from src.leadsync.crm.dynamics import DynamicsAdapter
from src.leadsync.crm.hubspot import HubSpotAdapter
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.crm.salesforce import SalesforceAdapter
from src.leadsync.crm.zoho import ZohoAdapter

__all__ = [
    "ProviderAdapter",
    "HubSpotAdapter",
    "SalesforceAdapter",
    "ZohoAdapter",
    "DynamicsAdapter",
    "AdapterRegistry",
    "CredentialManager",
]
