"""Shared fixtures: in-memory stores and a ReconciliationEngine builder."""

from __future__ import annotations

from typing import Any

import pytest

from src.leadsync.config import Settings
from src.leadsync.crm.adapter import ProviderAdapter
from src.leadsync.crm.credentials import CredentialManager
from src.leadsync.crm.registry import AdapterRegistry
from src.leadsync.reconciliation.engine import ReconciliationEngine
from tests.doubles import (
    InMemoryConnectionStore,
    InMemoryFormCatalog,
    InMemoryLeadStore,
    make_settings,
)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def lead_store() -> InMemoryLeadStore:
    return InMemoryLeadStore()


@pytest.fixture
def form_catalog() -> InMemoryFormCatalog:
    return InMemoryFormCatalog()


@pytest.fixture
def connection_store() -> InMemoryConnectionStore:
    return InMemoryConnectionStore()


@pytest.fixture
def build_engine(lead_store, form_catalog, connection_store, settings):
    """Factory: build_engine(adapters, **kwargs) -> ReconciliationEngine."""

    def _build(
        adapters: dict[str, ProviderAdapter] | None = None, **kwargs: Any
    ) -> ReconciliationEngine:
        engine_settings = kwargs.pop("settings", settings)
        credentials = kwargs.pop(
            "credentials",
            CredentialManager(connections=connection_store, settings=engine_settings),
        )
        return ReconciliationEngine(
            leads=lead_store,
            forms=form_catalog,
            connections=connection_store,
            credentials=credentials,
            adapters=AdapterRegistry(adapters=adapters or {}),
            settings=engine_settings,
            **kwargs,
        )

    return _build
