"""Shared fixtures for the isolation engine tests."""

import pytest

from isolation_engine.config import IsolationConfig
from isolation_engine.isolation_coordinator import IsolationCoordinator
from isolation_engine.table_store import TableStore

# Session-wide isolation fixtures shipped with the package
from isolation_engine.fixtures import (  # noqa: F401
    isolation_environment,
    isolated_transaction,
    isolated_seeder,
)


@pytest.fixture
def store():
    """Provide a fresh, empty TableStore."""
    return TableStore()


@pytest.fixture
def config():
    """Provide a config with heap tracing off to keep tests fast."""
    return IsolationConfig(trace_heap=False)


@pytest.fixture
def coordinator(store, config):
    """Provide an IsolationCoordinator over the fresh store."""
    return IsolationCoordinator(store, config)


@pytest.fixture
def inventory_rows():
    """Provide sample inventory rows."""
    return [
        {"id": 1, "sku": "MILK-2PCT-1GAL", "name": "2% Milk", "quantity": 48},
        {"id": 2, "sku": "BREAD-WHITE-LOAF", "name": "White Bread", "quantity": 10},
        {"id": 3, "sku": "EGGS-LARGE-DOZEN", "name": "Large Eggs", "quantity": 60},
    ]
