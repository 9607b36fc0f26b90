"""pytest fixtures wiring per-test transactions into the test lifecycle.

Enable with ``pytest_plugins = ["isolation_engine.fixtures"]`` in a conftest.
"""

import logging

import pytest

from .config import IsolationConfig
from .environment import IsolationEnvironment
from .seeder import Seeder

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def isolation_environment():
    """One store, coordinator and admission controller for the whole session."""
    environment = IsolationEnvironment(IsolationConfig.from_env())
    logger.info("Setting up test database environment")
    yield environment
    logger.info("Tearing down test database environment")
    environment.close()


@pytest.fixture
def isolated_transaction(isolation_environment, request):
    """An open transaction for the current test, rolled back afterwards."""
    coordinator = isolation_environment.coordinator
    transaction = coordinator.start_transaction(request.node.nodeid)
    yield transaction
    coordinator.end_transaction(request.node.nodeid, rollback=True)


@pytest.fixture
def isolated_seeder(isolated_transaction):
    """A Seeder whose inserts are undone with the test's transaction."""
    return Seeder(isolated_transaction)
