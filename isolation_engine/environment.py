"""Explicit per-process isolation context."""

import logging
from typing import Any, Callable, Optional

from .admission_controller import ConcurrencyAdmissionController
from .config import IsolationConfig
from .isolation_coordinator import IsolationCoordinator
from .scoped import transaction_scope
from .table_store import TableStore
from .transaction_context import TransactionContext

logger = logging.getLogger(__name__)

TestBody = Callable[[TransactionContext], Any]


class IsolationEnvironment:
    """
    Owns the single store plus the coordinator and admission controller over it.

    Construct one per process (or per pytest session) and pass it by
    reference; ``close()`` stops admitting work and rolls back anything still open.
    """

    def __init__(self, config: Optional[IsolationConfig] = None):
        self.config = config or IsolationConfig()
        self.store = TableStore()
        self.coordinator = IsolationCoordinator(self.store, self.config)
        self.controller = ConcurrencyAdmissionController(
            max_concurrency=self.config.max_concurrency,
            default_deadline=self.config.task_deadline,
        )
        self.closed = False

    def _body(self, test_id: str, test_fn: TestBody, commit: bool) -> Callable[[], Any]:
        def body():
            with transaction_scope(self.coordinator, test_id, commit=commit) as txn:
                return test_fn(txn)

        return body

    def run_isolated(self, test_id: str, test_fn: TestBody) -> Any:
        """Admit ``test_fn`` and run it in a transaction that is always rolled back."""
        return self.controller.execute_test(
            test_id, self._body(test_id, test_fn, commit=False)
        )

    def run_committed(self, test_id: str, test_fn: TestBody) -> Any:
        """Admit ``test_fn`` and commit its transaction when it succeeds."""
        return self.controller.execute_test(
            test_id, self._body(test_id, test_fn, commit=True)
        )

    def submit_isolated(self, test_id: str, test_fn: TestBody):
        """Non-blocking form of :meth:`run_isolated`; returns a Future."""
        return self.controller.submit(test_id, self._body(test_id, test_fn, commit=False))

    def close(self) -> None:
        if self.closed:
            return
        self.controller.shutdown(wait=True)
        self.coordinator.reset_all_state()
        self.closed = True
        logger.info("Isolation environment closed")

    def __enter__(self) -> "IsolationEnvironment":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
