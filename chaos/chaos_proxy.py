from typing import Any, Callable, Dict, List, Optional

from isolation_engine.transaction_context import TransactionContext

from .chaos_config import ChaosConfig


class ChaosProxy:
    """Wraps a TransactionContext, injecting failures and delays before each call.

    A failure is raised before the wrapped mutation runs, so the undo log
    always reflects exactly the mutations that were applied.
    """

    def __init__(self, transaction: TransactionContext, config: ChaosConfig):
        self.transaction = transaction
        self.chaos = config

    def _with_chaos(self, operation: Callable, *args, context: str, **kwargs) -> Any:
        self.chaos.maybe_fail(context)
        self.chaos.maybe_delay(context)
        return operation(*args, **kwargs)

    def insert(self, table: str, rows) -> List[Dict[str, Any]]:
        """Insert with chaos injection."""
        return self._with_chaos(self.transaction.insert, table, rows, context="insert")

    def update(
        self, table: str, patch: Dict[str, Any], matcher: Optional[Dict[str, Any]]
    ):
        """Update with chaos injection."""
        return self._with_chaos(
            self.transaction.update, table, patch, matcher, context="update"
        )

    def delete(self, table: str, matcher: Optional[Dict[str, Any]]):
        """Delete with chaos injection."""
        return self._with_chaos(
            self.transaction.delete, table, matcher, context="delete"
        )

    def truncate(self, table: str):
        """Truncate with chaos injection."""
        return self._with_chaos(self.transaction.truncate, table, context="truncate")

    def select(self, table: str, matcher: Optional[Dict[str, Any]] = None):
        """Select with chaos delays only; reads never fail."""
        self.chaos.maybe_delay("select")
        return self.transaction.select(table, matcher)
