"""Maps test identifiers to transactions and guarantees per-test isolation."""

import gc
import logging
import threading
import warnings
from collections import OrderedDict
from typing import Dict, Any, List, Optional, Callable, Set

from .config import IsolationConfig, MIB, SCOPE_ALL
from .exceptions import (
    CleanupError,
    DuplicateTransactionError,
    LeakWarning,
    TransactionAlreadyCompleted,
)
from .memory import (
    ensure_heap_tracing,
    exceeds_threshold,
    memory_growth,
    sample_memory,
)
from .models.memory import MemorySample
from .models.transaction import TransactionState
from .snapshot_manager import SnapshotManager
from .table_store import TableStore
from .transaction_context import TransactionContext

logger = logging.getLogger(__name__)

Cleanup = Callable[[], Any]


class IsolationCoordinator:
    """
    Opens and ends one TransactionContext per test id.

    Rolling back a transaction replays its undo log and then restores the
    snapshot taken at start for the tables it touched, so a partial replay
    cannot leave residue. Tables that a concurrent transaction also wrote
    are left to the undo log alone, since the snapshot would erase that
    transaction's work. Cleanup callbacks always run after the
    transaction ends, each isolated from the others' failures.
    """

    def __init__(self, store: TableStore, config: Optional[IsolationConfig] = None):
        self.store = store
        self.config = config or IsolationConfig()
        self.snapshot_manager = SnapshotManager(store, self.config.max_snapshots)

        # Insertion order doubles as start order
        self.active_transactions: "OrderedDict[str, TransactionContext]" = OrderedDict()
        self.completed_transactions: Dict[str, TransactionState] = {}
        # Tables written by transactions that ended while this one was open
        self.overlapping_tables: Dict[str, Set[str]] = {}
        self.cleanup_callbacks: List[Cleanup] = []
        self.memory_samples: Dict[str, MemorySample] = {}
        self.latest_sample: Optional[MemorySample] = None
        self.lock = threading.RLock()

        if self.config.trace_heap:
            ensure_heap_tracing()

    def start_transaction(self, test_id: str) -> TransactionContext:
        """Open a transaction for ``test_id`` and snapshot the store."""
        with self.lock:
            if test_id in self.active_transactions:
                raise DuplicateTransactionError(test_id)

            context = TransactionContext(test_id, self.store)
            self.snapshot_manager.create_snapshot(test_id, pinned=True)
            self.active_transactions[test_id] = context
            self.overlapping_tables[test_id] = set()
            self.completed_transactions.pop(test_id, None)
            self._record_sample(f"{test_id}:start")

            logger.info("Transaction started for test: %s", test_id)
            return context

    def end_transaction(self, test_id: str, rollback: bool = True) -> None:
        """
        Roll back (default) or commit the transaction for ``test_id``.

        Ending an id that was never started logs a warning and does nothing;
        ending an id a second time raises TransactionAlreadyCompleted.

        Raises:
            TransactionAlreadyCompleted: If the transaction was already ended
        """
        with self.lock:
            context = self.active_transactions.get(test_id)
            if context is None:
                if test_id in self.completed_transactions:
                    raise TransactionAlreadyCompleted(test_id, "end")
                logger.warning("No active transaction found for test: %s", test_id)
                return

        try:
            if rollback:
                context.rollback()
                self._restore_snapshot(context)
            else:
                context.commit()
        finally:
            try:
                self._run_cleanups(test_id, context.cleanups)
                self._check_memory(test_id)
            finally:
                self._forget(test_id, context)

    def add_cleanup(self, test_id: Optional[str], cleanup: Cleanup) -> None:
        """Register a callback for ``test_id``, or process-wide if it has no transaction."""
        with self.lock:
            context = self.active_transactions.get(test_id) if test_id else None
            if context is not None:
                context.cleanups.append(cleanup)
            else:
                self.cleanup_callbacks.append(cleanup)

    def register_cleanup(self, cleanup: Cleanup) -> None:
        self.add_cleanup(None, cleanup)

    def reset_all_state(self) -> None:
        """Roll back every active transaction (newest first) and empty the store."""
        with self.lock:
            test_ids = list(reversed(self.active_transactions.keys()))

        for test_id in test_ids:
            try:
                self.end_transaction(test_id, rollback=True)
            except TransactionAlreadyCompleted:
                with self.lock:
                    self.active_transactions.pop(test_id, None)

        with self.lock:
            global_cleanups = list(self.cleanup_callbacks)
            self.cleanup_callbacks = []
        self._run_cleanups("global", global_cleanups)

        with self.lock:
            self.store.reset()
            self.snapshot_manager.clear()
            self.active_transactions.clear()
            self.completed_transactions.clear()
            self.overlapping_tables.clear()
            self.memory_samples.clear()

        gc.collect()
        logger.info("Isolation state reset")

    def has_active_transaction(self, test_id: str) -> bool:
        return test_id in self.active_transactions

    def get_transaction(self, test_id: str) -> Optional[TransactionContext]:
        return self.active_transactions.get(test_id)

    def active_transaction_ids(self) -> List[str]:
        with self.lock:
            return list(self.active_transactions.keys())

    def active_transaction_count(self) -> int:
        return len(self.active_transactions)

    def latest_memory_sample(self) -> Optional[MemorySample]:
        return self.latest_sample

    def _restore_snapshot(self, context: TransactionContext) -> None:
        if not self.config.restore_snapshot_on_rollback:
            return

        if self.config.snapshot_restore_scope == SCOPE_ALL:
            self.snapshot_manager.restore_snapshot(context.id)
            return

        with self.lock, self.snapshot_manager.lock, self.store.lock:
            shared = self._shared_tables(context)
            tables = [table for table in context.touched_tables() if table not in shared]
            if shared:
                logger.debug(
                    "Snapshot restore for test %s skips tables shared with "
                    "concurrent transactions: %s",
                    context.id,
                    sorted(shared),
                )
            if tables:
                self.snapshot_manager.restore_snapshot(context.id, tables)

    def _shared_tables(self, context: TransactionContext) -> Set[str]:
        """Tables another transaction wrote while ``context`` was open."""
        # Caller holds self.lock and self.store.lock
        shared = set(self.overlapping_tables.get(context.id, ()))
        for other_id, other in self.active_transactions.items():
            if other_id != context.id:
                shared.update(other.touched_tables())
        return shared

    def _run_cleanups(self, test_id: str, cleanups: List[Cleanup]) -> None:
        for cleanup in cleanups:
            try:
                cleanup()
            except Exception as exc:
                logger.error("%s", CleanupError(test_id, exc), exc_info=True)

    def _record_sample(self, label: str) -> MemorySample:
        sample = sample_memory(label)
        with self.lock:
            self.memory_samples[label] = sample
            self.latest_sample = sample
        return sample

    def _check_memory(self, test_id: str) -> None:
        start = self.memory_samples.get(f"{test_id}:start")
        end = self._record_sample(f"{test_id}:end")
        if start is None:
            return

        growth = memory_growth(start, end)
        threshold = self.config.leak_threshold_bytes
        if exceeds_threshold(start, end, threshold):
            message = (
                f"Potential memory leak detected in test {test_id}: "
                f"heap growth {growth['heap_growth'] // MIB}MB, "
                f"RSS growth {growth['rss_growth'] // MIB}MB"
            )
            logger.warning(message)
            warnings.warn(message, LeakWarning, stacklevel=3)

    def _forget(self, test_id: str, context: TransactionContext) -> None:
        with self.lock:
            if self.active_transactions.get(test_id) is context:
                del self.active_transactions[test_id]
            self.overlapping_tables.pop(test_id, None)
            touched = context.touched_tables()
            for other_id in self.active_transactions:
                self.overlapping_tables.setdefault(other_id, set()).update(touched)
            self.completed_transactions[test_id] = context.state
            self.memory_samples.pop(f"{test_id}:start", None)
            self.memory_samples.pop(f"{test_id}:end", None)
            self.snapshot_manager.discard_snapshot(test_id)
