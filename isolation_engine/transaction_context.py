"""Per-test transaction context with an undo log."""

import copy
import logging
import time
from typing import Dict, Any, List, Optional, Callable

from .exceptions import TransactionAlreadyCompleted
from .models.transaction import Operation, OperationType, TransactionState
from .table_store import TableStore, Record, RowRef, Rows, UpdateResult, _as_list

logger = logging.getLogger(__name__)


class TransactionContext:
    """
    Undo-log transaction over a TableStore.

    Every mutation issued through an open context is applied to the store
    and logged twice: the forward operation, and a precomputed inverse that
    exactly reverses it. Inverses hold handles on the stored row objects
    rather than indices or ids, and every row the context writes is claimed
    until it ends, so no other open transaction can change a row between a
    forward operation and its inverse. Rollback replays the inverses
    strictly last-to-first.
    """

    def __init__(self, test_id: str, store: TableStore):
        self.id = test_id
        self.store = store
        self.forward_log: List[Operation] = []
        self.inverse_log: List[Operation] = []
        self.state = TransactionState.OPEN
        self.started_at = time.time()
        self.ended_at: Optional[float] = None
        self.cleanups: List[Callable[[], Any]] = []
        # Keeps claimed row objects alive so their ids stay unique
        self.claimed: Dict[int, Record] = {}

    @property
    def is_completed(self) -> bool:
        return self.state != TransactionState.OPEN

    def _ensure_open(self, action: str) -> None:
        if self.is_completed:
            raise TransactionAlreadyCompleted(self.id, action)

    def _claim(self, table: str, refs: List[RowRef]) -> None:
        self.store.claim(self.id, table, refs)
        for ref in refs:
            self.claimed[id(ref.record)] = ref.record

    def _release(self) -> None:
        self.store.release(self.id, self.claimed.values())
        self.claimed.clear()

    def record_operation(self, operation: Operation, inverse: Operation) -> None:
        """Append a forward operation and its inverse to the log."""
        self._ensure_open("record operation on")
        self.forward_log.append(operation)
        self.inverse_log.append(inverse)

    def insert(self, table: str, rows: Rows) -> List[Record]:
        """Insert rows; inverse removes exactly the stored rows."""
        self._ensure_open("insert into")
        rows = _as_list(rows)

        with self.store.lock:
            start = self.store.count(table)
            inserted = self.store.insert(table, rows)
            positions = list(range(start, start + len(inserted)))
            refs = self.store.refs(table, positions)
            self._claim(table, refs)

            self.record_operation(
                Operation(
                    OperationType.INSERT,
                    table,
                    rows=copy.deepcopy(inserted),
                    positions=positions,
                ),
                Operation(OperationType.DELETE, table, positions=positions, refs=refs),
            )
        return inserted

    def update(
        self, table: str, patch: Dict[str, Any], matcher: Optional[Dict[str, Any]]
    ) -> UpdateResult:
        """Shallow-merge a patch into matching rows; inverse restores pre-images."""
        self._ensure_open("update")

        with self.store.lock:
            positions = self.store.find_positions(table, matcher)
            refs = self.store.refs(table, positions)
            self._claim(table, refs)
            result = self.store.update(table, patch, positions=positions)

            self.record_operation(
                Operation(
                    OperationType.UPDATE,
                    table,
                    rows=copy.deepcopy(result.mutated),
                    matcher=copy.deepcopy(matcher),
                    patch=copy.deepcopy(patch),
                    positions=list(result.positions),
                    original_data=copy.deepcopy(result.pre_images),
                ),
                Operation(
                    OperationType.UPDATE,
                    table,
                    rows=copy.deepcopy(result.pre_images),
                    positions=list(result.positions),
                    refs=refs,
                ),
            )
        return result

    def delete(self, table: str, matcher: Optional[Dict[str, Any]]) -> List[Record]:
        """Delete matching rows; inverse puts the same row objects back in place."""
        self._ensure_open("delete from")

        with self.store.lock:
            positions = self.store.find_positions(table, matcher)
            refs = self.store.refs(table, positions)
            self._claim(table, refs)
            self.store.remove_refs(table, refs)
            removed = [copy.deepcopy(ref.record) for ref in refs]

            self.record_operation(
                Operation(
                    OperationType.DELETE,
                    table,
                    matcher=copy.deepcopy(matcher),
                    positions=positions,
                    original_data=copy.deepcopy(removed),
                ),
                Operation(
                    OperationType.INSERT,
                    table,
                    rows=copy.deepcopy(removed),
                    positions=positions,
                    refs=refs,
                ),
            )
        return removed

    def truncate(self, table: str) -> List[Record]:
        """Empty a table; inverse puts every removed row object back."""
        self._ensure_open("truncate")

        with self.store.lock:
            positions = list(range(self.store.count(table)))
            refs = self.store.refs(table, positions)
            self._claim(table, refs)
            self.store.truncate(table)
            removed = [copy.deepcopy(ref.record) for ref in refs]

            self.record_operation(
                Operation(
                    OperationType.TRUNCATE,
                    table,
                    positions=positions,
                    original_data=copy.deepcopy(removed),
                ),
                Operation(
                    OperationType.INSERT,
                    table,
                    rows=copy.deepcopy(removed),
                    positions=positions,
                    refs=refs,
                ),
            )
        return removed

    def select(
        self, table: str, matcher: Optional[Dict[str, Any]] = None
    ) -> List[Record]:
        return self.store.select(table, matcher)

    def touched_tables(self) -> List[str]:
        """Tables mutated by this transaction, in first-touch order."""
        seen = []
        for operation in self.forward_log:
            if operation.table not in seen:
                seen.append(operation.table)
        return seen

    def commit(self) -> None:
        """Make changes permanent and discard the inverse log."""
        self._ensure_open("commit")

        self.state = TransactionState.COMMITTED
        self.ended_at = time.time()
        self.inverse_log = []
        self._release()
        logger.info("Transaction committed for test: %s", self.id)

    def rollback(self) -> None:
        """Replay the inverse log last-to-first, then mark the context terminal."""
        self._ensure_open("roll back")

        with self.store.lock:
            for inverse in reversed(self.inverse_log):
                try:
                    self._apply(inverse)
                except Exception:
                    logger.exception(
                        "Failed to reverse %s on %s for test %s",
                        inverse.op_type.value,
                        inverse.table,
                        self.id,
                    )
            self._release()

        self.state = TransactionState.ROLLED_BACK
        self.ended_at = time.time()
        logger.info(
            "Transaction rolled back for test: %s (%d operation(s) reversed)",
            self.id,
            len(self.inverse_log),
        )

    def _apply(self, inverse: Operation) -> None:
        table = inverse.table
        # Operations recorded by hand carry no row handles
        if inverse.op_type == OperationType.DELETE:
            if inverse.refs is not None:
                self.store.remove_refs(table, inverse.refs)
            else:
                self.store.delete(table, inverse.matcher, inverse.positions or None)
        elif inverse.op_type == OperationType.INSERT:
            if inverse.refs is not None:
                self.store.restore_refs(table, inverse.refs)
            else:
                self.store.insert(table, inverse.rows, inverse.positions or None)
        elif inverse.op_type == OperationType.UPDATE:
            if inverse.refs is not None:
                self.store.overwrite_refs(table, inverse.refs, inverse.rows)
            else:
                self.store.update(table, inverse.patch or {}, inverse.matcher)
        elif inverse.op_type == OperationType.TRUNCATE:
            self.store.truncate(table)
