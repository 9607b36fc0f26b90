"""Whole-store snapshot management for rollback verification."""

import time
import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional, Iterable, Set

from .models.snapshot import Snapshot
from .table_store import TableStore

logger = logging.getLogger(__name__)

class SnapshotManager:
    """
    Captures and restores deep copies of a TableStore, keyed by test id.

    At most ``max_snapshots`` are retained; beyond that the oldest unpinned
    snapshot is evicted. Pinned snapshots (those of open transactions) are
    never evicted, so the limit is exceeded rather than dropping a restore
    point that is still needed.
    """

    def __init__(self, store: TableStore, max_snapshots: int = 50):
        self.store = store
        self.snapshots: "OrderedDict[str, Snapshot]" = OrderedDict()
        self.pinned: Set[str] = set()
        self.max_snapshots = max_snapshots
        self.lock = threading.RLock()

    def create_snapshot(
        self, test_id: str, description: str = "", pinned: bool = False
    ) -> Snapshot:
        """Capture the whole store for ``test_id``; ``pinned`` protects it from eviction."""
        with self.lock:
            snapshot = Snapshot(
                timestamp=time.time(),
                tables=self.store.capture_state(),
                test_id=test_id,
                description=description or f"pre_transaction_{test_id}",
            )

            self.snapshots[test_id] = snapshot
            self.snapshots.move_to_end(test_id)
            if pinned:
                self.pinned.add(test_id)
            else:
                self.pinned.discard(test_id)

            self._evict()

            logger.debug(
                "Snapshot created: %s at %s", snapshot.description, snapshot.timestamp
            )
            return snapshot

    def _evict(self) -> None:
        # Caller holds self.lock
        excess = len(self.snapshots) - self.max_snapshots
        if excess <= 0:
            return

        evictable = [test_id for test_id in self.snapshots if test_id not in self.pinned]
        for test_id in evictable[:excess]:
            del self.snapshots[test_id]
            logger.warning("Snapshot evicted for test %s", test_id)

        if len(self.snapshots) > self.max_snapshots:
            logger.warning(
                "%d pinned snapshots retained above the limit of %d",
                len(self.snapshots),
                self.max_snapshots,
            )

    def get_snapshot(self, test_id: str) -> Optional[Snapshot]:
        return self.snapshots.get(test_id)

    def restore_snapshot(
        self, test_id: str, tables: Optional[Iterable[str]] = None
    ) -> bool:
        """Apply the snapshot taken for ``test_id``; False if none exists."""
        with self.lock:
            snapshot = self.snapshots.get(test_id)
            if snapshot is None:
                logger.warning("No snapshot available for test %s", test_id)
                return False

            self.store.restore_state(snapshot.tables, tables)
            return True

    def discard_snapshot(self, test_id: str) -> None:
        with self.lock:
            self.snapshots.pop(test_id, None)
            self.pinned.discard(test_id)

    def get_snapshot_count(self) -> int:
        """Get total number of retained snapshots."""
        return len(self.snapshots)

    def clear(self) -> None:
        with self.lock:
            self.snapshots.clear()
            self.pinned.clear()

    def snapshot_ids(self) -> Dict[str, str]:
        """Map of test id to snapshot description."""
        with self.lock:
            return {test_id: s.description for test_id, s in self.snapshots.items()}
