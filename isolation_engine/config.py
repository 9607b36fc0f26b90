"""Runtime configuration for the isolation engine."""

import os
from dataclasses import dataclass
from typing import Optional

MIB = 1024 * 1024
DEFAULT_LEAK_THRESHOLD = 10 * MIB

SCOPE_TOUCHED = "touched"
SCOPE_ALL = "all"


@dataclass
class IsolationConfig:
    """
    Settings shared by the coordinator and the admission controller.

    Args:
        max_concurrency: Number of test bodies allowed to run at once.
        leak_threshold_bytes: Heap or RSS growth that triggers a LeakWarning.
        restore_snapshot_on_rollback: Restore the start snapshot after undo-log replay.
        snapshot_restore_scope: "touched" restores only tables the transaction
            mutated, "all" restores the whole store.
        task_deadline: Seconds before an admitted task is abandoned (None = never).
        trace_heap: Start tracemalloc so heap samples are meaningful.
        max_snapshots: Snapshots retained by the snapshot manager. Snapshots of
            open transactions are never evicted, so with more open transactions
            than this the limit is exceeded (with a warning) instead.
    """

    max_concurrency: int = 4
    leak_threshold_bytes: int = DEFAULT_LEAK_THRESHOLD
    restore_snapshot_on_rollback: bool = True
    snapshot_restore_scope: str = SCOPE_TOUCHED
    task_deadline: Optional[float] = None
    trace_heap: bool = True
    max_snapshots: int = 50

    def __post_init__(self):
        self.max_concurrency = max(1, int(self.max_concurrency))
        if self.snapshot_restore_scope not in (SCOPE_TOUCHED, SCOPE_ALL):
            raise ValueError(
                f"Invalid snapshot restore scope: {self.snapshot_restore_scope}"
            )

    @classmethod
    def from_env(cls, prefix: str = "ISOLATION_") -> "IsolationConfig":
        """Build a config from ``ISOLATION_*`` environment variables."""
        env = os.environ

        deadline = env.get(f"{prefix}TASK_DEADLINE")
        return cls(
            max_concurrency=int(env.get(f"{prefix}MAX_CONCURRENCY", 4)),
            leak_threshold_bytes=int(
                env.get(f"{prefix}LEAK_THRESHOLD_BYTES", DEFAULT_LEAK_THRESHOLD)
            ),
            restore_snapshot_on_rollback=_as_bool(
                env.get(f"{prefix}RESTORE_SNAPSHOT", "true")
            ),
            snapshot_restore_scope=env.get(f"{prefix}RESTORE_SCOPE", SCOPE_TOUCHED),
            task_deadline=float(deadline) if deadline else None,
            trace_heap=_as_bool(env.get(f"{prefix}TRACE_HEAP", "true")),
            max_snapshots=int(env.get(f"{prefix}MAX_SNAPSHOTS", 50)),
        )


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
