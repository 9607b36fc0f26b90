"""Heap/RSS sampling and heuristic leak detection.

Readings are noisy in a garbage-collected runtime; treat every result here
as advisory telemetry, never as a hard test oracle.
"""

import os
import time
import tracemalloc
from typing import Dict, Optional

import psutil

from .config import DEFAULT_LEAK_THRESHOLD
from .models.memory import MemorySample, LeakReport

_process = psutil.Process(os.getpid())


def ensure_heap_tracing() -> None:
    """Start tracemalloc if nothing else has."""
    if not tracemalloc.is_tracing():
        tracemalloc.start()


def sample_memory(label: str) -> MemorySample:
    """
    Take a labeled reading of the current process.

    ``heap_used`` is the size of Python allocations traced by tracemalloc
    (0 when tracing is off); ``rss`` is the resident set size from psutil.
    """
    heap_used = tracemalloc.get_traced_memory()[0] if tracemalloc.is_tracing() else 0
    return MemorySample(
        label=label,
        heap_used=heap_used,
        rss=_process.memory_info().rss,
        timestamp=time.time(),
    )


def memory_growth(start: MemorySample, end: MemorySample) -> Dict[str, int]:
    return {
        "heap_growth": end.heap_used - start.heap_used,
        "rss_growth": end.rss - start.rss,
    }


def exceeds_threshold(start: MemorySample, end: MemorySample, threshold: int) -> bool:
    growth = memory_growth(start, end)
    return growth["heap_growth"] > threshold or growth["rss_growth"] > threshold


class MemoryLeakDetector:
    """Standalone labeled-snapshot comparator against a construction-time baseline."""

    def __init__(self, test_name: str, trace_heap: bool = True):
        self.test_name = test_name
        if trace_heap:
            ensure_heap_tracing()
        self.initial_memory = sample_memory(f"{test_name}:initial")
        self.snapshots: Dict[str, MemorySample] = {}

    def take_snapshot(self, label: str) -> MemorySample:
        sample = sample_memory(label)
        self.snapshots[label] = sample
        return sample

    def check_for_leaks(self, threshold: int = DEFAULT_LEAK_THRESHOLD) -> LeakReport:
        """Compare current usage with the baseline taken at construction (or reset)."""
        current = sample_memory(f"{self.test_name}:check")
        growth = memory_growth(self.initial_memory, current)

        return LeakReport(
            test_name=self.test_name,
            has_leak=exceeds_threshold(self.initial_memory, current, threshold),
            heap_growth=growth["heap_growth"],
            rss_growth=growth["rss_growth"],
            threshold=threshold,
            snapshots=list(self.snapshots.values()),
        )

    def reset(self) -> None:
        """Clear recorded snapshots and rebase the baseline to now."""
        self.initial_memory = sample_memory(f"{self.test_name}:initial")
        self.snapshots.clear()

    def latest_snapshot(self) -> Optional[MemorySample]:
        if not self.snapshots:
            return None
        return list(self.snapshots.values())[-1]


def detect_memory_leaks(test_name: str) -> MemoryLeakDetector:
    return MemoryLeakDetector(test_name)
