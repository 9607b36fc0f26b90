"""Memory sampling data models."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class MemorySample:
    """Heap and resident-set reading taken at a labeled point."""

    label: str
    heap_used: int
    rss: int
    timestamp: float


@dataclass
class LeakReport:
    """Result of comparing current memory usage to a baseline."""

    test_name: str
    has_leak: bool
    heap_growth: int
    rss_growth: int
    threshold: int
    snapshots: List[MemorySample] = field(default_factory=list)
