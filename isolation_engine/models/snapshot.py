"""Snapshot data model for whole-store restore."""

from dataclasses import dataclass
from typing import Dict, Any, List


@dataclass
class Snapshot:
    """Represents a deep, point-in-time copy of every table in a store."""

    timestamp: float
    tables: Dict[str, List[Dict[str, Any]]]
    test_id: str
    description: str
