"""Transaction-related data models and enums."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional


class TransactionState(Enum):
    """Enumeration of possible transaction states."""

    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class OperationType(Enum):
    """Kinds of mutations recorded in a transaction log."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    TRUNCATE = "truncate"


@dataclass
class Operation:
    """A single forward or inverse mutation against one table.

    ``positions`` records the row indices the operation touched at the time
    it ran. Inverses locate their rows through ``refs``, handles on the
    stored objects themselves, so they stay exact when other transactions
    insert or delete rows in the same table in between.
    """

    op_type: OperationType
    table: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    matcher: Optional[Dict[str, Any]] = None
    patch: Optional[Dict[str, Any]] = None
    positions: List[int] = field(default_factory=list)
    original_data: Optional[List[Dict[str, Any]]] = None
    refs: Optional[List[Any]] = field(default=None, repr=False, compare=False)
    timestamp: float = field(default_factory=time.time)
