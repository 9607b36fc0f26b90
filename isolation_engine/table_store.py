"""In-memory table store used as the test double for the hosted backend."""

import bisect
import copy
import logging
import math
import threading
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Any, List, Optional, Iterable, Union

from .exceptions import WriteConflictError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Rows = Union[Record, Iterable[Record]]


@dataclass
class UpdateResult:
    """Outcome of an update: post-merge rows, pre-merge copies and their indices."""

    mutated: List[Record] = field(default_factory=list)
    pre_images: List[Record] = field(default_factory=list)
    positions: List[int] = field(default_factory=list)


@dataclass(eq=False)
class RowRef:
    """Handle on one stored record: the live object and its ordering key.

    Rows are told apart by object identity, never by ``id`` or index, so a
    handle stays valid while other writers insert or delete around it.
    """

    record: Record
    key: Fraction


def matches(record: Record, matcher: Optional[Dict[str, Any]]) -> bool:
    """Return True when every matcher key equals the record's field."""
    if not matcher:
        return True

    for key, value in matcher.items():
        if key not in record or record[key] != value:
            return False
    return True


def _as_list(rows: Rows) -> List[Record]:
    if isinstance(rows, dict):
        return [rows]
    return list(rows)


class TableStore:
    """
    CRUD primitive over named, ordered record collections.

    Unknown tables are never an error: reads return empty results and
    writes create the table. Identity uniqueness is not enforced, so
    inserting two records with the same ``id`` is legal.

    Every read hands out deep copies, so callers can only change stored
    records through this API. Each row carries an ordering key that never
    changes while the row is stored; a removed row put back under its old
    key returns to exactly its old place relative to the rows around it.
    """

    def __init__(self):
        self.tables: Dict[str, List[Record]] = {}
        self.lock = threading.RLock()
        self._order: Dict[str, List[Fraction]] = {}
        self._high_water: Dict[str, Fraction] = {}
        # id(record) -> test id of the open transaction that wrote it
        self._owners: Dict[int, str] = {}

    def _table(self, table: str) -> List[Record]:
        self._order.setdefault(table, [])
        return self.tables.setdefault(table, [])

    def _next_key(self, table: str) -> Fraction:
        order = self._order[table]
        top = max(self._high_water.get(table, Fraction(0)), order[-1] if order else 0)
        key = Fraction(math.floor(top) + 1)
        self._high_water[table] = key
        return key

    def _key_at(self, table: str, index: int) -> Fraction:
        """Key for a row placed at ``index``, between its future neighbours."""
        order = self._order[table]
        if index >= len(order):
            return self._next_key(table)
        if index == 0:
            return order[0] - 1
        return (order[index - 1] + order[index]) / 2

    def _renumber(self, table: str) -> None:
        size = len(self.tables[table])
        self._order[table] = [Fraction(n + 1) for n in range(size)]
        self._high_water[table] = Fraction(size)

    def _index_of(self, table: str, record: Record) -> Optional[int]:
        for index, row in enumerate(self.tables.get(table, [])):
            if row is record:
                return index
        return None

    def insert(
        self, table: str, rows: Rows, positions: Optional[List[int]] = None
    ) -> List[Record]:
        """Append rows (or place them at ascending ``positions``) and return copies."""
        new_rows = [copy.deepcopy(row) for row in _as_list(rows)]

        with self.lock:
            data = self._table(table)
            order = self._order[table]
            if positions is None:
                for row in new_rows:
                    order.append(self._next_key(table))
                    data.append(row)
            else:
                if len(positions) != len(new_rows):
                    raise ValueError("positions must align with rows")
                for position, row in sorted(
                    zip(positions, new_rows), key=lambda pair: pair[0]
                ):
                    index = min(position, len(data))
                    order.insert(index, self._key_at(table, index))
                    data.insert(index, row)

            logger.debug("INSERT %d row(s) into %s", len(new_rows), table)
            return copy.deepcopy(new_rows)

    def update(
        self,
        table: str,
        patch: Dict[str, Any],
        matcher: Optional[Dict[str, Any]] = None,
        positions: Optional[List[int]] = None,
    ) -> UpdateResult:
        """
        Shallow-merge ``patch`` into every matching record.

        Args:
            table: Table name
            patch: Fields to merge
            matcher: Equality conditions; None matches every record
            positions: Explicit row indices to target instead of ``matcher``

        Returns:
            UpdateResult: post-merge rows plus deep copies of the pre-merge rows
        """
        with self.lock:
            data = self._table(table)
            if positions is None:
                positions = self.find_positions(table, matcher)

            result = UpdateResult()
            for position in positions:
                if position >= len(data):
                    logger.warning(
                        "UPDATE skipped out-of-range row %d in %s", position, table
                    )
                    continue
                record = data[position]
                result.pre_images.append(copy.deepcopy(record))
                record.update(copy.deepcopy(patch))
                result.mutated.append(copy.deepcopy(record))
                result.positions.append(position)

            logger.debug("UPDATE %d row(s) in %s", len(result.mutated), table)
            return result

    def delete(
        self,
        table: str,
        matcher: Optional[Dict[str, Any]] = None,
        positions: Optional[List[int]] = None,
    ) -> List[Record]:
        """Remove matching records (or the rows at ``positions``) and return them."""
        with self.lock:
            data = self._table(table)
            order = self._order[table]
            if positions is None:
                positions = self.find_positions(table, matcher)

            removed = []
            for position in sorted(set(positions), reverse=True):
                if position >= len(data):
                    logger.warning(
                        "DELETE skipped out-of-range row %d in %s", position, table
                    )
                    continue
                order.pop(position)
                removed.append(data.pop(position))
            removed.reverse()

            logger.debug("DELETE %d row(s) from %s", len(removed), table)
            return removed

    def truncate(self, table: str) -> List[Record]:
        """Empty a table, returning every row it held."""
        with self.lock:
            removed = self.tables.get(table, [])
            self.tables[table] = []
            self._order[table] = []
            logger.debug("TRUNCATE %s (%d row(s))", table, len(removed))
            return removed

    def select(
        self, table: str, matcher: Optional[Dict[str, Any]] = None
    ) -> List[Record]:
        """Return copies of matching records without mutating the store."""
        with self.lock:
            return [
                copy.deepcopy(record)
                for record in self.tables.get(table, [])
                if matches(record, matcher)
            ]

    def find_positions(
        self, table: str, matcher: Optional[Dict[str, Any]] = None
    ) -> List[int]:
        """Return indices of matching records in table order."""
        with self.lock:
            return [
                index
                for index, record in enumerate(self.tables.get(table, []))
                if matches(record, matcher)
            ]

    def count(self, table: str) -> int:
        """Number of records in a table (0 for unknown tables)."""
        with self.lock:
            return len(self.tables.get(table, []))

    def table_names(self) -> List[str]:
        """Names of every table the store knows about."""
        with self.lock:
            return list(self.tables.keys())

    def get_table_data(self, table: str) -> List[Record]:
        return self.select(table)

    def set_table_data(self, table: str, rows: Rows) -> None:
        """Overwrite a table wholesale (untracked; used by seeding helpers)."""
        with self.lock:
            self.tables[table] = [copy.deepcopy(row) for row in _as_list(rows)]
            self._renumber(table)

    # Row handles for the undo log

    def refs(self, table: str, positions: Iterable[int]) -> List[RowRef]:
        """Handles on the rows currently at ``positions``."""
        with self.lock:
            data = self.tables.get(table, [])
            order = self._order.get(table, [])
            return [RowRef(data[position], order[position]) for position in positions]

    def remove_refs(self, table: str, refs: Iterable[RowRef]) -> List[RowRef]:
        """Remove the exact objects behind ``refs``; rows no longer stored are skipped."""
        with self.lock:
            removed = []
            for ref in refs:
                index = self._index_of(table, ref.record)
                if index is None:
                    logger.warning("DELETE skipped row no longer stored in %s", table)
                    continue
                self.tables[table].pop(index)
                ref.key = self._order[table].pop(index)
                removed.append(ref)
            return removed

    def restore_refs(self, table: str, refs: Iterable[RowRef]) -> None:
        """Put removed objects back at the place their ordering keys give them."""
        with self.lock:
            data = self._table(table)
            order = self._order[table]
            for ref in refs:
                if self._index_of(table, ref.record) is not None:
                    logger.warning("INSERT skipped row already stored in %s", table)
                    continue
                index = bisect.bisect_right(order, ref.key)
                order.insert(index, ref.key)
                data.insert(index, ref.record)

    def overwrite_refs(
        self, table: str, refs: Iterable[RowRef], images: Iterable[Record]
    ) -> int:
        """Replace the contents of the objects behind ``refs`` with ``images``."""
        with self.lock:
            restored = 0
            for ref, image in zip(refs, images):
                if self._index_of(table, ref.record) is None:
                    logger.warning("UPDATE skipped row no longer stored in %s", table)
                    continue
                ref.record.clear()
                ref.record.update(copy.deepcopy(image))
                restored += 1
            return restored

    def claim(self, owner: str, table: str, refs: Iterable[RowRef]) -> None:
        """
        Mark rows as written by the open transaction ``owner``.

        Raises:
            WriteConflictError: If another open transaction already wrote one of them
        """
        with self.lock:
            refs = list(refs)
            for ref in refs:
                holder = self._owners.get(id(ref.record))
                if holder is not None and holder != owner:
                    raise WriteConflictError(owner, holder, table)
            for ref in refs:
                self._owners[id(ref.record)] = owner

    def release(self, owner: str, records: Iterable[Record]) -> None:
        """Drop ``owner``'s claims on ``records``."""
        with self.lock:
            for record in records:
                if self._owners.get(id(record)) == owner:
                    del self._owners[id(record)]

    def owner_of(self, ref: RowRef) -> Optional[str]:
        with self.lock:
            return self._owners.get(id(ref.record))

    def capture_state(self) -> Dict[str, List[Record]]:
        """Deep copy of every table."""
        with self.lock:
            return copy.deepcopy(self.tables)

    def restore_state(
        self,
        state: Dict[str, List[Record]],
        tables: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Restore tables from a captured state.

        With ``tables`` given, only those tables are restored; a listed table
        missing from ``state`` is dropped, since it did not exist at capture time.
        """
        with self.lock:
            if tables is None:
                self.tables = copy.deepcopy(state)
                self._order = {}
                for table in self.tables:
                    self._renumber(table)
                logger.info("Store state restored (%d tables)", len(self.tables))
                return

            tables = list(tables)
            for table in tables:
                if table in state:
                    self.tables[table] = copy.deepcopy(state[table])
                    self._renumber(table)
                else:
                    self.tables.pop(table, None)
                    self._order.pop(table, None)
            logger.info("Store state restored for tables: %s", sorted(tables))

    def reset(self) -> None:
        """Drop every table."""
        with self.lock:
            self.tables = {}
            self._order = {}
            self._high_water = {}
            self._owners = {}
            logger.info("Store state reset")
