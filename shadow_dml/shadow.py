"""In-memory mirror of the committed contents of the target table."""

from __future__ import annotations

import random
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .columns import ColumnDescriptor, ColumnKind, ValueAssignment
from .errors import SchemaError

FLOAT_EPSILON = 1e-7
DOUBLE_EPSILON = 1e-16


def values_match(column: ColumnDescriptor, stored: Any, target: Any) -> bool:
    """Predicate matching rule shared with the generated WHERE clauses."""
    if target is None:
        return stored is None
    if stored is None:
        return False
    if column.kind is ColumnKind.FLOAT:
        return abs(float(stored) - float(target)) < FLOAT_EPSILON
    if column.kind is ColumnKind.DOUBLE:
        return abs(float(stored) - float(target)) < DOUBLE_EPSILON
    return stored == target


class ShadowTable:
    """Column-major copy of the rows the workload has committed.

    Row ``i`` is the ``i``-th value of every column list. A single lock guards
    the row count and all column lists so they never drift out of alignment.
    """

    def __init__(self, db_name: str, table_name: str, columns: Sequence[ColumnDescriptor]) -> None:
        if not columns:
            raise SchemaError(f"table `{db_name}`.`{table_name}` has no columns")
        self.db_name = db_name
        self.table_name = table_name
        self.columns: Tuple[ColumnDescriptor, ...] = tuple(columns)
        self._lock = threading.Lock()
        self._values: Dict[str, List[Any]] = {column.name: [] for column in self.columns}
        self._row_count = 0

    @property
    def qualified_name(self) -> str:
        db = self.db_name.replace("`", "``")
        table = self.table_name.replace("`", "``")
        return f"`{db}`.`{table}`"

    @property
    def row_count(self) -> int:
        with self._lock:
            return self._row_count

    def __len__(self) -> int:
        return self.row_count

    def pick_existing_value(self, column: ColumnDescriptor, rng: random.Random) -> Optional[ValueAssignment]:
        """Return ``column``'s value from a random existing row, or None when empty."""
        with self._lock:
            values = self._values[column.name]
            if not values:
                return None
            return ValueAssignment(column, values[rng.randrange(len(values))])

    def append(self, rows: Iterable[Sequence[ValueAssignment]]) -> int:
        """Append one tuple per entry of ``rows``; returns the number appended."""
        prepared: List[Dict[str, Any]] = []
        for row in rows:
            by_name = {assign.column.name: assign.value for assign in row}
            unknown = set(by_name) - set(self._values)
            if unknown:
                raise KeyError(f"unknown column(s) {sorted(unknown)} for {self.qualified_name}")
            prepared.append(by_name)

        with self._lock:
            for by_name in prepared:
                for column in self.columns:
                    self._values[column.name].append(by_name.get(column.name))
            self._row_count += len(prepared)
        return len(prepared)

    def apply_update(self, assigns: Sequence[ValueAssignment], where: Sequence[ValueAssignment]) -> int:
        """Overwrite every row matching ``where``; returns the matched row count."""
        matched = 0
        with self._lock:
            for idx in range(self._row_count):
                if not self._row_matches(idx, where):
                    continue
                for assign in assigns:
                    self._values[assign.column.name][idx] = assign.value
                matched += 1
        return matched

    def apply_delete(self, where: Sequence[ValueAssignment]) -> int:
        """Remove every row matching ``where``; returns the removed row count."""
        removed = 0
        with self._lock:
            # back to front so removals do not shift unvisited rows
            for idx in range(self._row_count - 1, -1, -1):
                if not self._row_matches(idx, where):
                    continue
                for values in self._values.values():
                    del values[idx]
                self._row_count -= 1
                removed += 1
        return removed

    def _row_matches(self, idx: int, where: Sequence[ValueAssignment]) -> bool:
        return all(
            values_match(cond.column, self._values[cond.column.name][idx], cond.value)
            for cond in where
        )

    def rows(self) -> List[Tuple[Any, ...]]:
        """Row-major copy of the mirror, in row index order."""
        with self._lock:
            columns = [self._values[column.name] for column in self.columns]
            return list(zip(*columns)) if columns else []

    def is_aligned(self) -> bool:
        with self._lock:
            return all(len(values) == self._row_count for values in self._values.values())
