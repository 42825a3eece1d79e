"""DML task builders.

Every builder turns the current state of a :class:`ShadowTable` into one
statement plus the structured values needed to replay its effect on the
mirror once the enclosing transaction commits.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .columns import ValueAssignment, ValueGenerator
from .shadow import ShadowTable

MAX_IGNORE_ROWS = 20


class TaskKind(enum.Enum):
    INSERT = "insert"
    INSERT_IGNORE = "insert_ignore"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"


@dataclass(frozen=True)
class DMLTask:
    kind: TaskKind
    sql: str
    table: ShadowTable

    def apply(self) -> int:
        """Replay the committed effect on the mirror; returns affected rows."""
        raise NotImplementedError


@dataclass(frozen=True)
class InsertTask(DMLTask):
    rows: Tuple[Tuple[ValueAssignment, ...], ...] = ()

    def apply(self) -> int:
        return self.table.append(self.rows)


@dataclass(frozen=True)
class UpdateTask(DMLTask):
    assigns: Tuple[ValueAssignment, ...] = ()
    where: Tuple[ValueAssignment, ...] = ()

    def apply(self) -> int:
        return self.table.apply_update(self.assigns, self.where)


@dataclass(frozen=True)
class DeleteTask(DMLTask):
    where: Tuple[ValueAssignment, ...] = ()

    def apply(self) -> int:
        return self.table.apply_delete(self.where)


TaskBuilder = Callable[[ShadowTable, ValueGenerator], Optional[DMLTask]]


def random_row(table: ShadowTable, gen: ValueGenerator) -> Tuple[ValueAssignment, ...]:
    return tuple(ValueAssignment(column, gen.value(column)) for column in table.columns)


def _column_list(table: ShadowTable) -> str:
    return ", ".join(column.quoted_name for column in table.columns)


def _values_tuple(row: Sequence[ValueAssignment]) -> str:
    return "(" + ", ".join(assign.literal() for assign in row) + ")"


def _where_clause(where: Sequence[ValueAssignment]) -> str:
    if not where:
        return ""
    return " WHERE " + " AND ".join(cond.condition_sql() for cond in where)


def build_where(table: ShadowTable, gen: ValueGenerator) -> Tuple[ValueAssignment, ...]:
    """Anchor a predicate on a random column of a random existing row."""
    column = gen.rng.choice(table.columns)
    anchor = table.pick_existing_value(column, gen.rng)
    if anchor is None:
        return ()
    return (anchor,)


def build_insert(table: ShadowTable, gen: ValueGenerator) -> InsertTask:
    row = random_row(table, gen)
    sql = f"INSERT INTO {table.qualified_name} ({_column_list(table)}) VALUES {_values_tuple(row)}"
    return InsertTask(TaskKind.INSERT, sql, table, rows=(row,))


def build_insert_ignore(table: ShadowTable, gen: ValueGenerator) -> InsertTask:
    count = gen.rng.randint(1, MAX_IGNORE_ROWS)
    rows = tuple(random_row(table, gen) for _ in range(count))
    values = ", ".join(_values_tuple(row) for row in rows)
    sql = f"INSERT IGNORE INTO {table.qualified_name} ({_column_list(table)}) VALUES {values}"
    return InsertTask(TaskKind.INSERT_IGNORE, sql, table, rows=rows)


def build_update(table: ShadowTable, gen: ValueGenerator) -> Optional[UpdateTask]:
    """UPDATE every column of the row(s) matching a random anchor.

    Returns None while the mirror holds no rows.
    """
    if table.row_count == 0:
        return None
    where = build_where(table, gen)
    assigns = random_row(table, gen)
    set_list = ", ".join(assign.assignment_sql() for assign in assigns)
    sql = f"UPDATE {table.qualified_name} SET {set_list}{_where_clause(where)}"
    return UpdateTask(TaskKind.UPDATE, sql, table, assigns=assigns, where=where)


def build_delete(table: ShadowTable, gen: ValueGenerator) -> DeleteTask:
    where = build_where(table, gen)
    sql = f"DELETE FROM {table.qualified_name}{_where_clause(where)}"
    return DeleteTask(TaskKind.DELETE, sql, table, where=where)


def build_replace(table: ShadowTable, gen: ValueGenerator) -> InsertTask:
    row = random_row(table, gen)
    shuffled: List[ValueAssignment] = list(row)
    gen.rng.shuffle(shuffled)
    set_list = ", ".join(assign.assignment_sql() for assign in shuffled)
    sql = f"REPLACE INTO {table.qualified_name} SET {set_list}"
    return InsertTask(TaskKind.REPLACE, sql, table, rows=(row,))


BUILDERS: Tuple[TaskBuilder, ...] = (
    build_insert,
    build_insert_ignore,
    build_update,
    build_delete,
    build_replace,
)
