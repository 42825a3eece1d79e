import random
import re
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shadow_dml.columns import ValueAssignment, ValueGenerator, parse_column
from shadow_dml.shadow import ShadowTable
from shadow_dml.tasks import (
    BUILDERS,
    MAX_IGNORE_ROWS,
    TaskKind,
    build_delete,
    build_insert,
    build_insert_ignore,
    build_replace,
    build_update,
)

ID = parse_column("id", "int")
NAME = parse_column("name", "varchar(10)")


def new_table(*ids):
    table = ShadowTable("test", "t", [ID, NAME])
    table.append((ValueAssignment(ID, i), ValueAssignment(NAME, f"r{i}")) for i in ids)
    return table


def gen(seed=1):
    return ValueGenerator(random.Random(seed))


def test_insert_statement_shape_and_values():
    table = new_table()
    task = build_insert(table, gen())
    assert task.kind is TaskKind.INSERT
    (row,) = task.rows
    id_value, name_value = row[0].value, row[1].value
    assert task.sql == (
        f"INSERT INTO `test`.`t` (`id`, `name`) VALUES ('{id_value}', '{name_value}')"
    )


def test_committed_insert_mirrors_generated_values():
    table = new_table()
    task = build_insert(table, gen(3))
    assert table.row_count == 0  # building does not touch the mirror
    task.apply()
    (row,) = task.rows
    assert table.row_count == 1
    assert table.rows() == [(row[0].value, row[1].value)]


def test_insert_ignore_emits_one_tuple_per_row():
    table = new_table()
    g = gen(5)
    for _ in range(30):
        task = build_insert_ignore(table, g)
        assert task.kind is TaskKind.INSERT_IGNORE
        assert 1 <= len(task.rows) <= MAX_IGNORE_ROWS
        assert task.sql.startswith("INSERT IGNORE INTO `test`.`t` (`id`, `name`) VALUES (")
        assert task.sql.count("), (") == len(task.rows) - 1


def test_insert_ignore_apply_adds_every_tuple():
    table = new_table()
    task = build_insert_ignore(table, gen(8))
    assert task.apply() == len(task.rows)
    assert table.row_count == len(task.rows)


def test_update_skipped_on_empty_table():
    assert build_update(new_table(), gen()) is None


def test_update_anchors_on_existing_row():
    table = new_table(1, 2, 3)
    g = gen(2)
    for _ in range(20):
        task = build_update(table, g)
        assert task.kind is TaskKind.UPDATE
        (anchor,) = task.where
        existing = {1, 2, 3} if anchor.column is ID else {"r1", "r2", "r3"}
        assert anchor.value in existing
        assert task.sql.startswith("UPDATE `test`.`t` SET `id` = '")
        assert task.sql.endswith(" WHERE " + anchor.condition_sql())
        assert [a.column for a in task.assigns] == [ID, NAME]


def test_update_apply_rewrites_anchor_row():
    table = new_table(1, 2, 3)
    task = build_update(table, gen(6))
    task.apply()
    new_values = tuple(a.value for a in task.assigns)
    assert new_values in table.rows()
    assert table.row_count == 3


def test_delete_on_empty_table_has_no_predicate():
    task = build_delete(new_table(), gen())
    assert task.kind is TaskKind.DELETE
    assert task.where == ()
    assert task.sql == "DELETE FROM `test`.`t`"


def test_delete_with_anchor():
    table = new_table(1, 2, 3)
    task = build_delete(table, gen(4))
    (anchor,) = task.where
    assert task.sql == f"DELETE FROM `test`.`t` WHERE {anchor.condition_sql()}"
    assert task.apply() == 1
    assert table.row_count == 2


def test_replace_lists_every_column_once():
    table = new_table()
    g = gen(9)
    for _ in range(10):
        task = build_replace(table, g)
        assert task.kind is TaskKind.REPLACE
        assert task.sql.startswith("REPLACE INTO `test`.`t` SET ")
        names = re.findall(r"`(\w+)` = ", task.sql)
        assert sorted(names) == ["id", "name"]


def test_bit_columns_use_binary_literals():
    flags = parse_column("flags", "bit(8)")
    table = ShadowTable("test", "b", [flags])
    task = build_insert(table, gen(1))
    value = task.rows[0][0].value
    assert task.sql == f"INSERT INTO `test`.`b` (`flags`) VALUES (b'{value}')"


def test_builders_cover_every_statement_kind():
    table = new_table(1)
    kinds = {builder(table, gen(7)).kind for builder in BUILDERS}
    assert kinds == set(TaskKind)
