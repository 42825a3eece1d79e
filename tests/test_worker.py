import random
import sys
import threading
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fake_mysql import FakeConnector
from shadow_dml.columns import ValueAssignment, ValueGenerator, parse_column
from shadow_dml.config import RunConfig
from shadow_dml.db import ConnectionFactory, execute_sql
from shadow_dml.errors import ConnectionExhaustedError
from shadow_dml.shadow import ShadowTable
from shadow_dml.tasks import DeleteTask, TaskKind, UpdateTask, build_delete, build_insert, build_update
from shadow_dml.worker import CLOSED, TaskQueue, WorkerPool

ID = parse_column("id", "int")
NAME = parse_column("name", "varchar(10)")


def new_table(*ids):
    table = ShadowTable("test", "t", [ID, NAME])
    table.append((ValueAssignment(ID, i), ValueAssignment(NAME, f"r{i}")) for i in ids)
    return table


def run_pool(tasks, connector, **overrides):
    """Feed ``tasks`` through a pool and wait for it to drain."""
    settings = dict(concurrency=1, txn_size=1, reconnect_probability=0.0, dial_attempts=3, seed=1)
    settings.update(overrides)
    config = RunConfig(**settings)
    queue = TaskQueue(capacity=config.concurrency, consumers=config.concurrency)
    pool = WorkerPool(config, ConnectionFactory(config, connect=connector), queue)
    pool.start()
    for task in tasks:
        assert queue.put(task)
    queue.close()
    pool.join()
    return pool


def test_committed_insert_is_mirrored():
    table = new_table()
    task = build_insert(table, ValueGenerator(random.Random(1)))
    connector = FakeConnector()
    pool = run_pool([task], connector)

    (row,) = task.rows
    assert table.rows() == [(row[0].value, row[1].value)]
    assert connector.log == ["BEGIN", task.sql, "COMMIT"]
    assert pool.stats.get("commit", "ok") == 1
    assert pool.stats.get("insert", "applied") == 1


def test_failed_statement_is_dropped_from_batch():
    table = new_table()
    g = ValueGenerator(random.Random(2))
    good = build_insert(table, g)
    bad = build_insert(table, g)
    connector = FakeConnector(fail=lambda sql: sql == bad.sql)
    pool = run_pool([good, bad], connector, txn_size=1)

    assert table.row_count == 1
    assert table.rows()[0][0] == good.rows[0][0].value
    assert pool.stats.get("insert", "failed") == 1
    assert pool.stats.get("insert", "applied") == 1


def test_failed_commit_leaves_mirror_untouched():
    table = new_table(1, 2, 3)
    before = table.rows()
    g = ValueGenerator(random.Random(3))
    update = build_update(table, g)
    delete = build_delete(table, g)
    connector = FakeConnector(fail=lambda sql: sql == "COMMIT")
    pool = run_pool([update, delete], connector, txn_size=1)

    assert table.rows() == before
    assert pool.stats.get("commit", "failed") == 2
    assert pool.stats.get("update", "executed") == 1
    assert pool.stats.get("update", "applied") == 0


def test_update_committed_after_its_anchor_was_deleted_changes_nothing():
    table = new_table(1, 2, 3)
    anchor = ValueAssignment(ID, 2)
    update = UpdateTask(
        kind=TaskKind.UPDATE,
        sql="UPDATE `test`.`t` SET `id` = '20', `name` = 'moved' WHERE `id` = '2'",
        table=table,
        assigns=(ValueAssignment(ID, 20), ValueAssignment(NAME, "moved")),
        where=(anchor,),
    )
    delete = DeleteTask(
        kind=TaskKind.DELETE,
        sql="DELETE FROM `test`.`t` WHERE `id` = '2'",
        table=table,
        where=(anchor,),
    )

    def hold_update_commit(conn, sql):
        # the update transaction commits only once the delete is mirrored
        if sql == "COMMIT" and update.sql in conn.statements:
            deadline = time.monotonic() + 5
            while table.row_count != 2 and time.monotonic() < deadline:
                time.sleep(0.01)

    connector = FakeConnector(hook=hold_update_commit)
    pool = run_pool([update, delete], connector, concurrency=2, txn_size=1)

    assert table.rows() == [(1, "r1"), (3, "r3")]
    assert pool.stats.get("update", "applied") == 1
    assert pool.stats.get("delete", "applied") == 1
    update_conn = next(conn for conn in connector.connections if update.sql in conn.statements)
    assert delete.sql not in update_conn.statements


def test_batches_never_exceed_txn_size():
    table = new_table()
    g = ValueGenerator(random.Random(4))
    tasks = [build_insert(table, g) for _ in range(25)]
    connector = FakeConnector()
    run_pool(tasks, connector, txn_size=4)

    assert table.row_count == 25
    in_batch = 0
    for sql in connector.log:
        if sql == "BEGIN":
            assert in_batch == 0
            in_batch = 0
        elif sql == "COMMIT":
            assert 1 <= in_batch <= 4
            in_batch = 0
        else:
            in_batch += 1
    assert connector.log[-1] == "COMMIT"


def test_concurrent_workers_apply_every_committed_insert():
    table = new_table()
    g = ValueGenerator(random.Random(5))
    tasks = [build_insert(table, g) for _ in range(200)]
    connector = FakeConnector()
    pool = run_pool(tasks, connector, concurrency=4, txn_size=7)

    assert table.row_count == 200
    assert table.is_aligned()
    assert len(connector.connections) == 4
    assert pool.stats.get("insert", "applied") == 200


def test_reconnect_replaces_connection():
    table = new_table()
    g = ValueGenerator(random.Random(6))
    tasks = [build_insert(table, g) for _ in range(5)]
    connector = FakeConnector()
    pool = run_pool(tasks, connector, reconnect_probability=1.0)

    assert table.row_count == 5
    assert pool.stats.get("connection", "reconnect") >= 4
    assert all(not conn.open for conn in connector.connections)


def test_dial_exhaustion_is_fatal():
    connector = FakeConnector(refuse=True)
    with pytest.raises(ConnectionExhaustedError):
        run_pool([], connector, dial_attempts=3)
    assert connector.attempts == 3


def test_queue_put_gives_up_after_abort():
    queue = TaskQueue(capacity=1, consumers=1)
    assert queue.put("first")
    result = []
    producer = threading.Thread(target=lambda: result.append(queue.put("second")))
    producer.start()
    queue.abort()
    producer.join(timeout=5)
    assert result == [False]


def test_aborted_empty_queue_reads_as_closed():
    queue = TaskQueue(capacity=1, consumers=1)
    queue.abort()
    assert queue.get() is CLOSED


def test_execute_sql_reports_outcome():
    connector = FakeConnector(fail=lambda sql: "boom" in sql)
    conn = connector(None)
    assert execute_sql(conn, "SELECT 1", 0) is True
    assert execute_sql(conn, "SELECT boom", 0) is False
