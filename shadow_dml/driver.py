"""Workload driver: feeds generated tasks to the worker pool."""

from __future__ import annotations

import logging
import random
import time
from typing import Optional, Sequence

from .columns import ValueGenerator, resolve_time_zone
from .config import RunConfig
from .db import ConnectionFactory, load_table
from .shadow import ShadowTable
from .tasks import BUILDERS, TaskBuilder
from .worker import RunStats, TaskQueue, WorkerPool

PROGRESS_EVERY_ROUNDS = 10_000


class WorkloadDriver:
    """Runs ``rounds`` rounds of every builder, in a fresh random order each round."""

    def __init__(
        self,
        table: ShadowTable,
        generator: ValueGenerator,
        tasks: TaskQueue,
        rounds: int,
        builders: Sequence[TaskBuilder] = BUILDERS,
    ) -> None:
        self.table = table
        self.generator = generator
        self.tasks = tasks
        self.rounds = rounds
        self.builders = list(builders)
        self.produced = 0

    def run(self) -> None:
        """Produce every round, then close the queue (also on abort or interrupt)."""
        try:
            for round_no in range(1, self.rounds + 1):
                if not self._run_round():
                    logging.warning("driver stopped after %d round(s): run aborted", round_no - 1)
                    return
                if round_no % PROGRESS_EVERY_ROUNDS == 0:
                    logging.info(
                        "driver progress: %d/%d rounds, %d task(s), %d mirrored row(s)",
                        round_no,
                        self.rounds,
                        self.produced,
                        self.table.row_count,
                    )
        finally:
            self.tasks.close()

    def _run_round(self) -> bool:
        order = list(self.builders)
        self.generator.rng.shuffle(order)
        for builder in order:
            task = builder(self.table, self.generator)
            if task is None:
                continue
            if not self.tasks.put(task):
                return False
            self.produced += 1
        return True


def log_summary(stats: RunStats, table: ShadowTable, elapsed: float) -> None:
    logging.info("run finished in %.1fs, %d mirrored row(s)", elapsed, table.row_count)
    for (op, outcome), count in sorted(stats.snapshot().items()):
        logging.info("  %-14s %-9s %d", op, outcome, count)


def run(config: RunConfig, factory: Optional[ConnectionFactory] = None) -> RunStats:
    """Introspect the target table and drive the full workload against it."""
    logging.info(
        "start generating random DML against `%s`.`%s` at %s, concurrency: %d, txn: %d",
        config.db,
        config.table,
        config.addr,
        config.concurrency,
        config.txn_size,
    )
    factory = factory or ConnectionFactory(config)
    rng = random.Random(config.seed) if config.seed is not None else random.Random()
    generator = ValueGenerator(rng, resolve_time_zone(config.time_zone))

    conn = factory.dial("main")
    try:
        table = load_table(conn, config)
    finally:
        conn.close()

    started = time.perf_counter()
    tasks = TaskQueue(capacity=config.concurrency, consumers=config.concurrency)
    pool = WorkerPool(config, factory, tasks)
    pool.start()
    driver = WorkloadDriver(table, generator, tasks, config.rounds)
    try:
        driver.run()
    except BaseException:
        tasks.abort()
        raise
    finally:
        try:
            pool.join()
        finally:
            log_summary(pool.stats, table, time.perf_counter() - started)
    return pool.stats
