"""Worker pool executing DML tasks in randomly sized transactions.

Each worker owns one connection. It pulls tasks from the shared bounded
queue, wraps them in ``BEGIN`` ... ``COMMIT`` batches and, only once a commit
succeeds, replays the statements that executed on the shadow mirror.
"""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import pymysql

from .config import RunConfig
from .db import ConnectionFactory, execute_sql
from .errors import ConnectionExhaustedError
from .tasks import DMLTask

# seconds between abort checks while blocked on the queue
POLL_SECONDS = 0.5


class _Closed:
    def __repr__(self) -> str:
        return "CLOSED"


CLOSED = _Closed()

QueueItem = Union[DMLTask, _Closed]


class TaskQueue:
    """Bounded queue between the driver and the workers.

    ``close`` enqueues one sentinel per consumer. ``abort`` makes blocked
    producers give up and idle consumers see the queue as closed.
    """

    def __init__(self, capacity: int, consumers: int) -> None:
        self._queue: "queue.Queue[QueueItem]" = queue.Queue(maxsize=capacity)
        self._consumers = consumers
        self.aborted = threading.Event()

    def put(self, task: QueueItem) -> bool:
        """Block until ``task`` is queued; False if the run was aborted first."""
        while not self.aborted.is_set():
            try:
                self._queue.put(task, timeout=POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def get(self) -> QueueItem:
        while True:
            try:
                return self._queue.get(timeout=POLL_SECONDS)
            except queue.Empty:
                if self.aborted.is_set():
                    return CLOSED

    def close(self) -> None:
        for _ in range(self._consumers):
            if not self.put(CLOSED):
                return

    def abort(self) -> None:
        self.aborted.set()


class RunStats:
    """Thread-safe (operation, outcome) counters for the summary log."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[Tuple[str, str]] = Counter()

    def record(self, op: str, outcome: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[(op, outcome)] += amount

    def get(self, op: str, outcome: str) -> int:
        with self._lock:
            return self._counts[(op, outcome)]

    def snapshot(self) -> Dict[Tuple[str, str], int]:
        with self._lock:
            return dict(self._counts)


@dataclass
class Batch:
    size: int
    issued: int = 0
    started: bool = False
    executed: List[DMLTask] = field(default_factory=list)


class WorkerPool:
    """A fixed number of worker threads consuming one :class:`TaskQueue`."""

    def __init__(
        self,
        config: RunConfig,
        factory: ConnectionFactory,
        tasks: TaskQueue,
        stats: Optional[RunStats] = None,
    ) -> None:
        self.config = config
        self.factory = factory
        self.tasks = tasks
        self.stats = stats or RunStats()
        self._threads: List[threading.Thread] = []
        self._errors: List[Exception] = []
        self._error_lock = threading.Lock()

    def start(self) -> None:
        for worker_id in range(self.config.concurrency):
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker_id,),
                name=f"worker-{worker_id:02d}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def join(self) -> None:
        """Wait for every worker; re-raise the first fatal worker error."""
        for thread in self._threads:
            thread.join()
        if self._errors:
            raise self._errors[0]

    @property
    def fatal_error(self) -> Optional[Exception]:
        with self._error_lock:
            return self._errors[0] if self._errors else None

    def _fail(self, label: str, exc: Exception) -> None:
        logging.error("%s aborting run: %s", label, exc)
        with self._error_lock:
            self._errors.append(exc)
        self.tasks.abort()

    def _worker_rng(self, worker_id: int) -> random.Random:
        if self.config.seed is not None:
            return random.Random(self.config.seed + (worker_id + 1) * 7919)
        return random.Random(time.time() + worker_id * 7919)

    def _run_worker(self, worker_id: int) -> None:
        label = f"worker-{worker_id:02d}"
        rng = self._worker_rng(worker_id)
        try:
            conn = self.factory.dial(label)
        except ConnectionExhaustedError as exc:
            self._fail(label, exc)
            return

        logging.info("%s started", label)
        try:
            while True:
                batch = Batch(size=rng.randint(1, self.config.txn_size))
                closed = self._fill_batch(conn, batch, worker_id)
                self._finish_batch(conn, batch, worker_id)
                if closed or self.tasks.aborted.is_set():
                    break
                if not conn.open or rng.random() < self.config.reconnect_probability:
                    conn = self._redial(conn, label)
        except ConnectionExhaustedError as exc:
            self._fail(label, exc)
        finally:
            _close_quietly(conn)
            logging.info("%s finished", label)

    def _fill_batch(self, conn: Any, batch: Batch, worker_id: int) -> bool:
        """Execute tasks until the batch is full; True once the queue is closed."""
        while batch.issued < batch.size:
            task = self.tasks.get()
            if task is CLOSED:
                return True
            if not batch.started:
                execute_sql(conn, "BEGIN", worker_id)
                batch.started = True
            batch.issued += 1
            if execute_sql(conn, task.sql, worker_id):
                batch.executed.append(task)
                self.stats.record(task.kind.value, "executed")
            else:
                self.stats.record(task.kind.value, "failed")
                if not conn.open:
                    break
        return False

    def _finish_batch(self, conn: Any, batch: Batch, worker_id: int) -> None:
        if not batch.started:
            return
        if not execute_sql(conn, "COMMIT", worker_id):
            self.stats.record("commit", "failed")
            return
        self.stats.record("commit", "ok")
        for task in batch.executed:
            affected = task.apply()
            self.stats.record(task.kind.value, "applied")
            logging.debug("[worker %d] %s applied to %d mirrored row(s)", worker_id, task.kind.value, affected)

    def _redial(self, conn: Any, label: str) -> Any:
        new_conn = self.factory.dial(label)
        _close_quietly(conn)
        self.stats.record("connection", "reconnect")
        return new_conn


def _close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except pymysql.MySQLError:  # already closed
        pass
