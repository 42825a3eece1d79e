"""In-memory stand-in for a PyMySQL connection."""

import threading

import pymysql


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, args=None):
        self.conn.before_execute(sql)
        self.conn.record(sql)
        if self.conn.should_fail(sql):
            raise pymysql.err.OperationalError(1213, "Deadlock found when trying to get lock")
        return 0

    def fetchall(self):
        return list(self.conn.rows)


class FakeConnection:
    def __init__(self, fail=None, rows=(), log=None, hook=None):
        self.open = True
        self.rows = list(rows)
        self.statements = []
        self._fail = fail or (lambda sql: False)
        self._log = log
        self._hook = hook

    def before_execute(self, sql):
        if self._hook is not None:
            self._hook(self, sql)

    def record(self, sql):
        self.statements.append(sql)
        if self._log is not None:
            self._log.append(sql)

    def should_fail(self, sql):
        return self._fail(sql)

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.open = False


class FakeConnector:
    """Callable used in place of ``connect_mysql``; remembers every connection."""

    def __init__(self, fail=None, rows=(), refuse=False, hook=None):
        self.fail = fail
        self.hook = hook
        self.rows = rows
        self.refuse = refuse
        self.attempts = 0
        self.connections = []
        self.log = []
        self._lock = threading.Lock()

    def __call__(self, config):
        with self._lock:
            self.attempts += 1
            if self.refuse:
                raise pymysql.err.OperationalError(2003, "Can't connect to MySQL server")
            conn = FakeConnection(fail=self.fail, rows=self.rows, log=self.log, hook=self.hook)
            self.connections.append(conn)
            return conn
