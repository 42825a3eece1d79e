"""MySQL access: connections, the statement executor and table introspection."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence

import pymysql

from .columns import parse_column
from .config import RunConfig
from .errors import ConnectionExhaustedError, SchemaError
from .shadow import ShadowTable

COLUMNS_SQL = (
    "SELECT column_name, column_type, column_key, column_default "
    "FROM information_schema.columns "
    "WHERE LOWER(table_schema) = %s AND LOWER(table_name) = %s "
    "ORDER BY ordinal_position"
)

Connector = Callable[[RunConfig], Any]


def connect_mysql(config: RunConfig, *, connect_timeout: Optional[int] = 10) -> pymysql.connections.Connection:
    """Open a connection to the configured database with autocommit off."""
    params = {
        "host": config.host,
        "port": config.port,
        "user": config.user,
        "password": config.password or "",
        "database": config.db,
        "charset": "utf8mb4",
        "autocommit": False,
    }
    if connect_timeout is not None:
        params["connect_timeout"] = connect_timeout
    return pymysql.connect(**params)


class ConnectionFactory:
    """Dials new connections, retrying a bounded number of times."""

    def __init__(self, config: RunConfig, connect: Connector = connect_mysql) -> None:
        self.config = config
        self._connect = connect

    def dial(self, label: str = "main") -> Any:
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.config.dial_attempts + 1):
            try:
                conn = self._connect(self.config)
            except pymysql.MySQLError as exc:
                last_exc = exc
                logging.warning(
                    "%s connect attempt %d/%d to %s failed: %s",
                    label,
                    attempt,
                    self.config.dial_attempts,
                    self.config.addr,
                    exc,
                )
                continue
            logging.info("%s new connection to %s/%s", label, self.config.addr, self.config.db)
            return conn
        raise ConnectionExhaustedError(
            f"{label} could not connect to {self.config.addr} after {self.config.dial_attempts} attempts"
        ) from last_exc


def execute_sql(conn: Any, sql: str, worker_id: int) -> bool:
    """Run one statement and log its outcome; True when it succeeded."""
    try:
        with conn.cursor() as cursor:
            cursor.execute(sql)
    except pymysql.MySQLError as exc:
        logging.info("[dml] [worker %d] sql: %s error: %s", worker_id, sql, exc)
        return False
    logging.info("[dml] [worker %d] sql: %s", worker_id, sql)
    return True


def query_rows(conn: Any, sql: str, params: Sequence[Any] = ()) -> List[List[str]]:
    """Fetch every row as strings, NULL rendered as ``"NULL"``."""
    with conn.cursor() as cursor:
        cursor.execute(sql, tuple(params))
        rows = cursor.fetchall()
    result: List[List[str]] = []
    for row in rows:
        values = row.values() if isinstance(row, dict) else row
        result.append(["NULL" if value is None else _as_text(value) for value in values])
    return result


def _as_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def load_table(conn: Any, config: RunConfig) -> ShadowTable:
    """Introspect the configured table and return an empty mirror for it."""
    db = config.db.lower()
    table = config.table.lower()
    rows = query_rows(conn, COLUMNS_SQL, (db, table))
    if not rows:
        raise SchemaError(f"no columns found for `{db}`.`{table}`")

    columns = []
    for name, type_string, key, default in rows:
        columns.append(
            parse_column(
                name,
                type_string,
                primary_key=key == "PRI",
                default=None if default == "NULL" else default,
            )
        )
    logging.info("loaded %d column(s) of `%s`.`%s`", len(columns), db, table)
    return ShadowTable(db, table, columns)
