import sqlite3
import threading
import typing as t
from pathlib import Path

import pytest

from rdbms_to_clickhouse.clickhouse_utils import TargetSink
from rdbms_to_clickhouse.dialect import Dialect
from rdbms_to_clickhouse.errors import MigrationConnectionError, SchemaError
from rdbms_to_clickhouse.types import BatchQuery, ColumnCatalog, ColumnDefinition, InsertTemplate, Row


class SQLiteDialect(Dialect):
    """Dialect over a SQLite file, recording what the engine asks of it."""

    name = "sqlite"

    PLACEHOLDER = "?"
    ROW_VALUE_IN = False

    def __init__(self, path: Path, fail_connect_on: t.Iterable[int] = ()) -> None:
        self._path = path
        self._fail_connect_on = set(fail_connect_on)
        self._lock = threading.Lock()
        self.connects = 0
        self.claims: t.List[int] = []
        self.empty_pages: t.List[int] = []
        self.executed: t.List[str] = []

    def connect(self, host, port, user, password, database):
        with self._lock:
            self.connects += 1
            attempt = self.connects
        if attempt in self._fail_connect_on:
            raise MigrationConnectionError(f"connection {attempt} refused")
        return sqlite3.connect(str(self._path))

    def get_columns(self, connection, database, table):
        rows = connection.execute(f"PRAGMA table_info({self.quote(table)})").fetchall()
        if not rows:
            raise SchemaError(f"Table {table} does not exist")
        return [ColumnDefinition(name=row[1], source_type=row[2], is_primary_key=row[5] > 0) for row in rows]

    def quote(self, identifier: str) -> str:
        return '"{}"'.format(identifier.replace('"', '""'))

    def table_reference(self, database, table):
        return self.quote(table)

    def key_window_query(self, key_columns, table_reference, offset, limit):
        return f"SELECT {key_columns} FROM {table_reference} ORDER BY {key_columns} LIMIT {limit} OFFSET {offset}"

    def batch_query(
        self,
        connection: t.Any,
        primary_keys: ColumnCatalog,
        select_columns: str,
        table_reference: str,
        batch_index: int,
        batch_size: int,
    ) -> BatchQuery:
        query = super().batch_query(connection, primary_keys, select_columns, table_reference, batch_index, batch_size)
        with self._lock:
            self.claims.append(batch_index)
            if query.rows_in_batch == 0:
                self.empty_pages.append(batch_index)
        return query

    def execute(self, cursor, sql, params=()):
        with self._lock:
            self.executed.append(sql)
        super().execute(cursor, sql, params)

    @property
    def full_row_queries(self) -> t.List[str]:
        return [sql for sql in self.executed if " WHERE " in sql]


class FakeClickHouse:
    """In-memory stand-in for a ClickHouse server shared by all sinks."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.statements: t.List[str] = []
        self.rows: t.List[t.Tuple[t.Any, ...]] = []
        self.inserts: t.List[int] = []
        self.insert_attempts = 0
        self.connections = 0
        self.closed = 0
        self.fail_insert: t.Callable[[t.Sequence[Row], int], bool] = lambda rows, attempt: False
        self.fail_execute: t.Callable[[str], bool] = lambda sql: False

    def sink(self, database: t.Optional[str] = None) -> "RecordingSink":
        with self.lock:
            self.connections += 1
        return RecordingSink(self, database)


class RecordingSink(TargetSink):
    def __init__(self, server: FakeClickHouse, database: t.Optional[str]) -> None:
        self.server = server
        self.database = database

    def execute(self, sql: str) -> t.Any:
        if self.server.fail_execute(sql):
            raise RuntimeError(f"Code: 62. Syntax error: {sql}")
        with self.server.lock:
            self.server.statements.append(sql)
            if sql.startswith("DROP TABLE"):
                self.server.rows.clear()
        return []

    def insert(self, template: InsertTemplate, rows: t.Sequence[Row]) -> None:
        with self.server.lock:
            self.server.insert_attempts += 1
            attempt = self.server.insert_attempts
        if self.server.fail_insert(rows, attempt):
            raise RuntimeError("Code: 252. Too many parts")
        with self.server.lock:
            self.server.rows.extend(tuple(row) for row in rows)
            self.server.inserts.append(len(rows))

    def count(self, database: str, table: str) -> int:
        with self.server.lock:
            return len(self.server.rows)

    def close(self) -> None:
        with self.server.lock:
            self.server.closed += 1


def create_orders(path: Path, count: int, primary_key: bool = True) -> t.List[t.Tuple[t.Any, ...]]:
    rows = [(i, f"customer {i % 7}", round(i * 1.25, 2)) for i in range(1, count + 1)]
    connection = sqlite3.connect(str(path))
    try:
        connection.execute(
            "CREATE TABLE orders (id INTEGER {}, Customer VARCHAR(64), amount DECIMAL(10,2))".format(
                "PRIMARY KEY" if primary_key else ""
            )
        )
        connection.executemany("INSERT INTO orders VALUES (?, ?, ?)", rows)
        connection.commit()
    finally:
        connection.close()
    return rows


@pytest.fixture()
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "source.db"


@pytest.fixture()
def clickhouse() -> FakeClickHouse:
    return FakeClickHouse()
