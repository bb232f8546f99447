"""ClickHouse target: DDL generation, value coercion and the bulk insert sink."""

import abc
import logging
import typing as t
from decimal import Decimal

from clickhouse_driver import Client
from clickhouse_driver.errors import Error as ClickHouseError

from rdbms_to_clickhouse.errors import MigrationConnectionError
from rdbms_to_clickhouse.types import InsertTemplate, Row


logger = logging.getLogger(__name__)

TABLE_ENGINE: str = "MergeTree()"
INDEX_GRANULARITY: int = 8192

Float_Types: t.FrozenSet[str] = frozenset({"Float32", "Float64"})

# Target columns are not Nullable, a source NULL is written as the column type's default value.
CLIENT_SETTINGS: t.Dict[str, t.Any] = {"input_format_null_as_default": True}


def quote_identifier(identifier: str) -> str:
    return "`{}`".format(identifier.replace("\\", "\\\\").replace("`", "\\`"))


def table_reference(database: str, table: str) -> str:
    return f"{quote_identifier(database)}.{quote_identifier(table)}"


def create_database_sql(database: str) -> str:
    return f"CREATE DATABASE IF NOT EXISTS {quote_identifier(database)}"


def drop_table_sql(database: str, table: str) -> str:
    return f"DROP TABLE IF EXISTS {table_reference(database, table)}"


def create_table_sql(
    database: str,
    table: str,
    columns: t.Sequence[t.Tuple[str, str]],
    order_by: t.Sequence[str],
) -> str:
    """CREATE TABLE statement for a MergeTree table sorted by ``order_by``."""
    return (
        "CREATE TABLE IF NOT EXISTS {table} ({columns}) "
        "ENGINE = {engine} ORDER BY ({order_by}) SETTINGS index_granularity = {granularity}"
    ).format(
        table=table_reference(database, table),
        columns=", ".join(f"{quote_identifier(name)} {column_type}" for name, column_type in columns),
        engine=TABLE_ENGINE,
        order_by=", ".join(quote_identifier(name) for name in order_by),
        granularity=INDEX_GRANULARITY,
    )


def insert_template(database: str, table: str, columns: t.Sequence[t.Tuple[str, str]]) -> InsertTemplate:
    sql: str = "INSERT INTO {table} ({columns}) VALUES".format(
        table=table_reference(database, table),
        columns=", ".join(quote_identifier(name) for name, _ in columns),
    )
    return InsertTemplate(sql=sql, column_types=tuple(column_type for _, column_type in columns))


def count_sql(database: str, table: str) -> str:
    return f"SELECT count() FROM {table_reference(database, table)}"


def coerce_value(value: t.Any, column_type: str) -> t.Any:
    """Convert a source value to something the native protocol accepts for ``column_type``.

    ``None`` is passed through, the client replaces it with the column default on insert.
    """
    if value is None:
        return None
    if column_type == "String":
        if isinstance(value, (str, bytes)):
            return value
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        return str(value)
    if column_type in Float_Types and isinstance(value, Decimal):
        return float(value)
    return value


def coerce_rows(rows: t.Iterable[Row], column_types: t.Sequence[str]) -> t.List[t.Tuple[t.Any, ...]]:
    return [tuple(coerce_value(value, column_type) for value, column_type in zip(row, column_types)) for row in rows]


class TargetSink(abc.ABC):
    """Connection to the analytical store the rows are written to."""

    @abc.abstractmethod
    def execute(self, sql: str) -> t.Any:
        """Execute a DDL or DML statement."""

    @abc.abstractmethod
    def insert(self, template: InsertTemplate, rows: t.Sequence[Row]) -> None:
        """Insert ``rows`` with one bulk statement."""

    @abc.abstractmethod
    def count(self, database: str, table: str) -> int:
        """Number of rows in the target table."""

    def close(self) -> None:
        pass

    def __enter__(self) -> "TargetSink":
        return self

    def __exit__(self, *exc_info: t.Any) -> None:
        self.close()


class ClickHouseSink(TargetSink):
    """TargetSink over the ClickHouse native protocol."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 9000,
        user: str = "default",
        password: t.Optional[str] = None,
        database: t.Optional[str] = None,
    ) -> None:
        self._client = Client(
            host=host,
            port=port,
            user=user,
            password=password or "",
            database=database or "default",
            settings=CLIENT_SETTINGS,
        )
        try:
            self._client.execute("SELECT 1")
        except (ClickHouseError, OSError) as err:
            logger.error("Failed to connect to ClickHouse at %s:%s: %s", host, port, err)
            raise MigrationConnectionError(f"Unable to connect to ClickHouse: {err}") from err

    def execute(self, sql: str) -> t.Any:
        return self._client.execute(sql)

    def insert(self, template: InsertTemplate, rows: t.Sequence[Row]) -> None:
        self._client.execute(template.sql, coerce_rows(rows, template.column_types))

    def count(self, database: str, table: str) -> int:
        result = self._client.execute(count_sql(database, table))
        return int(result[0][0]) if result else 0

    def close(self) -> None:
        self._client.disconnect()
