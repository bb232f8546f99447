"""MySQL source dialect."""

import logging
import typing as t

import mysql.connector
from mysql.connector import errorcode
from mysql.connector.abstracts import MySQLConnectionAbstract

from rdbms_to_clickhouse.dialect import Dialect
from rdbms_to_clickhouse.errors import MigrationConnectionError, SchemaError
from rdbms_to_clickhouse.types import ColumnDefinition


logger = logging.getLogger(__name__)


class MySQLDialect(Dialect):
    """MySQL and MariaDB via mysql-connector-python."""

    name = "mysql"

    DEFAULT_PORT = 3306
    DEFAULT_DATABASE = "mysql"

    TYPE_MODIFIERS = ("unsigned", "zerofill")

    TYPE_MAP = dict(
        Dialect.TYPE_MAP,
        mediumint="Int32",
    )

    PLACEHOLDER = "%s"
    ROW_VALUE_IN = True

    def __init__(self, charset: str = "utf8mb4", ssl_disabled: bool = False, connection_timeout: int = 120) -> None:
        self._charset = charset
        self._ssl_disabled = ssl_disabled
        self._connection_timeout = connection_timeout

    def connect(
        self,
        host: str,
        port: int,
        user: t.Optional[str],
        password: t.Optional[str],
        database: t.Optional[str],
    ) -> MySQLConnectionAbstract:
        config: t.Dict[str, t.Any] = {
            "user": user or self.DEFAULT_USER,
            "password": password or "",
            "host": host,
            "port": port if port and port > 0 else self.DEFAULT_PORT,
            "database": database or self.DEFAULT_DATABASE,
            "charset": self._charset,
            "ssl_disabled": self._ssl_disabled,
            "connection_timeout": self._connection_timeout,
            "autocommit": True,
            "use_unicode": True,
        }
        try:
            connection = mysql.connector.connect(**config)
        except mysql.connector.Error as err:
            logger.error("Failed to connect to MySQL at %s:%s: %s", config["host"], config["port"], err)
            raise MigrationConnectionError(f"Unable to connect to MySQL: {err}") from err

        if not isinstance(connection, MySQLConnectionAbstract) or not connection.is_connected():
            raise MigrationConnectionError("Unable to connect to MySQL")

        logger.info("Connected to MySQL at %s:%s", config["host"], config["port"])
        return connection

    def get_columns(self, connection: t.Any, database: t.Optional[str], table: str) -> t.List[ColumnDefinition]:
        cursor = connection.cursor(buffered=True, dictionary=True)
        try:
            cursor.execute(f"SHOW COLUMNS FROM {self.table_reference(database, table)}")
            rows: t.Sequence[t.Optional[t.Dict[str, t.Any]]] = cursor.fetchall()
        except mysql.connector.Error as err:
            if err.errno == errorcode.ER_NO_SUCH_TABLE:
                raise SchemaError(f"Table {database}.{table} does not exist") from err
            raise
        finally:
            cursor.close()

        columns: t.List[ColumnDefinition] = [
            ColumnDefinition(
                name=self._decode_column_type(row["Field"]),
                source_type=self._decode_column_type(row["Type"]),
                is_primary_key=self._decode_column_type(row["Key"]) == "PRI",
            )
            for row in rows
            if row is not None
        ]
        if not columns:
            raise SchemaError(f"Table {database}.{table} has no columns")
        return columns

    def quote(self, identifier: str) -> str:
        return "`{}`".format(identifier.replace("`", "``"))

    def table_reference(self, database: t.Optional[str], table: str) -> str:
        if database:
            return f"{self.quote(database)}.{self.quote(table)}"
        return self.quote(table)

    def key_window_query(self, key_columns: str, table_reference: str, offset: int, limit: int) -> str:
        return f"SELECT {key_columns} FROM {table_reference} ORDER BY {key_columns} LIMIT {offset}, {limit}"

    def cursor(self, connection: t.Any) -> t.Any:
        # Unbuffered so large pages and full scans are streamed from the server.
        return connection.cursor(buffered=False)
