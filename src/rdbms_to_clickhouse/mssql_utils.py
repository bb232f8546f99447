"""Microsoft SQL Server source dialect."""

import logging
import typing as t

import pyodbc

from rdbms_to_clickhouse.dialect import Dialect
from rdbms_to_clickhouse.errors import MigrationConnectionError, SchemaError
from rdbms_to_clickhouse.types import ColumnDefinition


logger = logging.getLogger(__name__)

PRIMARY_KEY_COLUMNS_SQL: str = """
    SELECT KU.COLUMN_NAME
    FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS AS TC
    INNER JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE AS KU
        ON TC.CONSTRAINT_TYPE = 'PRIMARY KEY'
        AND TC.CONSTRAINT_SCHEMA = KU.CONSTRAINT_SCHEMA
        AND TC.CONSTRAINT_NAME = KU.CONSTRAINT_NAME
        AND TC.TABLE_SCHEMA = KU.TABLE_SCHEMA
        AND TC.TABLE_NAME = KU.TABLE_NAME
    WHERE KU.TABLE_SCHEMA = ? AND KU.TABLE_NAME = ?
    ORDER BY KU.ORDINAL_POSITION
"""

COLUMNS_SQL: str = """
    SELECT COLUMN_NAME, DATA_TYPE
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ?
    ORDER BY ORDINAL_POSITION
"""


class MSSQLDialect(Dialect):
    """SQL Server via pyodbc."""

    name = "mssql"

    DEFAULT_PORT = 1433

    TYPE_MAP = dict(
        Dialect.TYPE_MAP,
        smalldatetime="DateTime",
        real="Float32",
        money="Float64",
        numeric="Float64",
        bit="UInt8",
    )

    PLACEHOLDER = "?"
    ROW_VALUE_IN = False
    # SQL Server accepts at most 2100 parameters per request.
    PARAMETER_LIMIT = 2000

    DEFAULT_SCHEMA = "dbo"

    def __init__(
        self,
        driver: str = "ODBC Driver 18 for SQL Server",
        connection_timeout: int = 300,
        schema: t.Optional[str] = None,
    ) -> None:
        self._driver = driver
        self._schema = schema or self.DEFAULT_SCHEMA
        self._connection_timeout = connection_timeout

    def connection_string(
        self,
        host: str,
        port: int,
        user: t.Optional[str],
        password: t.Optional[str],
        database: t.Optional[str],
    ) -> str:
        if not database:
            raise ValueError("Please provide a SQL Server database")
        config: t.Dict[str, t.Any] = {
            "DRIVER": "{%s}" % self._driver,
            "SERVER": "tcp:{host},{port}".format(host=host, port=port if port and port > 0 else self.DEFAULT_PORT),
            "DATABASE": database,
            "UID": self.quote_value(user or self.DEFAULT_USER),
            "PWD": self.quote_value(password) if password else None,
            "Encrypt": "no",
            "TrustServerCertificate": "yes",
        }
        return ";".join(f"{key}={value}" for key, value in config.items() if value)

    @staticmethod
    def quote_value(value: str) -> str:
        """Brace-quote an ODBC attribute value so it may contain ';', '{' or '}'."""
        return "{%s}" % value.replace("}", "}}")

    def connect(
        self,
        host: str,
        port: int,
        user: t.Optional[str],
        password: t.Optional[str],
        database: t.Optional[str],
    ) -> t.Any:
        conn_str: str = self.connection_string(host, port, user, password, database)
        try:
            connection = pyodbc.connect(conn_str, timeout=self._connection_timeout, autocommit=True)
        except pyodbc.Error as err:
            logger.error("Failed to connect to SQL Server at %s: %s", host, err)
            raise MigrationConnectionError(f"Unable to connect to SQL Server: {err}") from err

        logger.info("Connected to SQL Server at %s", host)
        return connection

    def get_columns(self, connection: t.Any, database: t.Optional[str], table: str) -> t.List[ColumnDefinition]:
        cursor = connection.cursor()
        try:
            cursor.execute(PRIMARY_KEY_COLUMNS_SQL, self._schema, table)
            primary_keys: t.Set[str] = {row[0] for row in cursor.fetchall()}
            cursor.execute(COLUMNS_SQL, self._schema, table)
            rows = cursor.fetchall()
        finally:
            cursor.close()

        if not rows:
            raise SchemaError(f"Table {database}.{self._schema}.{table} does not exist")

        return [
            ColumnDefinition(name=row[0], source_type=row[1], is_primary_key=row[0] in primary_keys)
            for row in rows
        ]

    def quote(self, identifier: str) -> str:
        return "[{}]".format(identifier.replace("]", "]]"))

    def table_reference(self, database: t.Optional[str], table: str) -> str:
        # The connection is already bound to the source database.
        return f"{self.quote(self._schema)}.{self.quote(table)}"

    def key_window_query(self, key_columns: str, table_reference: str, offset: int, limit: int) -> str:
        return (
            f"SELECT {key_columns} FROM {table_reference} ORDER BY {key_columns} "
            f"OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"
        )
