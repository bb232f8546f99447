"""Contract every source database dialect implements for the migration engine."""

import abc
import re
import typing as t

from rdbms_to_clickhouse.types import BatchQuery, ColumnCatalog, ColumnDefinition, Row


class Dialect(abc.ABC):
    """Connection, introspection and SQL generation for one source RDBMS.

    The engine only ever talks to the source through this interface. Connections
    returned by :meth:`connect` are DB-API 2.0 connections owned by a single
    worker and never shared.
    """

    name: t.ClassVar[str] = ""

    DEFAULT_PORT: t.ClassVar[int] = 0
    DEFAULT_USER: t.ClassVar[str] = "root"

    COLUMN_PATTERN: t.ClassVar[t.Pattern[str]] = re.compile(r"^[^(]+")

    # Modifiers that follow the base type name, e.g. "int unsigned".
    TYPE_MODIFIERS: t.ClassVar[t.Tuple[str, ...]] = ()

    TYPE_MAP: t.ClassVar[t.Dict[str, str]] = {
        "timestamp": "DateTime",
        "datetime": "DateTime",
        "datetime2": "DateTime",
        "date": "Date",
        "tinyint": "UInt8",
        "smallint": "Int16",
        "int": "Int32",
        "integer": "Int32",
        "float": "Float32",
        "double": "Float64",
        "decimal": "Float64",
        "bigint": "Int64",
    }
    DEFAULT_TYPE: t.ClassVar[str] = "String"

    PLACEHOLDER: t.ClassVar[str] = "%s"

    # Whether "(a, b) IN ((1, 2), (3, 4))" is understood by the server.
    ROW_VALUE_IN: t.ClassVar[bool] = True

    # Maximum number of bound parameters in one statement, None if unbounded.
    PARAMETER_LIMIT: t.ClassVar[t.Optional[int]] = None

    FETCH_SIZE: t.ClassVar[int] = 1000

    @abc.abstractmethod
    def connect(
        self,
        host: str,
        port: int,
        user: t.Optional[str],
        password: t.Optional[str],
        database: t.Optional[str],
    ) -> t.Any:
        """Open a new connection, raising MigrationConnectionError on failure."""

    @abc.abstractmethod
    def get_columns(self, connection: t.Any, database: t.Optional[str], table: str) -> t.List[ColumnDefinition]:
        """Return the columns of ``table`` in definition order, raising SchemaError if it is missing."""

    @abc.abstractmethod
    def quote(self, identifier: str) -> str:
        """Quote a single identifier."""

    @abc.abstractmethod
    def table_reference(self, database: t.Optional[str], table: str) -> str:
        """Fully qualified, quoted table reference."""

    @abc.abstractmethod
    def key_window_query(self, key_columns: str, table_reference: str, offset: int, limit: int) -> str:
        """Select ``limit`` key tuples starting at ``offset``, ordered by the key."""

    @staticmethod
    def _decode_column_type(column_type: t.Union[str, bytes]) -> str:
        if isinstance(column_type, str):
            return column_type
        if isinstance(column_type, bytes):
            try:
                return column_type.decode()
            except (UnicodeDecodeError, AttributeError):
                pass
        return str(column_type)

    @classmethod
    def base_type_name(cls, raw_type: t.Union[str, bytes]) -> str:
        """Lowercased type name without size suffix or modifiers, e.g. ``varchar(255)`` -> ``varchar``."""
        match: t.Optional[t.Match[str]] = cls.COLUMN_PATTERN.match(cls._decode_column_type(raw_type).strip())
        if not match:
            return ""
        type_name: str = match.group(0).strip().lower()
        for modifier in cls.TYPE_MODIFIERS:
            type_name = type_name.replace(f" {modifier}", "")
        return type_name.strip()

    def convert_type(self, raw_type: t.Union[str, bytes]) -> str:
        """Translate a source type name to a ClickHouse type name. Unknown types become String."""
        return self.TYPE_MAP.get(self.base_type_name(raw_type), self.DEFAULT_TYPE)

    def select_columns_clause(self, columns: ColumnCatalog) -> str:
        return ", ".join(self.quote(column.name) for column in columns)

    def full_scan_query(self, select_columns: str, table_reference: str) -> str:
        return f"SELECT {select_columns} FROM {table_reference}"

    def batch_query(
        self,
        connection: t.Any,
        primary_keys: ColumnCatalog,
        select_columns: str,
        table_reference: str,
        batch_index: int,
        batch_size: int,
    ) -> BatchQuery:
        """Build the full-row query for page ``batch_index``.

        The key columns of the page are fetched first, ordered by the key, and the
        returned query selects exactly those rows. An empty page returns a
        BatchQuery with ``rows_in_batch == 0`` and no query.
        """
        key_columns: str = ", ".join(self.quote(column.name) for column in primary_keys)
        cursor = connection.cursor()
        try:
            self.execute(cursor, self.key_window_query(key_columns, table_reference, batch_index * batch_size, batch_size))
            keys: t.List[t.Tuple[t.Any, ...]] = [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

        if not keys:
            return BatchQuery(None, (), 0)

        where, params = self.key_filter(primary_keys, keys)
        return BatchQuery(f"SELECT {select_columns} FROM {table_reference} WHERE {where}", tuple(params), len(keys))

    def key_filter(
        self, primary_keys: ColumnCatalog, keys: t.Sequence[t.Tuple[t.Any, ...]]
    ) -> t.Tuple[str, t.List[t.Any]]:
        """WHERE clause matching the given key tuples, with its parameters."""
        names: t.List[str] = [self.quote(column.name) for column in primary_keys]

        if self.PARAMETER_LIMIT is not None and len(keys) * len(names) > self.PARAMETER_LIMIT:
            return self._key_range_filter(names, keys[0], keys[-1])

        params: t.List[t.Any] = [value for key in keys for value in key]

        if len(names) == 1:
            return "{name} IN ({placeholders})".format(
                name=names[0], placeholders=", ".join([self.PLACEHOLDER] * len(keys))
            ), params

        if self.ROW_VALUE_IN:
            row = "({})".format(", ".join([self.PLACEHOLDER] * len(names)))
            return "({names}) IN ({rows})".format(names=", ".join(names), rows=", ".join([row] * len(keys))), params

        group = "({})".format(" AND ".join(f"{name} = {self.PLACEHOLDER}" for name in names))
        return "({})".format(" OR ".join([group] * len(keys))), params

    def _key_range_filter(
        self, names: t.Sequence[str], first: t.Tuple[t.Any, ...], last: t.Tuple[t.Any, ...]
    ) -> t.Tuple[str, t.List[t.Any]]:
        lower, lower_params = self._lexicographic_bound(names, first, ">")
        upper, upper_params = self._lexicographic_bound(names, last, "<")
        return f"{lower} AND {upper}", lower_params + upper_params

    def _lexicographic_bound(
        self, names: t.Sequence[str], values: t.Tuple[t.Any, ...], operator: str
    ) -> t.Tuple[str, t.List[t.Any]]:
        groups: t.List[str] = []
        params: t.List[t.Any] = []
        for position, name in enumerate(names):
            terms: t.List[str] = [f"{prefix} = {self.PLACEHOLDER}" for prefix in names[:position]]
            inclusive: str = "=" if position == len(names) - 1 else ""
            terms.append(f"{name} {operator}{inclusive} {self.PLACEHOLDER}")
            groups.append("({})".format(" AND ".join(terms)))
            params.extend(values[: position + 1])
        return "({})".format(" OR ".join(groups)), params

    def cursor(self, connection: t.Any) -> t.Any:
        """Forward-only cursor used to stream rows."""
        return connection.cursor()

    def execute(self, cursor: t.Any, sql: str, params: t.Sequence[t.Any] = ()) -> None:
        if params:
            cursor.execute(sql, tuple(params))
        else:
            cursor.execute(sql)

    def iter_rows(self, cursor: t.Any) -> t.Iterator[Row]:
        """Stream the rows of an executed query as positional tuples."""
        while True:
            rows = cursor.fetchmany(self.FETCH_SIZE)
            if not rows:
                break
            for row in rows:
                yield tuple(row)
