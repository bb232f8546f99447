"""Types for rdbms-to-clickhouse."""

import os
import typing as t

import typing_extensions as tx


class MigrationParams(tx.TypedDict):
    """Migration engine parameters."""

    host: t.Optional[str]
    port: t.Optional[int]
    user: t.Optional[str]
    password: t.Optional[t.Union[str, bool]]
    source_host: t.Optional[str]
    source_port: t.Optional[int]
    source_user: t.Optional[str]
    source_password: t.Optional[t.Union[str, bool]]
    source_database: t.Optional[str]
    source_table: str
    target_database: t.Optional[str]
    target_table: t.Optional[str]
    batch: t.Optional[int]
    thread: t.Optional[int]
    mode: t.Optional[str]
    order_by: t.Optional[t.Sequence[str]]
    lowercase: t.Optional[bool]
    drop: t.Optional[bool]
    trace: t.Optional[bool]
    strict: t.Optional[bool]
    quiet: t.Optional[bool]
    log_file: t.Optional[t.Union[str, "os.PathLike[t.Any]"]]


class ColumnDefinition(t.NamedTuple):
    """Source table column as reported by schema introspection."""

    name: str
    source_type: str
    is_primary_key: bool = False


ColumnCatalog = t.Sequence[ColumnDefinition]

Row = t.Sequence[t.Any]


class MigrationOptions(t.NamedTuple):
    """Validated configuration, fixed for the duration of a run."""

    host: str
    port: int
    user: str
    password: t.Optional[str]
    source_host: str
    source_port: int
    source_user: t.Optional[str]
    source_password: t.Optional[str]
    source_database: t.Optional[str]
    source_table: str
    target_database: str
    target_table: str
    batch: int
    thread: int
    mode: str
    order_by: t.Tuple[str, ...]
    lowercase: bool
    drop: bool
    trace: bool
    strict: bool

    def target_name(self, name: str) -> str:
        """Column or sort key name as it is written on the ClickHouse side."""
        return name.lower() if self.lowercase else name


class InsertTemplate(t.NamedTuple):
    """Bulk INSERT statement built once per run.

    ``column_types`` holds the ClickHouse type of every column, positionally
    matching the source rows.
    """

    sql: str
    column_types: t.Tuple[str, ...]


class BatchQuery(t.NamedTuple):
    """Full-row query for one page of the source table.

    ``rows_in_batch`` is the number of keys found for the page, zero once the
    table is exhausted, in which case ``sql`` is None.
    """

    sql: t.Optional[str]
    params: t.Tuple[t.Any, ...]
    rows_in_batch: int


class FailedBatch(t.NamedTuple):
    """A batch whose bulk insert failed on every attempt."""

    batch_index: int
    rows: int
    error: str


class MigrationReport(t.NamedTuple):
    """Outcome of a single migration run."""

    rows_read: int
    target_rows: int
    failed_batches: t.Tuple[FailedBatch, ...]
    elapsed: float

    @property
    def failed_rows(self) -> int:
        return sum(batch.rows for batch in self.failed_batches)

    @property
    def succeeded(self) -> bool:
        return not self.failed_batches
