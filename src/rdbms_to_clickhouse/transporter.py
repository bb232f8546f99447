"""Migrate a single relational table to ClickHouse."""

import logging
import os
import threading
import typing as t
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from os.path import realpath
from sys import stdout

import typing_extensions as tx

from rdbms_to_clickhouse.clickhouse_utils import (
    ClickHouseSink,
    TargetSink,
    create_database_sql,
    create_table_sql,
    drop_table_sql,
    insert_template,
)
from rdbms_to_clickhouse.dialect import Dialect
from rdbms_to_clickhouse.errors import ConfigError, DDLError, InsertError, MigratorError
from rdbms_to_clickhouse.inserter import RetryingInserter
from rdbms_to_clickhouse.progress import BatchCursor, ProgressTracker, Tracer
from rdbms_to_clickhouse.types import (
    ColumnDefinition,
    FailedBatch,
    InsertTemplate,
    MigrationOptions,
    MigrationParams,
    MigrationReport,
    Row,
)


SinkFactory = t.Callable[[t.Optional[str]], TargetSink]


class MigrationEngine:
    """Use this class to migrate one table from a relational database to ClickHouse."""

    MODES: t.Tuple[str, ...] = ("sequential", "parallel")

    DEFAULT_BATCH: int = 5000

    def __init__(
        self,
        dialect: Dialect,
        sink_factory: t.Optional[SinkFactory] = None,
        **kwargs: tx.Unpack[MigrationParams],
    ) -> None:
        """Constructor."""
        if kwargs.get("source_table"):
            source_table = str(kwargs.get("source_table"))
        else:
            raise ValueError("Please provide a source table")

        source_database: t.Optional[str] = kwargs.get("source_database") or None

        batch_size = kwargs.get("batch")
        batch: int = self.DEFAULT_BATCH if batch_size is None else int(batch_size)
        if batch < 1:
            raise ConfigError("Batch size must be at least 1")

        thread_count = kwargs.get("thread")
        thread: int = (os.cpu_count() or 1) if thread_count is None else int(thread_count)
        if thread < 1:
            raise ConfigError("Thread count must be at least 1")

        mode: str = str(kwargs.get("mode") or "parallel").lower()
        if mode not in self.MODES:
            raise ConfigError(f"Unknown mode {mode!r}, expected one of {', '.join(self.MODES)}")

        password: t.Optional[t.Union[str, bool]] = kwargs.get("password")
        source_password: t.Optional[t.Union[str, bool]] = kwargs.get("source_password")

        self._options = MigrationOptions(
            host=kwargs.get("host") or "localhost",
            port=kwargs.get("port") or 9000,
            user=kwargs.get("user") or "default",
            password=password if isinstance(password, str) else None,
            source_host=kwargs.get("source_host") or "localhost",
            source_port=kwargs.get("source_port") or dialect.DEFAULT_PORT,
            source_user=kwargs.get("source_user") or None,
            source_password=source_password if isinstance(source_password, str) else None,
            source_database=source_database,
            source_table=source_table,
            target_database=kwargs.get("target_database") or source_database or "default",
            target_table=kwargs.get("target_table") or source_table,
            batch=batch,
            thread=thread,
            mode=mode,
            order_by=tuple(column.strip() for column in kwargs.get("order_by") or () if column.strip()),
            lowercase=bool(kwargs.get("lowercase", False)),
            drop=bool(kwargs.get("drop", False)),
            trace=bool(kwargs.get("trace", False)),
            strict=bool(kwargs.get("strict", False)),
        )

        self._quiet = bool(kwargs.get("quiet", False))

        self._logger = self._setup_logger(log_file=kwargs.get("log_file") or None, quiet=self._quiet)

        self._dialect = dialect
        self._sink_factory: SinkFactory = sink_factory or self._connect_clickhouse

        self._tracer = Tracer(self._logger, enabled=self._options.trace)
        self._inserter = RetryingInserter(self._logger, strict=self._options.strict)

        self._columns: t.Optional[t.Tuple[ColumnDefinition, ...]] = None
        self._primary_keys: t.Tuple[ColumnDefinition, ...] = ()
        self._sort_keys: t.Tuple[str, ...] = ()
        self._table_sql: str = ""
        self._select_columns_sql: str = ""
        self._full_scan_sql: str = ""
        self._insert_template: t.Optional[InsertTemplate] = None

        self._cursor = BatchCursor()
        self._progress: t.Optional[ProgressTracker] = None
        self._failed_batches: t.List[FailedBatch] = []
        self._failed_lock = threading.Lock()
        self._abort = threading.Event()

    @classmethod
    def _setup_logger(
        cls, log_file: t.Optional[t.Union[str, "os.PathLike[t.Any]"]] = None, quiet: bool = False
    ) -> logging.Logger:
        formatter: logging.Formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)-8s %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
        # Handlers live on the package logger so the dialect and sink modules log through them too.
        package_logger: logging.Logger = logging.getLogger(__package__)
        package_logger.setLevel(logging.DEBUG)

        # Clear any existing handlers to prevent duplicates
        for handler in list(package_logger.handlers):
            package_logger.removeHandler(handler)
            handler.close()

        if not quiet:
            screen_handler = logging.StreamHandler(stream=stdout)
            screen_handler.setFormatter(formatter)
            package_logger.addHandler(screen_handler)

        if log_file:
            file_handler = logging.FileHandler(realpath(log_file), mode="w")
            file_handler.setFormatter(formatter)
            package_logger.addHandler(file_handler)

        package_logger.propagate = False

        return logging.getLogger(f"{__package__}.{cls.__name__}")

    @property
    def options(self) -> MigrationOptions:
        return self._options

    @property
    def batch_cursor(self) -> BatchCursor:
        return self._cursor

    @property
    def primary_keys(self) -> t.Tuple[ColumnDefinition, ...]:
        return self._primary_keys

    @property
    def insert_template(self) -> t.Optional[InsertTemplate]:
        return self._insert_template

    def _connect_clickhouse(self, database: t.Optional[str] = None) -> TargetSink:
        return ClickHouseSink(
            host=self._options.host,
            port=self._options.port,
            user=self._options.user,
            password=self._options.password,
            database=database,
        )

    def _connect_source(self) -> t.Any:
        return self._dialect.connect(
            self._options.source_host,
            self._options.source_port,
            self._options.source_user,
            self._options.source_password,
            self._options.source_database,
        )

    def get_columns(self) -> t.Tuple[ColumnDefinition, ...]:
        """Source columns, introspected once per engine."""
        if self._columns is None:
            with closing(self._connect_source()) as connection:
                self._columns = tuple(
                    self._dialect.get_columns(connection, self._options.source_database, self._options.source_table)
                )
        return self._columns

    def _init(self) -> None:
        columns = self.get_columns()

        self._primary_keys = tuple(column for column in columns if column.is_primary_key)

        if not self._primary_keys and not self._options.order_by:
            message = (
                f"Source table {self._options.source_table} contains no primary key "
                "and no order by columns were given."
            )
            self._logger.error(message)
            raise ConfigError(message)

        names: t.Dict[str, str] = {column.name.lower(): column.name for column in columns}
        for column in self._options.order_by:
            if column.lower() not in names:
                message = f"Can't find order by column: {column} in source table."
                self._logger.error(message)
                raise ConfigError(message)

        if self._options.order_by:
            self._sort_keys = tuple(self._options.target_name(names[column.lower()]) for column in self._options.order_by)
        else:
            self._sort_keys = tuple(self._options.target_name(column.name) for column in self._primary_keys)

        self._table_sql = self._dialect.table_reference(self._options.source_database, self._options.source_table)
        self._select_columns_sql = self._dialect.select_columns_clause(columns)
        self._full_scan_sql = self._dialect.full_scan_query(self._select_columns_sql, self._table_sql)
        self._insert_template = insert_template(
            self._options.target_database, self._options.target_table, self._target_columns()
        )

    def _target_columns(self) -> t.List[t.Tuple[str, str]]:
        return [
            (self._options.target_name(column.name), self._dialect.convert_type(column.source_type))
            for column in self.get_columns()
        ]

    def _prepare_clickhouse(self) -> None:
        statements: t.List[str] = [create_database_sql(self._options.target_database)]
        if self._options.drop:
            statements.append(drop_table_sql(self._options.target_database, self._options.target_table))
        statements.append(
            create_table_sql(
                self._options.target_database,
                self._options.target_table,
                self._target_columns(),
                self._sort_keys,
            )
        )

        with self._sink_factory(None) as sink:
            for sql in statements:
                try:
                    sink.execute(sql)
                except MigratorError:
                    raise
                except Exception as err:
                    self._logger.error("Preparing ClickHouse table failed on %r: %s", sql, err)
                    raise DDLError(f"Preparing ClickHouse table failed: {err}") from err

        self._logger.info(
            "Prepared ClickHouse table %s.%s", self._options.target_database, self._options.target_table
        )

    def run(self) -> MigrationReport:
        """Migrate the table and report what ended up in ClickHouse."""
        self._init()
        self._prepare_clickhouse()

        self._cursor = BatchCursor()
        self._failed_batches = []
        self._abort.clear()
        self._progress = ProgressTracker(
            self._logger,
            self._options.batch,
            description=f"Migrating {self._options.source_table}",
            quiet=self._quiet,
        )

        worker_errors: t.List[BaseException] = []
        try:
            thread: int = self._options.thread
            if not self._primary_keys and thread > 1:
                thread = 1
                self._logger.warning(
                    "Table: %s contains no primary key, can't support parallel mode.", self._options.source_table
                )

            if not self._primary_keys or self._options.mode == "sequential":
                self._sequential_migrate()
            else:
                worker_errors = self._parallel_migrate(thread)
            elapsed: float = self._progress.elapsed
        finally:
            self._progress.close()

        target_rows: int = self._print_report()

        if worker_errors:
            raise worker_errors[0]

        report = MigrationReport(
            rows_read=self._progress.rows,
            target_rows=target_rows,
            failed_batches=tuple(sorted(self._failed_batches)),
            elapsed=elapsed,
        )
        if not report.succeeded:
            self._logger.error(
                "%d batches (%d rows) could not be inserted: %s",
                len(report.failed_batches),
                report.failed_rows,
                ", ".join(str(batch.batch_index) for batch in report.failed_batches),
            )
        return report

    def _print_report(self) -> int:
        with self._sink_factory(self._options.target_database) as sink:
            count: int = sink.count(self._options.target_database, self._options.target_table)
        self._logger.info("Migrate %d rows.", count)
        return count

    def _flush(self, sink: TargetSink, rows: t.List[Row], batch_index: int) -> None:
        assert self._insert_template is not None and self._progress is not None
        with self._tracer.trace("Insert data to clickhouse"):
            failed = self._inserter.insert(sink, self._insert_template, rows, batch_index)
        if failed is None:
            self._progress.rows_written(len(rows))
            return
        with self._failed_lock:
            self._failed_batches.append(failed)

    def _sequential_migrate(self) -> None:
        assert self._progress is not None
        self._logger.info("Sequential mode, Batch: %d.", self._options.batch)

        with closing(self._connect_source()) as connection, self._sink_factory(self._options.target_database) as sink:
            cursor = self._dialect.cursor(connection)
            try:
                with self._tracer.trace("Query data from source database"):
                    self._dialect.execute(cursor, self._full_scan_sql)

                batch_index: int = 0
                rows: t.List[Row] = []
                for row in self._dialect.iter_rows(cursor):
                    self._progress.row_read()
                    rows.append(row)
                    if len(rows) >= self._options.batch:
                        self._flush(sink, rows, batch_index)
                        batch_index += 1
                        rows = []

                if rows:
                    self._flush(sink, rows, batch_index)
            finally:
                cursor.close()

        self._progress.log_progress()

    def _parallel_migrate(self, thread: int) -> t.List[BaseException]:
        assert self._progress is not None
        self._logger.info("Thread: %d, Batch: %d.", thread, self._options.batch)

        errors: t.List[BaseException] = []
        with ThreadPoolExecutor(max_workers=thread, thread_name_prefix="migrate") as executor:
            futures = [executor.submit(self._parallel_worker, worker) for worker in range(thread)]
            for worker, future in enumerate(futures):
                error = future.exception()
                if error is not None:
                    self._logger.error("Thread %d failed: %s", worker, error)
                    errors.append(error)

        self._progress.log_progress()
        return errors

    def _parallel_worker(self, worker: int) -> None:
        try:
            self._copy_batches()
        except InsertError:
            # Strict mode: stop the other workers at their next claim.
            self._abort.set()
            raise
        self._logger.info("Thread %d exit.", worker)

    def _copy_batches(self) -> None:
        assert self._progress is not None
        batch_size: int = self._options.batch

        with closing(self._connect_source()) as connection, self._sink_factory(self._options.target_database) as sink:
            while not self._abort.is_set():
                batch_index: int = self._cursor.claim()

                with self._tracer.trace("Construct query data command"):
                    query = self._dialect.batch_query(
                        connection,
                        self._primary_keys,
                        self._select_columns_sql,
                        self._table_sql,
                        batch_index,
                        batch_size,
                    )
                if query.rows_in_batch == 0 or query.sql is None:
                    return

                rows: t.List[Row] = []
                cursor = self._dialect.cursor(connection)
                try:
                    with self._tracer.trace("Query data from source database"):
                        self._dialect.execute(cursor, query.sql, query.params)
                    with self._tracer.trace("Read and convert data"):
                        for row in self._dialect.iter_rows(cursor):
                            self._progress.row_read()
                            rows.append(row)
                finally:
                    cursor.close()

                self._flush(sink, rows, batch_index)

                if query.rows_in_batch < batch_size:
                    return
