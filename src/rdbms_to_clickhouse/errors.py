"""Exceptions raised while migrating a table."""


class MigratorError(Exception):
    """Base class for every error raised by the migrator."""


class ConfigError(MigratorError, ValueError):
    """The run configuration can not be satisfied."""


class MigrationConnectionError(MigratorError, ConnectionError):
    """The source database or ClickHouse could not be reached."""


class SchemaError(MigratorError):
    """The source table or its columns could not be found."""


class DDLError(MigratorError):
    """Preparing the target database or table failed."""


class InsertError(MigratorError):
    """A bulk insert failed on every attempt."""

    def __init__(self, batch_index: int, rows: int, attempts: int, cause: BaseException) -> None:
        self.batch_index = batch_index
        self.rows = rows
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Inserting batch {batch_index} ({rows} rows) failed after {attempts} attempts: {cause}")
