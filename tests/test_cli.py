from unittest import mock

import pytest


pytest.importorskip("pyodbc")

from rdbms_to_clickhouse import cli  # noqa: E402
from rdbms_to_clickhouse.errors import MigrationConnectionError  # noqa: E402
from rdbms_to_clickhouse.mssql_utils import MSSQLDialect  # noqa: E402
from rdbms_to_clickhouse.mysql_utils import MySQLDialect  # noqa: E402
from rdbms_to_clickhouse.types import FailedBatch, MigrationReport  # noqa: E402


def report(*failed: FailedBatch) -> MigrationReport:
    return MigrationReport(rows_read=10, target_rows=10, failed_batches=tuple(failed), elapsed=1.0)


@pytest.fixture()
def engine_class():
    with mock.patch.object(cli, "MigrationEngine") as engine_class:
        engine_class.DEFAULT_BATCH = 5000
        engine_class.MODES = ("sequential", "parallel")
        engine_class.return_value.run.return_value = report()
        yield engine_class


def test_defaults(engine_class) -> None:
    assert cli.main(["--source-table", "orders", "--source-database", "shop"]) == 0

    dialect = engine_class.call_args.args[0]
    kwargs = engine_class.call_args.kwargs
    assert isinstance(dialect, MySQLDialect)
    assert kwargs["source_table"] == "orders"
    assert kwargs["source_database"] == "shop"
    assert kwargs["host"] == "localhost"
    assert kwargs["port"] == 9000
    assert kwargs["user"] == "default"
    assert kwargs["mode"] == "parallel"
    assert kwargs["order_by"] == ()
    assert kwargs["drop"] is False
    assert kwargs["strict"] is False


def test_options(engine_class) -> None:
    argv = [
        "--source-type", "mssql",
        "--source-table", "Orders",
        "--source-schema", "sales",
        "--source-database", "Shop",
        "--target-database", "analytics",
        "-b", "100",
        "-t", "3",
        "-m", "sequential",
        "--order-by", "Customer, id",
        "--lowercase",
        "--drop",
        "--strict",
        "-q",
    ]  # fmt: skip

    assert cli.main(argv) == 0

    kwargs = engine_class.call_args.kwargs
    dialect = engine_class.call_args.args[0]
    assert isinstance(dialect, MSSQLDialect)
    assert dialect.table_reference("Shop", "Orders") == "[sales].[Orders]"
    assert kwargs["target_database"] == "analytics"
    assert kwargs["batch"] == 100
    assert kwargs["thread"] == 3
    assert kwargs["mode"] == "sequential"
    assert kwargs["order_by"] == ("Customer", "id")
    assert kwargs["lowercase"] is True
    assert kwargs["drop"] is True
    assert kwargs["strict"] is True
    assert kwargs["quiet"] is True


def test_failed_batches_exit_nonzero(engine_class) -> None:
    engine_class.return_value.run.return_value = report(FailedBatch(2, 5, "Too many parts"))

    assert cli.main(["--source-table", "orders"]) == 1


def test_migrator_error_exit_nonzero(engine_class, capsys) -> None:
    engine_class.return_value.run.side_effect = MigrationConnectionError("Unable to connect to ClickHouse")

    assert cli.main(["--source-table", "orders"]) == 1
    assert "Unable to connect to ClickHouse" in capsys.readouterr().err


def test_source_table_is_required(engine_class) -> None:
    with pytest.raises(SystemExit):
        cli.main([])
    engine_class.assert_not_called()
