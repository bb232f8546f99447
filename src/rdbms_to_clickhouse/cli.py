"""Command line interface."""

import argparse
import os
import sys
import typing as t

from rdbms_to_clickhouse import __version__
from rdbms_to_clickhouse.dialect import Dialect
from rdbms_to_clickhouse.errors import MigratorError
from rdbms_to_clickhouse.mssql_utils import MSSQLDialect
from rdbms_to_clickhouse.mysql_utils import MySQLDialect
from rdbms_to_clickhouse.transporter import MigrationEngine


DIALECTS: t.Dict[str, t.Type[Dialect]] = {
    MySQLDialect.name: MySQLDialect,
    MSSQLDialect.name: MSSQLDialect,
}


def _column_list(value: str) -> t.Tuple[str, ...]:
    return tuple(column.strip() for column in value.split(",") if column.strip())


def _dialect(args: argparse.Namespace) -> Dialect:
    if args.source_type == MSSQLDialect.name:
        return MSSQLDialect(schema=args.source_schema)
    return DIALECTS[args.source_type]()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rdbms2clickhouse",
        description="Migrate a MySQL or SQL Server table to ClickHouse.",
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")

    source = parser.add_argument_group("source database")
    source.add_argument("--source-type", choices=sorted(DIALECTS), default=MySQLDialect.name)
    source.add_argument("--source-host", default="localhost")
    source.add_argument("--source-port", type=int, default=0, help="0 uses the dialect default port")
    source.add_argument("--source-user")
    source.add_argument("--source-password")
    source.add_argument("--source-database")
    source.add_argument("--source-table", required=True)
    source.add_argument("--source-schema", help="SQL Server schema, defaults to dbo")

    target = parser.add_argument_group("ClickHouse")
    target.add_argument("--host", default="localhost")
    target.add_argument("--port", type=int, default=9000)
    target.add_argument("--user", default="default")
    target.add_argument("--password")
    target.add_argument("--target-database", help="defaults to the source database")
    target.add_argument("--target-table", help="defaults to the source table")

    run = parser.add_argument_group("migration")
    run.add_argument("-b", "--batch", type=int, default=MigrationEngine.DEFAULT_BATCH, help="rows per batch")
    run.add_argument("-t", "--thread", type=int, default=os.cpu_count() or 1, help="parallel workers")
    run.add_argument("-m", "--mode", choices=MigrationEngine.MODES, default="parallel")
    run.add_argument(
        "--order-by",
        type=_column_list,
        default=(),
        help="comma separated sort key for the ClickHouse table, defaults to the primary key",
    )
    run.add_argument("--lowercase", action="store_true", help="lowercase ClickHouse column names")
    run.add_argument("--drop", action="store_true", help="drop the ClickHouse table if it exists")
    run.add_argument("--strict", action="store_true", help="abort when a batch can not be inserted")
    run.add_argument("--trace", action="store_true", help="log timing of every step")
    run.add_argument("-q", "--quiet", action="store_true")
    run.add_argument("-l", "--log-file")

    return parser


def main(argv: t.Optional[t.Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        engine = MigrationEngine(
            _dialect(args),
            host=args.host,
            port=args.port,
            user=args.user,
            password=args.password,
            source_host=args.source_host,
            source_port=args.source_port,
            source_user=args.source_user,
            source_password=args.source_password,
            source_database=args.source_database,
            source_table=args.source_table,
            target_database=args.target_database,
            target_table=args.target_table,
            batch=args.batch,
            thread=args.thread,
            mode=args.mode,
            order_by=args.order_by,
            lowercase=args.lowercase,
            drop=args.drop,
            trace=args.trace,
            strict=args.strict,
            quiet=args.quiet,
            log_file=args.log_file,
        )
        report = engine.run()
    except (MigratorError, ValueError) as err:
        print(f"rdbms2clickhouse: {err}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("rdbms2clickhouse: interrupted", file=sys.stderr)
        return 1

    return 0 if report.succeeded else 1
