"""Utility to migrate a MySQL or SQL Server table to ClickHouse."""

__version__ = "1.0.0"

from .transporter import MigrationEngine
