"""
Database access for relaycore.

Usage:
    from relaycore.database import DatabaseAdapter, DatabaseConfig

    async with DatabaseAdapter(DatabaseConfig()) as db:
        rows = await db.fetch("SELECT * FROM outbox_events WHERE status = $1", "PENDING")
"""

from .adapter import (
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    Queryable,
    TransactionHandle,
    UniqueViolationError,
    affected_rows,
    coerce_datetime,
)
from .schema import create_sqlite_schema

__all__ = [
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "Queryable",
    "TransactionHandle",
    "UniqueViolationError",
    "affected_rows",
    "coerce_datetime",
    "create_sqlite_schema",
]
