"""
SQLite schema for local development and tests.

PostgreSQL deployments use the SQL files in db/migrations instead.
"""

import logging

from .adapter import DatabaseAdapter, DatabaseBackend

logger = logging.getLogger(__name__)

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS outbox_events (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    payload_json TEXT NOT NULL DEFAULT '{}',
    correlation_id TEXT,
    status TEXT NOT NULL DEFAULT 'PENDING'
        CHECK (status IN ('PENDING', 'PROCESSING', 'SENT', 'FAILED')),
    available_at TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    locked_by TEXT,
    locked_until TEXT,
    last_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_outbox_events_due
    ON outbox_events (status, available_at, created_at);
CREATE INDEX IF NOT EXISTS idx_outbox_events_lease
    ON outbox_events (status, locked_until);

CREATE TABLE IF NOT EXISTS idempotency_records (
    key TEXT PRIMARY KEY,
    result_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_entries (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    actor_id TEXT,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    details_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS customer_packages (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    customer_party_id TEXT NOT NULL,
    name TEXT NOT NULL,
    total_units INTEGER NOT NULL CHECK (total_units > 0),
    remaining_units INTEGER NOT NULL CHECK (remaining_units >= 0),
    source_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (tenant_id, source_key)
);

CREATE TABLE IF NOT EXISTS package_usages (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    package_id TEXT NOT NULL REFERENCES customer_packages (id),
    units_used INTEGER NOT NULL CHECK (units_used > 0),
    source_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (tenant_id, source_key)
);

CREATE TABLE IF NOT EXISTS loyalty_accounts (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    customer_party_id TEXT NOT NULL,
    current_points_balance INTEGER NOT NULL DEFAULT 0
        CHECK (current_points_balance >= 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (tenant_id, customer_party_id)
);

CREATE TABLE IF NOT EXISTS loyalty_ledger (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    account_id TEXT NOT NULL REFERENCES loyalty_accounts (id),
    entry_type TEXT NOT NULL CHECK (entry_type IN ('EARN', 'REDEEM')),
    points_delta INTEGER NOT NULL,
    reason TEXT,
    source_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (tenant_id, source_key)
);
"""


async def create_sqlite_schema(db: DatabaseAdapter) -> None:
    """Create all tables on a SQLite database (safe to run repeatedly)."""
    if db.backend != DatabaseBackend.SQLITE:
        raise RuntimeError("create_sqlite_schema only applies to SQLite; run db/migrate.py for PostgreSQL")
    await db.executescript(SQLITE_SCHEMA)
    logger.debug("SQLite schema ensured")
