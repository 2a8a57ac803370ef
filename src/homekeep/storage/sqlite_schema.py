"""SQLite schema definition for the operation queue."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

# ── Migrations ──────────────────────────────────────────────────────
# Each entry maps (from_version -> to_version) with a list of SQL statements.
# Migrations run sequentially in initialize() when db version < SCHEMA_VERSION.

MIGRATIONS: dict[tuple[int, int], list[str]] = {}


async def run_migrations(conn: aiosqlite.Connection, current_version: int) -> int:
    """Apply all pending migrations from current_version to SCHEMA_VERSION.

    Returns the final schema version after all migrations.
    """
    version = current_version

    while version < SCHEMA_VERSION:
        next_version = version + 1
        key = (version, next_version)

        for sql in MIGRATIONS.get(key, []):
            try:
                await conn.execute(sql)
            except sqlite3.OperationalError as e:
                # Column/table may already exist (partial migration)
                message = str(e).lower()
                if "duplicate column" in message or "already exists" in message:
                    logger.debug("Migration already applied: %s", e)
                else:
                    raise

        version = next_version

    await conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    await conn.commit()
    return version


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Queued mutations; seq gives insertion order
CREATE TABLE IF NOT EXISTS operations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    entity_type TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',  -- JSON
    idempotency_key TEXT NOT NULL,
    enqueued_at TEXT NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_operations_status ON operations(status, seq);
CREATE INDEX IF NOT EXISTS idx_operations_entity ON operations(entity_id);

-- Remote ids assigned to entities created while offline
CREATE TABLE IF NOT EXISTS id_mappings (
    local_id TEXT PRIMARY KEY,
    remote_id TEXT NOT NULL,
    mapped_at TEXT NOT NULL
);

-- Idempotency keys the remote store has acknowledged
CREATE TABLE IF NOT EXISTS acknowledgements (
    idempotency_key TEXT PRIMARY KEY,
    remote_id TEXT,
    acknowledged_at TEXT NOT NULL
);
"""
