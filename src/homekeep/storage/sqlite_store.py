"""SQLite operation store - the durable queue that survives restarts."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from homekeep.core.operation import OperationAction, OperationRecord, OperationStatus
from homekeep.errors import StorageFull, StorageUnavailable
from homekeep.storage.base import OperationStore, validate_patch
from homekeep.storage.sqlite_schema import SCHEMA, SCHEMA_VERSION, run_migrations
from homekeep.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

_COLUMNS = (
    "seq, id, entity_type, action, entity_id, payload, idempotency_key, "
    "enqueued_at, attempt_count, status, last_error"
)


def _translate_error(exc: BaseException, action: str) -> StorageFull | StorageUnavailable:
    """Map a sqlite/OS failure onto the storage error taxonomy."""
    message = str(exc).lower()
    if isinstance(exc, sqlite3.Error) and ("full" in message or "quota" in message):
        return StorageFull(f"Operation store is full ({action}): {exc}")
    return StorageUnavailable(f"Operation store unavailable ({action}): {exc}")


class SQLiteOperationStore(OperationStore):
    """SQLite-backed operation queue.

    Every write is committed before the call returns, so a record that
    ``append`` returned survives a crash or restart.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open the database and bring the schema up to date.

        Raises:
            StorageUnavailable: If the database cannot be opened
        """
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row

            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=FULL")

            await self._conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
            )
            await self._conn.commit()

            async with self._conn.execute("SELECT version FROM schema_version") as cursor:
                row = await cursor.fetchone()

            if row is not None and row["version"] < SCHEMA_VERSION:
                await run_migrations(self._conn, row["version"])

            await self._conn.executescript(SCHEMA)

            if row is None:
                await self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
            await self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
            raise _translate_error(e, "initialize") from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _ensure_conn(self) -> aiosqlite.Connection:
        """Ensure the connection is available."""
        if self._conn is None:
            raise StorageUnavailable("Operation store not initialized. Call initialize() first.")
        return self._conn

    async def _write(self, action: str, sql: str, params: tuple[Any, ...]) -> int:
        """Execute and commit one write, returning the affected row count."""
        conn = self._ensure_conn()
        async with self._write_lock:
            try:
                cursor = await conn.execute(sql, params)
                await conn.commit()
            except sqlite3.IntegrityError:
                raise
            except (sqlite3.Error, OSError) as e:
                logger.warning("Operation store write failed (%s): %s", action, e)
                raise _translate_error(e, action) from e
            return cursor.rowcount

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        conn = self._ensure_conn()
        try:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except (sqlite3.Error, OSError) as e:
            raise _translate_error(e, "read") from e

    # ========== Operation Records ==========

    async def append(self, record: OperationRecord) -> OperationRecord:
        try:
            await self._write(
                "append",
                """INSERT INTO operations
                   (id, entity_type, action, entity_id, payload, idempotency_key,
                    enqueued_at, attempt_count, status, last_error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.entity_type,
                    record.action.value,
                    record.entity_id,
                    json.dumps(record.payload),
                    record.idempotency_key,
                    record.enqueued_at.isoformat(),
                    record.attempt_count,
                    record.status.value,
                    record.last_error,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Operation record {record.id} already exists") from e

        stored = await self.get(record.id)
        if stored is None:
            raise StorageUnavailable(f"Operation record {record.id} vanished after append")
        return stored

    async def list(
        self, *, statuses: Iterable[OperationStatus] | None = None
    ) -> list[OperationRecord]:
        if statuses is None:
            rows = await self._fetch(f"SELECT {_COLUMNS} FROM operations ORDER BY seq ASC", ())
        else:
            values = tuple(OperationStatus(s).value for s in statuses)
            if not values:
                return []
            placeholders = ", ".join("?" for _ in values)
            rows = await self._fetch(
                f"SELECT {_COLUMNS} FROM operations WHERE status IN ({placeholders}) "
                "ORDER BY seq ASC",
                values,
            )
        return [_row_to_record(row) for row in rows]

    async def get(self, record_id: str) -> OperationRecord | None:
        rows = await self._fetch(f"SELECT {_COLUMNS} FROM operations WHERE id = ?", (record_id,))
        return _row_to_record(rows[0]) if rows else None

    async def remove(self, record_id: str) -> bool:
        deleted = await self._write("remove", "DELETE FROM operations WHERE id = ?", (record_id,))
        return deleted > 0

    async def update(self, record_id: str, **patch: Any) -> OperationRecord | None:
        validate_patch(patch)
        if patch:
            if "status" in patch:
                patch["status"] = OperationStatus(patch["status"]).value
            assignments = ", ".join(f"{name} = ?" for name in patch)
            changed = await self._write(
                "update",
                f"UPDATE operations SET {assignments} WHERE id = ?",
                (*patch.values(), record_id),
            )
            if changed == 0:
                return None
        return await self.get(record_id)

    async def count(self, *, statuses: Iterable[OperationStatus] | None = None) -> int:
        if statuses is None:
            rows = await self._fetch("SELECT COUNT(*) AS n FROM operations", ())
        else:
            values = tuple(OperationStatus(s).value for s in statuses)
            if not values:
                return 0
            placeholders = ", ".join("?" for _ in values)
            rows = await self._fetch(
                f"SELECT COUNT(*) AS n FROM operations WHERE status IN ({placeholders})",
                values,
            )
        return int(rows[0]["n"]) if rows else 0

    # ========== Local id mapping ==========

    async def save_id_mapping(self, local_id: str, remote_id: str) -> None:
        await self._write(
            "save_id_mapping",
            "INSERT OR REPLACE INTO id_mappings (local_id, remote_id, mapped_at) VALUES (?, ?, ?)",
            (local_id, remote_id, utcnow().isoformat()),
        )

    async def get_id_mapping(self, local_id: str) -> str | None:
        rows = await self._fetch(
            "SELECT remote_id FROM id_mappings WHERE local_id = ?", (local_id,)
        )
        return str(rows[0]["remote_id"]) if rows else None

    async def get_id_mappings(self) -> dict[str, str]:
        rows = await self._fetch("SELECT local_id, remote_id FROM id_mappings", ())
        return {str(row["local_id"]): str(row["remote_id"]) for row in rows}

    # ========== Acknowledged idempotency keys ==========

    async def acknowledge(self, idempotency_key: str, remote_id: str | None = None) -> None:
        await self._write(
            "acknowledge",
            """INSERT OR REPLACE INTO acknowledgements
               (idempotency_key, remote_id, acknowledged_at) VALUES (?, ?, ?)""",
            (idempotency_key, remote_id, utcnow().isoformat()),
        )

    async def get_acknowledgement(self, idempotency_key: str) -> tuple[bool, str | None]:
        rows = await self._fetch(
            "SELECT remote_id FROM acknowledgements WHERE idempotency_key = ?",
            (idempotency_key,),
        )
        if not rows:
            return False, None
        remote_id = rows[0]["remote_id"]
        return True, str(remote_id) if remote_id is not None else None

    async def forget_acknowledgement(self, idempotency_key: str) -> None:
        await self._write(
            "forget_acknowledgement",
            "DELETE FROM acknowledgements WHERE idempotency_key = ?",
            (idempotency_key,),
        )

    async def prune_acknowledgements(self) -> int:
        return await self._write(
            "prune_acknowledgements",
            """DELETE FROM acknowledgements
               WHERE idempotency_key NOT IN (SELECT idempotency_key FROM operations)""",
            (),
        )

    async def prune_id_mappings(self, *, before: datetime, keep: Iterable[str] = ()) -> int:
        kept = tuple(keep)
        sql = "DELETE FROM id_mappings WHERE mapped_at < ?"
        if kept:
            placeholders = ", ".join("?" for _ in kept)
            sql += f" AND local_id NOT IN ({placeholders})"
        return await self._write("prune_id_mappings", sql, (before.isoformat(), *kept))


def _row_to_record(row: aiosqlite.Row) -> OperationRecord:
    """Convert a database row to an OperationRecord."""
    payload: dict[str, Any] = {}
    if row["payload"]:
        try:
            payload = json.loads(row["payload"])
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupt payload JSON for operation %s", row["id"])

    return OperationRecord(
        id=str(row["id"]),
        entity_type=str(row["entity_type"]),
        action=OperationAction(row["action"]),
        payload=payload,
        idempotency_key=str(row["idempotency_key"]),
        entity_id=str(row["entity_id"]),
        enqueued_at=datetime.fromisoformat(str(row["enqueued_at"])),
        attempt_count=int(row["attempt_count"] or 0),
        status=OperationStatus(row["status"]),
        last_error=row["last_error"],
        sequence=int(row["seq"]),
    )
