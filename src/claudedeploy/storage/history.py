"""SQLite history of installation attempts."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from claudedeploy.storage.models import InstallationRecord, InstallKind, InstallStatus
from claudedeploy.utils.formatting import sanitize_request

logger = logging.getLogger(__name__)


def new_record(kind: InstallKind, request: dict) -> InstallationRecord:
    return InstallationRecord(
        id=uuid.uuid4().hex,
        kind=kind,
        status=InstallStatus.PENDING,
        timestamp=datetime.now(timezone.utc).isoformat(),
        config=sanitize_request(request),
    )


class InstallationHistory:
    """Append-only store of installation records."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the database and create tables."""
        resolved = Path(self.db_path).expanduser().resolve()
        resolved.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(resolved))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode = WAL")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS installations (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL CHECK(kind IN ('local', 'remote')),
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK(status IN ('pending', 'success', 'failed')),
                timestamp TEXT NOT NULL,
                config TEXT DEFAULT '{}',
                message TEXT DEFAULT ''
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_installations_timestamp ON installations(timestamp)")
        await self._db.commit()
        logger.info("History database opened: %s", resolved)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("History database closed")

    async def __aenter__(self) -> InstallationHistory:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("History database not opened. Call open() first.")
        return self._db

    async def start(self, kind: InstallKind, request: dict) -> InstallationRecord:
        """Record a new pending attempt."""
        record = new_record(kind, request)
        db = self._conn()
        await db.execute(
            "INSERT INTO installations (id, kind, status, timestamp, config) VALUES (?, ?, ?, ?, ?)",
            (record.id, record.kind.value, record.status.value, record.timestamp, json.dumps(record.config)),
        )
        await db.commit()
        return record

    async def finish(self, record: InstallationRecord, status: InstallStatus, message: str = "") -> None:
        """Set the terminal status of an attempt."""
        record.status = status
        record.message = message
        try:
            db = self._conn()
            await db.execute(
                "UPDATE installations SET status = ?, message = ? WHERE id = ?",
                (status.value, message, record.id),
            )
            await db.commit()
        except Exception:
            logger.exception("Failed to update installation history")

    async def recent(self, limit: int = 10) -> list[InstallationRecord]:
        """Most recent attempts first."""
        db = self._conn()
        cursor = await db.execute(
            "SELECT id, kind, status, timestamp, config, message FROM installations "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [
            InstallationRecord(
                id=row["id"],
                kind=InstallKind(row["kind"]),
                status=InstallStatus(row["status"]),
                timestamp=row["timestamp"],
                config=json.loads(row["config"] or "{}"),
                message=row["message"] or "",
            )
            for row in rows
        ]
