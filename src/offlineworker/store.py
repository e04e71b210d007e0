"""Durable structured store for cached resources and the version record.

All store operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as a miss by callers),
write failures roll back, are logged, and return ``False``. A store that
cannot be opened behaves like an empty store that rejects writes.
Infrastructure errors never cross the StructuredStore class boundary.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import structlog

from offlineworker.errors import ErrorCode
from offlineworker.models.resource import Resource, VersionRecord

log = structlog.get_logger()

SCHEMA_VERSION = 2
VERSION_KEY = "current"

_CREATE_RESOURCES_TABLE = """
CREATE TABLE IF NOT EXISTS resources (
    url         TEXT PRIMARY KEY,
    body        BLOB NOT NULL,
    status      INTEGER NOT NULL,
    status_text TEXT NOT NULL DEFAULT '',
    headers     TEXT NOT NULL DEFAULT '{}',
    stored_at   TEXT NOT NULL
)
"""

_CREATE_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS version (
    key       TEXT PRIMARY KEY,
    version   TEXT NOT NULL,
    timestamp TEXT NOT NULL
)
"""


class StructuredStore:
    """SQLite-backed resource and version store implementing StoreProtocol."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        # One transaction at a time on the shared connection.
        self._write_lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection | None:
        """Open the database on first use and provision its schema.

        Returns ``None`` if the database cannot be opened. The next call
        tries again.
        """
        async with self._open_lock:
            if self._db is not None:
                return self._db
            db: aiosqlite.Connection | None = None
            try:
                if self._db_path != ":memory:":
                    Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                db = await aiosqlite.connect(str(Path(self._db_path).expanduser()))
                await self._provision(db)
            except (aiosqlite.Error, OSError):
                log.warning(
                    "store_open_error",
                    code=ErrorCode.STORE_OPEN_FAILED,
                    path=self._db_path,
                    exc_info=True,
                )
                if db is not None:
                    with suppress(aiosqlite.Error):
                        await db.close()
                return None
            self._db = db
            return db

    async def _provision(self, db: aiosqlite.Connection) -> None:
        """Create tables if absent and record the schema version. Idempotent."""
        await db.execute(_CREATE_RESOURCES_TABLE)
        await db.execute(_CREATE_VERSION_TABLE)
        cursor = await db.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        if row is None or row[0] < SCHEMA_VERSION:
            await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            log.info("store_schema_provisioned", path=self._db_path, schema_version=SCHEMA_VERSION)
        await db.commit()

    async def _rollback(self, db: aiosqlite.Connection) -> None:
        with suppress(aiosqlite.Error):
            await db.rollback()

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def get(self, url: str) -> Resource | None:
        """Read a resource. Returns ``None`` on miss or read failure."""
        db = await self._connection()
        if db is None:
            return None
        try:
            cursor = await db.execute(
                "SELECT url, body, status, status_text, headers FROM resources WHERE url = ?",
                (url,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            return Resource(
                url=row[0],
                body=bytes(row[1]),
                status=row[2],
                status_text=row[3],
                headers=json.loads(row[4]),
            )
        except (aiosqlite.Error, ValueError):
            log.warning(
                "store_read_error",
                code=ErrorCode.TRANSACTION_FAILED,
                key=f"resource:{url}",
                exc_info=True,
            )
            return None

    async def put(self, resource: Resource) -> bool:
        """Write a resource, replacing any entry for the same URL.

        Returns ``True`` once committed. Non-fatal on failure.
        """
        db = await self._connection()
        if db is None:
            return False
        async with self._write_lock:
            try:
                await db.execute(
                    "INSERT OR REPLACE INTO resources "
                    "(url, body, status, status_text, headers, stored_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        resource.url,
                        resource.body,
                        resource.status,
                        resource.status_text,
                        json.dumps(resource.headers),
                        datetime.now(UTC).isoformat(),
                    ),
                )
                await db.commit()
            except aiosqlite.Error:
                await self._rollback(db)
                log.warning(
                    "store_write_error",
                    code=ErrorCode.TRANSACTION_FAILED,
                    key=f"resource:{resource.url}",
                    exc_info=True,
                )
                return False
        return True

    # ------------------------------------------------------------------
    # Version record
    # ------------------------------------------------------------------

    async def get_version_record(self) -> VersionRecord | None:
        """Read the singleton version record. ``None`` if never set or unreadable."""
        db = await self._connection()
        if db is None:
            return None
        try:
            cursor = await db.execute(
                "SELECT version, timestamp FROM version WHERE key = ?", (VERSION_KEY,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return VersionRecord(version=row[0], timestamp=datetime.fromisoformat(row[1]))
        except (aiosqlite.Error, ValueError):
            log.warning(
                "store_read_error",
                code=ErrorCode.TRANSACTION_FAILED,
                key="version",
                exc_info=True,
            )
            return None

    async def get_version(self) -> str | None:
        record = await self.get_version_record()
        return record.version if record is not None else None

    async def put_version(self, version: str) -> bool:
        """Overwrite the singleton version record. Non-fatal on failure."""
        db = await self._connection()
        if db is None:
            return False
        async with self._write_lock:
            try:
                await db.execute(
                    "INSERT OR REPLACE INTO version (key, version, timestamp) VALUES (?, ?, ?)",
                    (VERSION_KEY, version, datetime.now(UTC).isoformat()),
                )
                await db.commit()
            except aiosqlite.Error:
                await self._rollback(db)
                log.warning(
                    "store_write_error",
                    code=ErrorCode.TRANSACTION_FAILED,
                    key="version",
                    exc_info=True,
                )
                return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
