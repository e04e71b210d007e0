"""Generation-tagged request/response cache.

Every deployment gets its own generation; the whole generation is dropped
when the deployment is superseded. Unlike the structured store, this tier
raises ``WorkerError`` on database failures and leaves the policy to the
caller: installation must fail loudly, the interceptor treats a failure as
a miss.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import structlog

from offlineworker.errors import ErrorCode, WorkerError
from offlineworker.models.resource import Resource

if TYPE_CHECKING:
    from collections.abc import Iterable

    from offlineworker.network import Network

log = structlog.get_logger()

_CREATE_GENERATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS generations (
    name       TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
)
"""

_CREATE_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS entries (
    generation  TEXT NOT NULL,
    url         TEXT NOT NULL,
    body        BLOB NOT NULL,
    status      INTEGER NOT NULL,
    status_text TEXT NOT NULL DEFAULT '',
    headers     TEXT NOT NULL DEFAULT '{}',
    stored_at   TEXT NOT NULL,
    PRIMARY KEY (generation, url)
)
"""

_SELECT_ENTRY = "SELECT url, body, status, status_text, headers FROM entries"

# Entries are stored for GET and answer HEAD as well.
MATCH_METHODS = frozenset({"GET", "HEAD"})


def _transaction_error(action: str, exc: Exception) -> WorkerError:
    return WorkerError(
        code=ErrorCode.TRANSACTION_FAILED,
        message=f"Cache set {action} failed: {exc}",
        recoverable=True,
    )


class CacheGeneration:
    """Handle to one named generation, bound to its owning cache set."""

    def __init__(self, cache_set: EphemeralCacheSet, name: str) -> None:
        self._cache_set = cache_set
        self.name = name

    async def match(self, request: httpx.Request) -> httpx.Response | None:
        return await self._cache_set.match(request, generation=self.name)

    async def put(self, request: httpx.Request, response: httpx.Response) -> None:
        await self._cache_set.put(request, response, self.name)

    async def add_all(self, urls: Iterable[str]) -> None:
        await self._cache_set.add_all(urls, self.name)

    async def keys(self) -> list[str]:
        return await self._cache_set.keys(self.name)


class EphemeralCacheSet:
    """SQLite-backed set of cache generations implementing CacheSetProtocol."""

    def __init__(self, db_path: str, network: Network) -> None:
        self._db_path = db_path
        self._network = network
        self._db: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        # One transaction at a time on the shared connection.
        self._write_lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        async with self._open_lock:
            if self._db is not None:
                return self._db
            try:
                if self._db_path != ":memory:":
                    Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                db = await aiosqlite.connect(str(Path(self._db_path).expanduser()))
                await db.execute(_CREATE_GENERATIONS_TABLE)
                await db.execute(_CREATE_ENTRIES_TABLE)
                await db.commit()
            except (aiosqlite.Error, OSError) as exc:
                raise WorkerError(
                    code=ErrorCode.STORE_OPEN_FAILED,
                    message=f"Cannot open cache set at {self._db_path}: {exc}",
                    recoverable=True,
                ) from exc
            self._db = db
            return db

    async def _ensure_generation(self, db: aiosqlite.Connection, name: str) -> None:
        await db.execute(
            "INSERT OR IGNORE INTO generations (name, created_at) VALUES (?, ?)",
            (name, datetime.now(UTC).isoformat()),
        )

    async def _write(
        self, db: aiosqlite.Connection, generation: str, resources: list[Resource]
    ) -> None:
        """Write resources into a generation as a single transaction."""
        now = datetime.now(UTC).isoformat()
        async with self._write_lock:
            try:
                await self._ensure_generation(db, generation)
                await db.executemany(
                    "INSERT OR REPLACE INTO entries "
                    "(generation, url, body, status, status_text, headers, stored_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            generation,
                            resource.url,
                            resource.body,
                            resource.status,
                            resource.status_text,
                            json.dumps(resource.headers),
                            now,
                        )
                        for resource in resources
                    ],
                )
                await db.commit()
            except aiosqlite.Error as exc:
                with suppress(aiosqlite.Error):
                    await db.rollback()
                raise _transaction_error("write", exc) from exc

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    async def open(self, generation: str) -> CacheGeneration:
        """Return a handle to ``generation``, creating it if absent."""
        db = await self._connection()
        async with self._write_lock:
            try:
                await self._ensure_generation(db, generation)
                await db.commit()
            except aiosqlite.Error as exc:
                with suppress(aiosqlite.Error):
                    await db.rollback()
                raise _transaction_error("open", exc) from exc
        return CacheGeneration(self, generation)

    async def list_generations(self) -> list[str]:
        """All generation names, oldest first."""
        db = await self._connection()
        try:
            cursor = await db.execute("SELECT name FROM generations ORDER BY rowid")
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error as exc:
            raise _transaction_error("list", exc) from exc

    async def delete(self, generation: str) -> bool:
        """Drop a whole generation atomically. Returns whether it existed."""
        db = await self._connection()
        async with self._write_lock:
            try:
                await db.execute("DELETE FROM entries WHERE generation = ?", (generation,))
                cursor = await db.execute("DELETE FROM generations WHERE name = ?", (generation,))
                existed = cursor.rowcount > 0
                await db.commit()
            except aiosqlite.Error as exc:
                with suppress(aiosqlite.Error):
                    await db.rollback()
                raise _transaction_error("delete", exc) from exc
        return existed

    async def keys(self, generation: str) -> list[str]:
        """URLs stored under ``generation``."""
        db = await self._connection()
        try:
            cursor = await db.execute(
                "SELECT url FROM entries WHERE generation = ? ORDER BY url", (generation,)
            )
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error as exc:
            raise _transaction_error("keys", exc) from exc

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def match(
        self, request: httpx.Request, generation: str | None = None
    ) -> httpx.Response | None:
        """Return a stored response for an equivalent GET or HEAD request, or ``None``.

        Without ``generation`` every generation is searched, oldest first.
        """
        if request.method not in MATCH_METHODS:
            return None
        url = self._network.normalize(str(request.url))
        db = await self._connection()
        try:
            if generation is None:
                cursor = await db.execute(
                    "SELECT e.url, e.body, e.status, e.status_text, e.headers FROM entries e "
                    "JOIN generations g ON g.name = e.generation "
                    "WHERE e.url = ? ORDER BY g.rowid LIMIT 1",
                    (url,),
                )
            else:
                cursor = await db.execute(
                    f"{_SELECT_ENTRY} WHERE generation = ? AND url = ?", (generation, url)
                )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise _transaction_error("match", exc) from exc
        if row is None:
            return None

        resource = Resource(
            url=row[0],
            body=bytes(row[1]),
            status=row[2],
            status_text=row[3],
            headers=json.loads(row[4]),
        )
        return resource.to_response(request)

    async def put(self, request: httpx.Request, response: httpx.Response, generation: str) -> None:
        """Store a copy of ``response`` for ``request`` under ``generation``."""
        if request.method != "GET":
            raise WorkerError(
                code=ErrorCode.TRANSACTION_FAILED,
                message=f"Only GET requests can be cached, got {request.method}",
            )
        url = self._network.normalize(str(request.url))
        db = await self._connection()
        await self._write(db, generation, [Resource.from_response(url, response)])

    async def add_all(self, urls: Iterable[str], generation: str) -> None:
        """Fetch every URL and store all responses, or store nothing.

        Raises WorkerError(INSTALL_BATCH_FAILED) if any fetch fails or
        returns a non-2xx status.
        """
        targets = [self._network.normalize(url) for url in urls]
        results = await asyncio.gather(
            *(self._network.fetch(url) for url in targets), return_exceptions=True
        )

        resources: list[Resource] = []
        for url, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                raise WorkerError(
                    code=ErrorCode.INSTALL_BATCH_FAILED,
                    message=f"Failed to fetch {url}: {result}",
                    recoverable=True,
                ) from result
            if not result.is_success:
                raise WorkerError(
                    code=ErrorCode.INSTALL_BATCH_FAILED,
                    message=f"HTTP {result.status_code} fetching {url}",
                    recoverable=True,
                )
            resources.append(Resource.from_response(url, result))

        db = await self._connection()
        await self._write(db, generation, resources)
        log.info("cacheset_batch_stored", generation=generation, count=len(resources))

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
