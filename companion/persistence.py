"""Persistence port — named JSON blobs behind a small async interface.

The core never touches storage directly. Memory and chat history are saved
as whole documents under fixed keys (``memory_stm``, ``memory_ltm``,
``memory_keywords``, ``chat_history_{session}``, ``personas_user``,
``personas_ai``).
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import aiosqlite

from companion.config import settings

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS blobs (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_UPSERT = "INSERT OR REPLACE INTO blobs (key, value, updated_at) VALUES (?, ?, ?)"


@runtime_checkable
class Persistence(Protocol):
    """Protocol every storage adapter must satisfy."""

    async def load(self, key: str) -> Any | None:
        """Return the decoded JSON document stored under *key*, or None."""
        ...

    async def save(self, key: str, value: Any) -> None:
        """Store *value* (JSON-serializable) under *key*."""
        ...

    async def save_many(self, items: dict[str, Any]) -> None:
        """Store several documents as one logical snapshot."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if something was deleted."""
        ...


class SqlitePersistence:
    """Key/value JSON blobs in a single SQLite table.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    ``save_many`` writes all documents in one transaction so a snapshot is
    never half-written.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    # -- Port ------------------------------------------------------------------

    async def load(self, key: str) -> Any | None:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT value FROM blobs WHERE key = ?", (key,))
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            return None
        return json.loads(row[0])

    async def save(self, key: str, value: Any) -> None:
        await self.save_many({key: value})

    async def save_many(self, items: dict[str, Any]) -> None:
        now = datetime.now(UTC).isoformat()
        rows = [(key, json.dumps(value), now) for key, value in items.items()]
        db = await self._connect()
        try:
            await db.executemany(_UPSERT, rows)
            await db.commit()
            logger.debug("Saved %d blob(s): %s", len(rows), ", ".join(items))
        finally:
            await db.close()

    async def delete(self, key: str) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM blobs WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys, optionally filtered by prefix."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT key FROM blobs WHERE key LIKE ? ORDER BY key", (f"{prefix}%",)
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        finally:
            await db.close()


class InMemoryPersistence:
    """Dict-backed adapter. Documents are deep-copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def load(self, key: str) -> Any | None:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    async def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def save_many(self, items: dict[str, Any]) -> None:
        self._data.update(copy.deepcopy(items))

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
