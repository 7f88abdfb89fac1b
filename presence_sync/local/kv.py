"""
Key-value storage backends for the local store.

The local store keeps one key per entity collection (a JSON array of
records) plus a handful of scalar keys. Backends only need to move string
values in and out; multi-key writes must be atomic so that an id promotion
and the rewrite of every foreign key pointing at it land together.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Abstract key-value storage.

    All methods raise StorageError on I/O failure.
    """

    @abstractmethod
    async def get_many(self, keys: list[str]) -> dict[str, str | None]:
        """Read several keys in one call.

        Returns:
            Mapping of every requested key to its value, or None if absent
        """
        ...

    @abstractmethod
    async def set_many(self, items: dict[str, str], remove: list[str] | None = None) -> None:
        """Write several keys atomically.

        Args:
            items: Keys and values to write
            remove: Keys to delete in the same atomic write
        """
        ...

    @abstractmethod
    async def remove_many(self, keys: list[str]) -> None:
        """Remove several keys atomically. Missing keys are ignored."""
        ...

    async def get_item(self, key: str) -> str | None:
        return (await self.get_many([key]))[key]

    async def set_item(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def remove_item(self, key: str) -> None:
        await self.remove_many([key])

    async def close(self) -> None:
        """Release resources. Default: nothing to release."""
        return None


class MemoryKeyValueStorage(KeyValueStorage):
    """In-process storage, used by tests and ephemeral runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get_many(self, keys: list[str]) -> dict[str, str | None]:
        return {key: self.data.get(key) for key in keys}

    async def set_many(self, items: dict[str, str], remove: list[str] | None = None) -> None:
        self.data.update(items)
        for key in remove or []:
            self.data.pop(key, None)

    async def remove_many(self, keys: list[str]) -> None:
        for key in keys:
            self.data.pop(key, None)


class SQLiteKeyValueStorage(KeyValueStorage):
    """SQLite-backed storage: one row per key in a single ``kv`` table.

    Multi-key writes run inside one transaction.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = db_path
        self.conn: Any = None  # aiosqlite.Connection
        self._initialized = False

    @classmethod
    async def create(cls, db_path: str | Path = ":memory:") -> SQLiteKeyValueStorage:
        """Create and initialize the storage."""
        storage = cls(db_path)
        await storage.initialize()
        return storage

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        if self._initialized:
            return

        try:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = await aiosqlite.connect(str(self.db_path))
            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT NOT NULL PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated TEXT DEFAULT (datetime('now'))
                )
            """)
            await self.conn.commit()
            self._initialized = True
            logger.info(f"Local key-value store initialized: {self.db_path}")
        except (OSError, aiosqlite.Error) as e:
            raise StorageError("initialize", str(self.db_path), e) from e

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_conn(self, operation: str) -> Any:
        if self.conn is None:
            raise StorageError(operation, cause=RuntimeError("Not initialized"))
        return self.conn

    async def get_many(self, keys: list[str]) -> dict[str, str | None]:
        conn = self._require_conn("get_many")
        result: dict[str, str | None] = {key: None for key in keys}
        if not keys:
            return result

        placeholders = ",".join("?" for _ in keys)
        try:
            async with conn.execute(
                f"SELECT key, value FROM kv WHERE key IN ({placeholders})", tuple(keys)
            ) as cursor:
                async for key, value in cursor:
                    result[key] = value
        except aiosqlite.Error as e:
            raise StorageError("get_many", ",".join(keys), e) from e
        return result

    async def set_many(self, items: dict[str, str], remove: list[str] | None = None) -> None:
        conn = self._require_conn("set_many")
        if not items and not remove:
            return

        try:
            await conn.execute("BEGIN TRANSACTION")
            try:
                if items:
                    await conn.executemany(
                        "INSERT INTO kv (key, value, updated) VALUES (?, ?, datetime('now')) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                        "updated = excluded.updated",
                        list(items.items()),
                    )
                if remove:
                    await conn.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in remove])
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise
        except aiosqlite.Error as e:
            raise StorageError("set_many", ",".join(items), e) from e

    async def remove_many(self, keys: list[str]) -> None:
        conn = self._require_conn("remove_many")
        if not keys:
            return

        placeholders = ",".join("?" for _ in keys)
        try:
            await conn.execute(f"DELETE FROM kv WHERE key IN ({placeholders})", tuple(keys))
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError("remove_many", ",".join(keys), e) from e
