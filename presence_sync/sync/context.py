"""
Per-cycle state and guarded remote access for the sync engine.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from ..conflict import is_newer, record_timestamp
from ..exceptions import RemoteError
from ..ids import is_local_id, remote_ids
from ..logging_utils import SyncLoggerAdapter
from ..remote.base import Filters, RemoteStore

T = TypeVar("T")


@dataclass
class CycleContext:
    """Everything one sync cycle accumulates.

    Attributes:
        cycle_id: Short id stamped on every log line of the cycle
        user_id: Signed-in user
        last_sync: Watermark of the previous successful cycle: the latest
            server timestamp that cycle saw
        known_club_ids: Clubs held locally with a remote id when the cycle
            started; only these get remote deletes and incremental download
        skip_ids: Remote ids uploaded during this cycle (not re-downloaded)
    """

    cycle_id: str
    user_id: str
    last_sync: str | None
    log: SyncLoggerAdapter
    known_club_ids: set[str] = field(default_factory=set)
    skip_ids: set[str] = field(default_factory=set)
    uploaded: int = 0
    downloaded: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)

    def for_club(self, club_id: str) -> SyncLoggerAdapter:
        return self.log.for_club(club_id)

    def record_error(self, message: str) -> None:
        self.log.error(message)
        self.errors.append(message)

    def deletable(self, remote_row: dict[str, Any]) -> bool:
        """Whether a remote-only row may be deleted remotely by the owner.

        A row absent locally was deleted here only if this device could
        have seen it, that is, the row is not newer than the previous
        cycle. Newer rows were created elsewhere and get downloaded instead.
        """
        if self.last_sync is None:
            return False
        return is_newer(remote_row, {"updated_at": self.last_sync}) is False


class GuardedRemote:
    """RemoteStore calls with a per-call timeout.

    Deletes never carry temporary ids: they are filtered out of membership
    filters, and a scalar temporary id turns the delete into a no-op.

    Every row the server returns is checked for its timestamp, and the
    latest one is kept in ``server_time``, which becomes the sync watermark.
    """

    def __init__(self, remote: RemoteStore, timeout: float) -> None:
        self.remote = remote
        self.timeout = timeout
        self.server_time: datetime | None = None

    def reset_server_time(self) -> None:
        self.server_time = None

    def _observe(self, rows: list[dict[str, Any]]) -> None:
        for row in rows:
            stamp = record_timestamp(row)
            if stamp is not None and (self.server_time is None or stamp > self.server_time):
                self.server_time = stamp

    async def _call(self, awaitable: Awaitable[T], table: str, operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except TimeoutError as e:
            raise RemoteError(table, operation, detail=f"timed out after {self.timeout}s") from e

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        since: str | None = None,
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self._call(
            self.remote.select(table, filters, since=since, columns=columns, limit=limit),
            table,
            "select",
        )
        self._observe(rows)
        return rows

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        server_row = await self._call(self.remote.insert(table, row), table, "insert")
        self._observe([server_row])
        return server_row

    async def update(
        self, table: str, row_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        server_row = await self._call(self.remote.update(table, row_id, changes), table, "update")
        if server_row is not None:
            self._observe([server_row])
        return server_row

    async def upsert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        server_row = await self._call(self.remote.upsert(table, row), table, "upsert")
        self._observe([server_row])
        return server_row

    async def delete(self, table: str, filters: Filters) -> bool:
        """Delete remotely. Returns False when nothing remote was addressed."""
        cleaned: Filters = {}
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set, frozenset)):
                value = remote_ids([str(v) for v in value])
                if not value:
                    return False
            elif column.endswith("id") and is_local_id(value):
                return False
            cleaned[column] = value
        await self._call(self.remote.delete(table, cleaned), table, "delete")
        return True
