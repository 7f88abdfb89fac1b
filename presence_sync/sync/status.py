"""
Sync status reporting.

The UI learns about sync progress and trouble only through this channel:
listeners register on a StatusPublisher and get back an unsubscribe
callable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot published at the start and end of every sync cycle."""

    is_syncing: bool
    last_sync: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"is_syncing": self.is_syncing, "last_sync": self.last_sync, "error": self.error}


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    success: bool
    uploaded: int = 0
    downloaded: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "deleted": self.deleted,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


StatusListener = Callable[[SyncStatus], None]


class StatusPublisher:
    """Explicit observer registry for sync status."""

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, status: SyncStatus) -> None:
        # Snapshot: listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Sync status listener failed: {e}")

    def __len__(self) -> int:
        return len(self._listeners)
