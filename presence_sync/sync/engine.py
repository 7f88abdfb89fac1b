"""
Reconciliation engine.

Converges the local store with the shared remote store, one cycle at a
time:

    IDLE -> AUTHORIZING -> UPLOADING_NEW -> UPLOADING_OWNED -> DOWNLOADING -> IDLE

Upload always happens before download so this device's own writes are in
the skip set before anything is fetched. Any phase may drop back to IDLE
early: signed out is a silent no-op, anything else is reported through the
status channel. Exceptions never escape sync_now().
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from enum import Enum

from ..auth.session_cache import SessionCache
from ..config import SyncConfig
from ..ids import is_local_id
from ..local.store import LocalStore
from ..logging_utils import SyncLoggerAdapter
from ..conflict import parse_timestamp
from ..models import EntityType
from ..remote.base import RemoteStore
from .context import CycleContext, GuardedRemote
from .download import Downloader
from .status import StatusListener, StatusPublisher, SyncResult, SyncStatus
from .upload import Uploader

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    """Phase of the current sync cycle."""

    IDLE = "idle"
    AUTHORIZING = "authorizing"
    UPLOADING_NEW = "uploading_new"
    UPLOADING_OWNED = "uploading_owned"
    DOWNLOADING = "downloading"


class ReconciliationEngine:
    """Local-first sync engine.

    Handles:
    - Debounced, non-overlapping sync cycles
    - Promotion of temporary ids and upload of local changes
    - Owner-gated remote deletes
    - Incremental download with timestamp-based merge
    - Periodic background sync

    Example:
        >>> engine = ReconciliationEngine(store, remote, sessions, config)
        >>> unsubscribe = engine.on_sync_status_change(print)
        >>> await engine.sync_now()
        >>> await engine.start_auto_sync()
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        sessions: SessionCache,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Local store to reconcile
            remote: Shared remote store
            sessions: Cached auth session accessor
            config: Intervals and timeouts
            clock: Monotonic clock used for the debounce and cycle timing
        """
        self.store = store
        self.remote = GuardedRemote(remote, (config or SyncConfig()).remote_timeout)
        self.sessions = sessions
        self.config = config or SyncConfig()
        self._clock = clock

        self._uploader = Uploader(store, self.remote)
        self._downloader = Downloader(store, self.remote)
        self._publisher = StatusPublisher()

        self._phase = SyncPhase.IDLE
        self._is_syncing = False
        self._last_cycle_end: float | None = None
        self._last_error: str | None = None
        self._last_result: SyncResult | None = None
        self._auto_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[bool] | None = None

    @property
    def state(self) -> SyncPhase:
        """Current phase (IDLE between cycles)."""
        return self._phase

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def last_result(self) -> SyncResult | None:
        """Outcome of the most recent cycle that got past authorization."""
        return self._last_result

    def on_sync_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status updates. Returns an unsubscribe callable."""
        return self._publisher.subscribe(listener)

    async def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_syncing=self._is_syncing,
            last_sync=await self._read_last_sync(),
            error=self._last_error,
        )

    # =========================================================================
    # Cycle
    # =========================================================================

    async def sync_now(self) -> bool:
        """Run one sync cycle.

        Returns:
            True if a cycle ran to completion; False if it was skipped
            (already running, debounced, signed out) or failed
        """
        if self._is_syncing:
            logger.debug("Sync already in progress, skipping")
            return False

        if self._last_cycle_end is not None:
            elapsed = self._clock() - self._last_cycle_end
            if elapsed < self.config.min_sync_interval:
                logger.debug(f"Sync requested {elapsed:.1f}s after the last one, skipping")
                return False

        self._is_syncing = True
        completed = False
        error: str | None = None
        try:
            self._publisher.publish(
                SyncStatus(is_syncing=True, last_sync=await self._read_last_sync())
            )
            completed = await self._run_cycle()
        except Exception as e:
            logger.exception(f"Sync cycle failed: {e}")
            error = str(e) or type(e).__name__
        finally:
            self._phase = SyncPhase.IDLE
            self._is_syncing = False
            self._last_cycle_end = self._clock()

        self._last_error = error
        self._publisher.publish(
            SyncStatus(is_syncing=False, last_sync=await self._read_last_sync(), error=error)
        )
        return completed

    async def _run_cycle(self) -> bool:
        started = self._clock()

        self._phase = SyncPhase.AUTHORIZING
        session = await self.sessions.get_session()
        if session is None:
            logger.info("Not authenticated, skipping sync")
            return False

        self.remote.reset_server_time()
        snapshot = await self.store.snapshot()
        cycle_id = secrets.token_hex(4)
        ctx = CycleContext(
            cycle_id=cycle_id,
            user_id=session.user_id,
            last_sync=await self.store.get_last_sync(),
            log=SyncLoggerAdapter(logger, {"cycle_id": cycle_id}),
            known_club_ids={
                c["id"] for c in snapshot[EntityType.CLUB] if not is_local_id(c["id"])
            },
        )
        ctx.log.info(f"Starting sync for user {ctx.user_id} (since {ctx.last_sync})")

        self._phase = SyncPhase.UPLOADING_NEW
        await self._uploader.upload_new_clubs(ctx)

        self._phase = SyncPhase.UPLOADING_OWNED
        # Failing to read the club list aborts the cycle
        owned = await self.remote.select(
            EntityType.CLUB.table, {"owner_id": ctx.user_id}, columns="id"
        )
        tombstoned = await self._uploader.process_pending_deletes(ctx)

        held = [
            c["id"] for c in (await self.store.snapshot())[EntityType.CLUB]
            if not is_local_id(c["id"])
        ]
        for club_id in held:
            try:
                await self._uploader.upload_club(ctx, club_id)
            except Exception as e:
                ctx.record_error(f"Failed to upload club {club_id}: {e}")

        self._phase = SyncPhase.DOWNLOADING
        club_ids = list(dict.fromkeys(held + [c["id"] for c in owned]))
        download_failed = False
        for club_id in club_ids:
            if club_id in tombstoned:
                continue
            try:
                await self._downloader.download_club(ctx, club_id)
            except Exception as e:
                download_failed = True
                ctx.record_error(f"Failed to download club {club_id}: {e}")

        if download_failed:
            # Keep the old watermark so the missed window is fetched again
            ctx.log.warning("Download incomplete, sync watermark not advanced")
        else:
            watermark = self._next_watermark(ctx.last_sync)
            if watermark is not None:
                await self.store.set_last_sync(watermark)

        duration_ms = int((self._clock() - started) * 1000)
        self._last_result = SyncResult(
            success=not ctx.errors,
            uploaded=ctx.uploaded,
            downloaded=ctx.downloaded,
            deleted=ctx.deleted,
            errors=list(ctx.errors),
            duration_ms=duration_ms,
        )
        ctx.log.info(
            f"Sync completed in {duration_ms}ms: {ctx.uploaded} uploaded, "
            f"{ctx.downloaded} downloaded, {ctx.deleted} deleted, {len(ctx.errors)} errors"
        )
        return True

    def _next_watermark(self, previous: str | None) -> str | None:
        """Latest server timestamp seen this cycle, or None to keep the previous one.

        Every row this device wrote or could have read during the cycle is
        stamped no later than this, so it bounds both the next download and
        which remote-only rows count as deleted here.
        """
        latest = self.remote.server_time
        if latest is None:
            return None
        before = parse_timestamp(previous)
        if before is not None and before >= latest:
            return None
        return latest.isoformat()

    async def _read_last_sync(self) -> str | None:
        try:
            return await self.store.get_last_sync()
        except Exception as e:
            logger.warning(f"Could not read last sync time: {e}")
            return None

    # =========================================================================
    # Background sync
    # =========================================================================

    async def start_auto_sync(self) -> None:
        """Start periodic background sync (first cycle right away)."""
        if self._auto_task is not None:
            logger.debug("Auto-sync already running")
            return

        logger.info(f"Starting auto-sync every {self.config.auto_sync_interval}s")
        self._auto_task = asyncio.create_task(self._auto_sync_loop())

    async def _auto_sync_loop(self) -> None:
        while True:
            # Own task: stopping the loop must not cut a cycle short
            self._cycle_task = asyncio.create_task(self.sync_now())
            await asyncio.shield(self._cycle_task)
            await asyncio.sleep(self.config.auto_sync_interval)

    async def stop_auto_sync(self) -> None:
        """Stop background sync, letting an in-flight cycle finish."""
        if self._auto_task is not None:
            self._auto_task.cancel()
            try:
                await self._auto_task
            except asyncio.CancelledError:
                pass
            self._auto_task = None
            logger.info("Auto-sync stopped")

        if self._cycle_task is not None:
            if not self._cycle_task.done():
                await self._cycle_task
            self._cycle_task = None
