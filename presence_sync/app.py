"""
Composition root.

Wires the concrete components together:

    SQLite key-value store -> LocalStore
    GoTrue provider        -> SessionCache
    PostgREST client       -> ReconciliationEngine

Nothing here is a module-level singleton; every caller gets its own stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import aiohttp

from .auth.gotrue import GoTrueAuthProvider
from .auth.session_cache import SessionCache
from .config import SyncConfig
from .local.kv import KeyValueStorage, SQLiteKeyValueStorage
from .local.store import LocalStore
from .remote.postgrest import PostgrestRemoteStore
from .sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncStack:
    """A fully wired set of components.

    ``engine``, ``sessions`` and ``auth`` are None when no Supabase project
    is configured; the local store works regardless.
    """

    config: SyncConfig
    storage: KeyValueStorage
    store: LocalStore
    auth: GoTrueAuthProvider | None = None
    sessions: SessionCache | None = None
    engine: ReconciliationEngine | None = None
    http: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def close(self) -> None:
        """Stop background sync and release every resource."""
        if self.engine is not None:
            await self.engine.stop_auto_sync()
        if self.http is not None and not self.http.closed:
            await self.http.close()
        await self.storage.close()

    async def __aenter__(self) -> SyncStack:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


async def create_sync_stack(config: SyncConfig | None = None) -> SyncStack:
    """Create and initialize all components.

    Args:
        config: Configuration (default: environment)

    Returns:
        Initialized SyncStack; close it when done
    """
    config = config or SyncConfig.from_environment()

    storage = await SQLiteKeyValueStorage.create(config.db_path)
    store = LocalStore(storage)
    stack = SyncStack(config=config, storage=storage, store=store)

    if not config.remote_enabled:
        logger.info("No Supabase project configured, running local-only")
        return stack

    http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=config.remote_timeout))
    auth = GoTrueAuthProvider(
        config.supabase_url,
        config.supabase_key,
        config.token_path,
        http=http,
        timeout=config.remote_timeout,
    )
    sessions = SessionCache(auth, ttl=config.session_cache_ttl)
    remote = PostgrestRemoteStore(
        config.supabase_url,
        config.supabase_key,
        sessions.get_access_token,
        http=http,
        timeout=config.remote_timeout,
    )

    stack.http = http
    stack.auth = auth
    stack.sessions = sessions
    stack.engine = ReconciliationEngine(store, remote, sessions, config)
    logger.debug(f"Sync stack ready: {config.supabase_url}, data in {config.data_dir}")
    return stack
