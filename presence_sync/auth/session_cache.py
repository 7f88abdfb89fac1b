"""
Cached access to the current auth session.

Several components ask "who is signed in?" in quick succession (the UI, the
sync engine, every remote call). Asking the auth provider each time means
re-reading and possibly refreshing tokens, so the session is cached for a
short TTL and concurrent callers share a single in-flight fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from ..exceptions import is_invalid_refresh_token
from .provider import AuthProvider
from .types import AuthSession

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5.0


class SessionCache:
    """TTL cache with single-flight fetch in front of an AuthProvider.

    - A session fetched less than ``ttl`` seconds ago is returned as is.
    - Otherwise callers join the fetch already in flight, or start one.
    - A dead refresh credential clears the cache and signs out locally.
    - Any other failure yields None; nothing is retried here.

    Args:
        provider: Auth provider producing sessions
        ttl: Seconds a fetched session is served from cache
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        provider: AuthProvider,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.ttl = ttl
        self._clock = clock
        self._session: AuthSession | None = None
        self._fetched_at: float | None = None
        self._inflight: asyncio.Task[AuthSession | None] | None = None

    async def get_session(self) -> AuthSession | None:
        """Get the current session (cached)."""
        if self._session is not None and self._fetched_at is not None:
            if self._clock() - self._fetched_at < self.ttl:
                return self._session

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._fetch())

        # A cancelled caller must not cancel the fetch other callers await
        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> AuthSession | None:
        try:
            session = await self.provider.get_session()
        except Exception as e:
            if is_invalid_refresh_token(e):
                logger.warning(f"Refresh token rejected, clearing local session: {e}")
                await self._clear_invalid_session()
            else:
                logger.error(f"Failed to get auth session: {e}")
            return None
        finally:
            self._inflight = None

        self._session = session
        self._fetched_at = self._clock()
        return session

    async def _clear_invalid_session(self) -> None:
        self.invalidate_cache()
        try:
            await self.provider.sign_out(scope="local")
        except Exception as e:
            logger.warning(f"Local sign-out after invalid refresh token failed: {e}")

    def invalidate_cache(self) -> None:
        """Forget the cached session (call after sign in / sign out)."""
        self._session = None
        self._fetched_at = None

    async def is_authenticated(self) -> bool:
        return await self.get_session() is not None

    async def get_user_id(self) -> str | None:
        session = await self.get_session()
        return session.user_id if session else None

    async def get_access_token(self) -> str | None:
        session = await self.get_session()
        return session.access_token if session else None
