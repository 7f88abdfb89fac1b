"""
Shared test configuration and fixtures.

Provides in-memory stand-ins for the two external collaborators:
- FakeRemoteStore: a RemoteStore with server-assigned UUIDs, updated_at
  stamping, unique natural keys and ON DELETE CASCADE, like the Supabase
  schema
- FakeAuthProvider: an AuthProvider returning a fixed session (or raising)

Time is deterministic: every component shares a Ticker that hands out
strictly increasing ISO timestamps, and the engine's debounce runs on a
FakeMonotonic clock the test advances by hand.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from presence_sync.auth import AuthProvider, AuthSession, AuthUser, SessionCache
from presence_sync.config import SyncConfig
from presence_sync.conflict import parse_timestamp
from presence_sync.exceptions import RemoteError
from presence_sync.local import LocalStore, MemoryKeyValueStorage
from presence_sync.models import EntityType, logical_key
from presence_sync.remote import RemoteStore
from presence_sync.sync import ReconciliationEngine

logger = logging.getLogger(__name__)

USER_ID = "7a1c4f7e-0000-4000-8000-000000000001"
OTHER_USER_ID = "7a1c4f7e-0000-4000-8000-000000000002"


class Ticker:
    """Clock returning a strictly increasing ISO timestamp on every call."""

    def __init__(self, start: datetime | None = None, step: float = 1.0):
        self.current = start or datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
        self.step = timedelta(seconds=step)

    def __call__(self) -> str:
        self.current += self.step
        return self.current.isoformat()

    def peek(self) -> str:
        return self.current.isoformat()


class FakeMonotonic:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


# child table, foreign key column
_CASCADES: dict[str, tuple[tuple[str, str], ...]] = {
    "clubs": (("sessions", "club_id"), ("participants", "club_id")),
    "sessions": (("participant_sessions", "session_id"), ("attendance", "session_id")),
    "participants": (("participant_sessions", "participant_id"), ("attendance", "participant_id")),
    "participant_sessions": (),
    "attendance": (),
}


class FakeRemoteStore(RemoteStore):
    """In-memory RemoteStore behaving like the Supabase tables."""

    def __init__(self, clock: Ticker) -> None:
        self.clock = clock
        self.tables: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in _CASCADES}
        self.calls: list[tuple[str, str, Any]] = []
        self.failures: dict[tuple[str, str], Exception] = {}

    # Test helpers

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        """Insert a row directly, bypassing call tracking."""
        now = self.clock()
        stored = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **row}
        self.tables[table][stored["id"]] = stored
        return dict(stored)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [dict(r) for r in self.tables[table].values()]

    def fail(self, table: str, operation: str, error: Exception | None = None) -> None:
        self.failures[(table, operation)] = error or RemoteError(table, operation, status=500)

    def calls_of(self, operation: str, table: str | None = None) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == operation and (table is None or c[1] == table)]

    def _track(self, operation: str, table: str, arg: Any) -> None:
        self.calls.append((operation, table, arg))
        error = self.failures.get((table, operation))
        if error is not None:
            raise error

    # RemoteStore

    async def select(self, table, filters=None, since=None, columns="*", limit=None):
        self._track("select", table, filters)
        result = [r for r in self.tables[table].values() if _matches(r, filters or {})]
        if since is not None:
            since_ts = parse_timestamp(since)
            result = [r for r in result if parse_timestamp(r.get("updated_at")) >= since_ts]
        if limit is not None:
            result = result[:limit]
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            return [{c: r.get(c) for c in wanted} for r in result]
        return [dict(r) for r in result]

    async def insert(self, table, row):
        self._track("insert", table, row)
        return self._insert(table, dict(row))

    async def update(self, table, row_id, changes):
        self._track("update", table, (row_id, changes))
        existing = self.tables[table].get(row_id)
        if existing is None:
            return None
        existing.update(changes)
        existing["updated_at"] = self.clock()
        return dict(existing)

    async def upsert(self, table, row):
        self._track("upsert", table, row)
        if row.get("id") in self.tables[table]:
            existing = self.tables[table][row["id"]]
            existing.update(row)
            existing["updated_at"] = self.clock()
            return dict(existing)
        return self._insert(table, dict(row))

    async def delete(self, table, filters):
        self._track("delete", table, filters)
        doomed = [r["id"] for r in self.tables[table].values() if _matches(r, filters)]
        for row_id in doomed:
            self._cascade_delete(table, row_id)

    def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        entity = EntityType(table)
        key = logical_key(entity, row)
        if key is not None:
            for existing in self.tables[table].values():
                if logical_key(entity, existing) == key:
                    raise RemoteError(table, "insert", status=409, detail="duplicate key")
        now = self.clock()
        row.setdefault("id", str(uuid.uuid4()))
        row["created_at"] = now
        row["updated_at"] = now
        self.tables[table][row["id"]] = row
        return dict(row)

    def _cascade_delete(self, table: str, row_id: str) -> None:
        if self.tables[table].pop(row_id, None) is None:
            return
        for child, column in _CASCADES[table]:
            for child_id in [r["id"] for r in self.tables[child].values() if r.get(column) == row_id]:
                self._cascade_delete(child, child_id)


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    for column, value in filters.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            if row.get(column) not in value:
                return False
        elif row.get(column) != value:
            return False
    return True


def make_session(user_id: str = USER_ID, email: str = "owner@example.com") -> AuthSession:
    return AuthSession(
        access_token=f"access-{user_id}",
        refresh_token=f"refresh-{user_id}",
        user=AuthUser(id=user_id, email=email),
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


class FakeAuthProvider(AuthProvider):
    """Auth provider returning a fixed session, or raising a set error."""

    def __init__(self, session: AuthSession | None = None) -> None:
        self.session = session
        self.error: Exception | None = None
        self.calls = 0
        self.sign_outs: list[str] = []

    async def get_session(self) -> AuthSession | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.session

    async def sign_out(self, scope: str = "local") -> None:
        self.sign_outs.append(scope)
        self.session = None


@pytest.fixture
def ticker() -> Ticker:
    return Ticker()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def kv() -> MemoryKeyValueStorage:
    return MemoryKeyValueStorage()


@pytest.fixture
def store(kv: MemoryKeyValueStorage, ticker: Ticker) -> LocalStore:
    return LocalStore(kv, clock=ticker)


@pytest.fixture
def remote(ticker: Ticker) -> FakeRemoteStore:
    return FakeRemoteStore(ticker)


@pytest.fixture
def auth() -> FakeAuthProvider:
    return FakeAuthProvider(make_session())


@pytest.fixture
def sessions(auth: FakeAuthProvider) -> SessionCache:
    return SessionCache(auth)


@pytest.fixture
def sync_config(tmp_path) -> SyncConfig:
    return SyncConfig(data_dir=tmp_path, min_sync_interval=5.0, remote_timeout=2.0)


@pytest.fixture
def engine(
    store: LocalStore,
    remote: FakeRemoteStore,
    sessions: SessionCache,
    sync_config: SyncConfig,
    monotonic: FakeMonotonic,
) -> ReconciliationEngine:
    return ReconciliationEngine(store, remote, sessions, sync_config, clock=monotonic)


class FakeSupabase:
    """Records HTTP requests and answers with canned responses.

    ``responses`` maps (method, path) to (status, JSON body); anything not
    listed gets 200 and an empty list.
    """

    def __init__(self) -> None:
        self.url = ""
        self.requests: list[dict[str, Any]] = []
        self.responses: dict[tuple[str, str], tuple[int, Any]] = {}

    def respond(self, method: str, path: str, body: Any, status: int = 200) -> None:
        self.responses[(method, path)] = (status, body)

    async def handle(self, request: web.Request) -> web.Response:
        text = await request.text()
        self.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "query": list(request.query.items()),
                "headers": {k.lower(): v for k, v in request.headers.items()},
                "json": json.loads(text) if text else None,
            }
        )
        status, body = self.responses.get((request.method, request.path), (200, []))
        return web.json_response(body, status=status)


@pytest.fixture
async def supabase():
    """A local HTTP server standing in for a Supabase project."""
    fake = FakeSupabase()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.url = str(server.make_url("/"))
    yield fake
    await server.close()
