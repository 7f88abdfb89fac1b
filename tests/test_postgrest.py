"""Tests for the Supabase PostgREST remote store."""

from __future__ import annotations

import pytest

from presence_sync.exceptions import NotAuthenticatedError, RemoteError
from presence_sync.remote import PostgrestRemoteStore
from presence_sync.remote.postgrest import encode_filters


async def token() -> str:
    return "user-access-token"


@pytest.fixture
async def rest(supabase):
    store = PostgrestRemoteStore(supabase.url, "anon-key", token, timeout=5.0)
    yield store
    await store.close()


class TestEncodeFilters:
    def test_equality(self):
        assert encode_filters({"club_id": "c1"}) == [("club_id", "eq.c1")]

    def test_membership_is_sorted_and_quoted(self):
        assert encode_filters({"id": ["b", "a"]}) == [("id", 'in.("a","b")')]

    def test_null_and_bool(self):
        assert encode_filters({"owner_id": None, "is_long_term_sick": True}) == [
            ("owner_id", "is.null"),
            ("is_long_term_sick", "eq.true"),
        ]

    def test_no_filters(self):
        assert encode_filters(None) == []


class TestRequests:
    async def test_select(self, rest, supabase):
        supabase.respond("GET", "/rest/v1/sessions", [{"id": "s1", "club_id": "c1"}])

        rows = await rest.select(
            "sessions", {"club_id": "c1"}, since="2024-03-01T00:00:00+00:00", limit=10
        )

        assert rows == [{"id": "s1", "club_id": "c1"}]
        [request] = supabase.requests
        assert request["method"] == "GET"
        assert request["query"] == [
            ("select", "*"),
            ("club_id", "eq.c1"),
            ("updated_at", "gte.2024-03-01T00:00:00+00:00"),
            ("limit", "10"),
        ]
        assert request["headers"]["apikey"] == "anon-key"
        assert request["headers"]["authorization"] == "Bearer user-access-token"

    async def test_select_membership(self, rest, supabase):
        await rest.select("attendance", {"session_id": ["s2", "s1"]}, columns="id")

        assert supabase.requests[0]["query"] == [
            ("select", "id"),
            ("session_id", 'in.("s1","s2")'),
        ]

    async def test_empty_membership_skips_request(self, rest, supabase):
        assert await rest.select("attendance", {"session_id": []}) == []
        await rest.delete("attendance", {"session_id": []})

        assert supabase.requests == []

    async def test_insert_returns_server_row(self, rest, supabase):
        supabase.respond(
            "POST", "/rest/v1/clubs", [{"id": "srv-1", "name": "Chess Club"}], status=201
        )

        row = await rest.insert("clubs", {"name": "Chess Club", "owner_id": "u1"})

        assert row == {"id": "srv-1", "name": "Chess Club"}
        request = supabase.requests[0]
        assert request["json"] == {"name": "Chess Club", "owner_id": "u1"}
        assert request["headers"]["prefer"] == "return=representation"

    async def test_update(self, rest, supabase):
        supabase.respond("PATCH", "/rest/v1/participants", [{"id": "p1", "last_name": "B"}])

        row = await rest.update("participants", "p1", {"last_name": "B"})

        assert row == {"id": "p1", "last_name": "B"}
        assert supabase.requests[0]["query"] == [("id", "eq.p1")]

    async def test_update_of_missing_row(self, rest, supabase):
        assert await rest.update("participants", "gone", {"last_name": "B"}) is None

    async def test_upsert_merges_duplicates(self, rest, supabase):
        supabase.respond("POST", "/rest/v1/sessions", [{"id": "s1"}])

        await rest.upsert("sessions", {"id": "s1", "club_id": "c1"})

        prefer = supabase.requests[0]["headers"]["prefer"]
        assert "resolution=merge-duplicates" in prefer

    async def test_delete(self, rest, supabase):
        await rest.delete("participant_sessions", {"participant_id": ["p1", "p2"]})

        [request] = supabase.requests
        assert request["method"] == "DELETE"
        assert request["query"] == [("participant_id", 'in.("p1","p2")')]

    async def test_delete_requires_filters(self, rest):
        with pytest.raises(ValueError):
            await rest.delete("clubs", {})


class TestErrors:
    async def test_http_error(self, rest, supabase):
        supabase.respond(
            "POST",
            "/rest/v1/attendance",
            {"code": "23505", "message": "duplicate key value violates unique constraint"},
            status=409,
        )

        with pytest.raises(RemoteError) as exc_info:
            await rest.insert("attendance", {"session_id": "s1"})

        assert exc_info.value.status == 409
        assert "duplicate key" in exc_info.value.detail
        assert exc_info.value.table == "attendance"

    async def test_signed_out(self, supabase):
        async def no_token():
            return None

        store = PostgrestRemoteStore(supabase.url, "anon-key", no_token)
        try:
            with pytest.raises(NotAuthenticatedError):
                await store.select("clubs")
        finally:
            await store.close()
        assert supabase.requests == []

    async def test_connection_failure(self):
        store = PostgrestRemoteStore("http://127.0.0.1:1", "anon-key", token, timeout=2.0)
        try:
            with pytest.raises(RemoteError) as exc_info:
                await store.select("clubs")
        finally:
            await store.close()
        assert exc_info.value.operation == "select"
