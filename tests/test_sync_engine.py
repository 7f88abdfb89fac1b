"""
Tests for the reconciliation engine.

Each test drives full sync cycles against the in-memory FakeRemoteStore
from conftest, so promotions, owner-gated deletes and merges are observed
end to end on both sides.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from presence_sync.auth import SessionCache
from presence_sync.config import SyncConfig
from presence_sync.conflict import parse_timestamp
from presence_sync.ids import is_local_id
from presence_sync.local import LocalStore, MemoryKeyValueStorage
from presence_sync.local.store import COLLECTION_KEYS
from presence_sync.models import (
    AttendanceRecord,
    AttendanceStatus,
    Club,
    EntityType,
    Participant,
    Session,
)
from presence_sync.sync import ReconciliationEngine, SyncPhase, SyncStatus

from .conftest import (
    OTHER_USER_ID,
    USER_ID,
    FakeAuthProvider,
    FakeRemoteStore,
    Ticker,
    make_session,
)

CHESS_ID = "local-1700000000-abc123"


async def create_chess_club(store: LocalStore) -> dict[str, str]:
    """Chess Club with one session and two participants, all temporary ids."""
    await store.save_club(Club(id=CHESS_ID, name="Chess Club"))
    session = await store.save_session(
        Session(club_id=CHESS_ID, day_of_week="monday", start_time="18:00", end_time="20:00")
    )
    ada = await store.save_participant(Participant(club_id=CHESS_ID, first_name="Ada", last_name="L"))
    bob = await store.save_participant(Participant(club_id=CHESS_ID, first_name="Bob", last_name="K"))
    return {"session": session.id, "ada": ada.id, "bob": bob.id}


def seed_remote_club(remote: FakeRemoteStore, owner_id: str, name: str = "Go Club") -> dict[str, str]:
    """A club with one session and two participants living only remotely."""
    club = remote.seed(
        "clubs", name=name, description="", owner_id=owner_id, stats_reset_date=None
    )
    session = remote.seed(
        "sessions", club_id=club["id"], day_of_week="friday", start_time="17:00", end_time="19:00"
    )
    ada = remote.seed(
        "participants", club_id=club["id"], first_name="Ada", last_name="L", is_long_term_sick=False
    )
    bob = remote.seed(
        "participants", club_id=club["id"], first_name="Bob", last_name="K", is_long_term_sick=False
    )
    return {"club": club["id"], "session": session["id"], "ada": ada["id"], "bob": bob["id"]}


def local_ids_in(kv: MemoryKeyValueStorage) -> list[str]:
    """Every temporary id still present anywhere in the entity collections."""
    found = []
    for key in COLLECTION_KEYS.values():
        for row in json.loads(kv.data.get(key) or "[]"):
            found.extend(v for v in row.values() if isinstance(v, str) and v.startswith("local-"))
    return found


async def sync_again(engine: ReconciliationEngine, monotonic) -> bool:
    monotonic.advance(10)
    return await engine.sync_now()


class TestPromotion:
    """Temporary id promotion."""

    async def test_new_club_tree_is_promoted(self, engine, store, remote, kv):
        """A club created offline is uploaded with its children and every FK is rewritten."""
        await create_chess_club(store)

        assert await engine.sync_now() is True

        clubs = await store.get_clubs()
        assert len(clubs) == 1
        club = clubs[0]
        assert not is_local_id(club.id)
        assert club.owner_id == USER_ID
        assert remote.rows("clubs")[0]["id"] == club.id

        sessions = await store.get_sessions(club.id)
        participants = await store.get_participants(club.id)
        assert len(sessions) == 1
        assert len(participants) == 2
        assert {p["id"] for p in remote.rows("participants")} == {p.id for p in participants}
        assert all(p["club_id"] == club.id for p in remote.rows("participants"))
        assert local_ids_in(kv) == []

        result = engine.last_result
        assert result.success
        assert result.uploaded == 4

    async def test_no_duplicate_promotion(self, engine, store, remote, monotonic):
        """A second cycle inserts nothing and leaves one copy of each record."""
        await create_chess_club(store)
        await engine.sync_now()
        inserts = len(remote.calls_of("insert"))

        assert await sync_again(engine, monotonic) is True

        assert len(remote.calls_of("insert")) == inserts
        assert len(remote.calls_of("update")) == 0
        assert len(remote.rows("clubs")) == 1
        assert len(remote.rows("sessions")) == 1
        assert len(remote.rows("participants")) == 2
        assert len(await store.get_clubs()) == 1

    async def test_existing_club_is_adopted_by_name(self, engine, store, remote):
        """A local club matching a remote club of the same name and owner takes its id."""
        existing = seed_remote_club(remote, USER_ID, name="Chess Club")
        ids = await create_chess_club(store)

        await engine.sync_now()

        assert len(remote.rows("clubs")) == 1
        assert [c.id for c in await store.get_clubs()] == [existing["club"]]
        # Our session was uploaded under the adopted club, theirs downloaded
        session_ids = {s.id for s in await store.get_sessions(existing["club"])}
        assert existing["session"] in session_ids
        assert len(session_ids) == 2
        assert ids["session"] not in session_ids

    async def test_uploaded_rows_are_skipped_on_download(self, engine, store):
        """Rows written remotely in a cycle are excluded from that cycle's merge."""
        await create_chess_club(store)

        with patch.object(store, "merge_remote", wraps=store.merge_remote) as merge:
            await engine.sync_now()

        club_id = (await store.get_clubs())[0].id
        assert merge.call_count > 0
        for call in merge.call_args_list:
            assert club_id in call.args[2]
        assert engine.last_result.downloaded == 0

    async def test_join_rows_follow_their_parents(self, engine, store, remote, monotonic):
        """Enrollments and attendance are uploaded once both parents are promoted."""
        ids = await create_chess_club(store)
        await store.save_participant_sessions(ids["ada"], [ids["session"]])
        await store.save_attendance_batch(
            [
                AttendanceRecord(session_id=ids["session"], participant_id=ids["ada"], date="2024-03-01"),
                AttendanceRecord(session_id=ids["session"], participant_id=ids["bob"], date="2024-03-01"),
            ]
        )

        await engine.sync_now()

        session_id = remote.rows("sessions")[0]["id"]
        [enrollment] = remote.rows("participant_sessions")
        assert enrollment["session_id"] == session_id
        assert len(remote.rows("attendance")) == 2
        assert {a["session_id"] for a in remote.rows("attendance")} == {session_id}

        await sync_again(engine, monotonic)
        assert len(remote.rows("attendance")) == 2


class TestAttendanceSync:
    async def _synced_sheet(self, engine, store, monotonic):
        ids = await create_chess_club(store)
        await engine.sync_now()
        club = (await store.get_clubs())[0]
        session = (await store.get_sessions(club.id))[0]
        ada, bob = sorted(await store.get_participants(club.id), key=lambda p: p.first_name)
        await store.save_attendance_batch(
            [
                AttendanceRecord(session_id=session.id, participant_id=ada.id, date="2024-03-01"),
                AttendanceRecord(session_id=session.id, participant_id=bob.id, date="2024-03-01"),
            ]
        )
        await sync_again(engine, monotonic)
        return ids, session, ada, bob

    async def test_status_change_is_uploaded(self, engine, store, remote, monotonic):
        _, session, _, bob = await self._synced_sheet(engine, store, monotonic)

        sheet = await store.get_attendance(session.id, "2024-03-01")
        for record in sheet:
            if record.participant_id == bob.id:
                record.status = AttendanceStatus.ABSENT
        await store.save_attendance_batch(sheet)
        await sync_again(engine, monotonic)

        statuses = {a["participant_id"]: a["status"] for a in remote.rows("attendance")}
        assert statuses[bob.id] == "absent"

    async def test_resubmitted_sheet_adopts_remote_ids(self, engine, store, remote, monotonic):
        """A sheet re-entered from scratch matches remote rows by natural key."""
        _, session, ada, bob = await self._synced_sheet(engine, store, monotonic)
        remote_ids = {a["id"] for a in remote.rows("attendance")}

        await store.save_attendance_batch(
            [
                AttendanceRecord(session_id=session.id, participant_id=ada.id, date="2024-03-01"),
                AttendanceRecord(session_id=session.id, participant_id=bob.id, date="2024-03-01"),
            ]
        )
        await sync_again(engine, monotonic)

        assert {a["id"] for a in remote.rows("attendance")} == remote_ids
        assert {a.id for a in await store.get_all_attendance()} == remote_ids

    async def test_owner_removes_enrollment_remotely(self, engine, store, remote, monotonic):
        _, session, ada, _ = await self._synced_sheet(engine, store, monotonic)
        await store.save_participant_sessions(ada.id, [session.id])
        await sync_again(engine, monotonic)
        assert len(remote.rows("participant_sessions")) == 1

        await store.save_participant_sessions(ada.id, [])
        await sync_again(engine, monotonic)

        assert remote.rows("participant_sessions") == []


class TestOwnership:
    """Remote deletes are reserved to the club owner."""

    async def _hold_remote_club(self, engine, store, remote, owner_id, monotonic):
        seeded = seed_remote_club(remote, owner_id)
        await store.merge_remote(EntityType.CLUB, [remote.tables["clubs"][seeded["club"]]])
        await engine.sync_now()
        return seeded

    async def test_first_cycle_downloads_held_club(self, engine, store, remote, monotonic):
        seeded = await self._hold_remote_club(engine, store, remote, OTHER_USER_ID, monotonic)

        assert [s.id for s in await store.get_sessions(seeded["club"])] == [seeded["session"]]
        assert len(await store.get_participants(seeded["club"])) == 2
        assert remote.calls_of("delete") == []

    async def test_non_owner_never_deletes_remotely(self, engine, store, remote, monotonic):
        """A member deleting a participant locally leaves the remote row alone."""
        seeded = await self._hold_remote_club(engine, store, remote, OTHER_USER_ID, monotonic)

        await store.delete_participant(seeded["bob"])
        await store.delete_session(seeded["session"])
        await sync_again(engine, monotonic)

        assert remote.calls_of("delete") == []
        assert len(remote.rows("participants")) == 2
        assert len(remote.rows("sessions")) == 1

    async def test_owner_delete_propagates(self, engine, store, remote, monotonic):
        seeded = await self._hold_remote_club(engine, store, remote, USER_ID, monotonic)

        await store.delete_participant(seeded["bob"])
        await sync_again(engine, monotonic)

        assert [p["id"] for p in remote.rows("participants")] == [seeded["ada"]]
        assert engine.last_result.deleted == 1

    async def test_owner_delete_of_own_upload(self, engine, store, remote, monotonic):
        """Rows this device uploaded earlier are deletable on a later cycle."""
        ids = await create_chess_club(store)
        await engine.sync_now()
        bob_id = next(p["id"] for p in remote.rows("participants") if p["first_name"] == "Bob")
        assert bob_id != ids["bob"]

        await store.delete_participant(bob_id)
        await sync_again(engine, monotonic)

        assert remote.calls_of("delete", "participants") == [("delete", "participants", {"id": bob_id})]
        assert len(remote.rows("participants")) == 1

    async def test_first_sync_never_deletes(self, engine, store, remote):
        """Without a previous cycle, remote-only rows are downloaded, not deleted."""
        seeded = seed_remote_club(remote, USER_ID)
        await store.merge_remote(EntityType.CLUB, [remote.tables["clubs"][seeded["club"]]])

        await engine.sync_now()

        assert remote.calls_of("delete") == []
        assert len(await store.get_participants(seeded["club"])) == 2

    async def test_rows_newer_than_last_sync_are_downloaded(self, engine, store, remote, monotonic):
        """A remote-only row created after the previous cycle came from another device."""
        seeded = await self._hold_remote_club(engine, store, remote, USER_ID, monotonic)
        carl = remote.seed(
            "participants", club_id=seeded["club"], first_name="Carl", last_name="M"
        )

        await sync_again(engine, monotonic)

        assert remote.calls_of("delete") == []
        assert carl["id"] in {p.id for p in await store.get_participants(seeded["club"])}


class TestServerClock:
    """The watermark comes from server timestamps, whatever this device's clock says."""

    def _engine(self, store, sessions, sync_config, monotonic, offset: int):
        server_start = datetime(2024, 3, 1, 9, 0, tzinfo=UTC) + timedelta(seconds=offset)
        remote = FakeRemoteStore(Ticker(start=server_start))
        engine = ReconciliationEngine(store, remote, sessions, sync_config, clock=monotonic)
        return engine, remote

    async def test_watermark_is_latest_server_timestamp(self, store, sessions, sync_config, monotonic):
        engine, remote = self._engine(store, sessions, sync_config, monotonic, offset=30)
        await create_chess_club(store)

        await engine.sync_now()

        latest = max(
            parse_timestamp(row["updated_at"])
            for table in ("clubs", "sessions", "participants")
            for row in remote.rows(table)
        )
        assert parse_timestamp(await store.get_last_sync()) == latest

    async def test_owner_delete_with_server_clock_ahead(self, store, sessions, sync_config, monotonic):
        engine, remote = self._engine(store, sessions, sync_config, monotonic, offset=30)
        await create_chess_club(store)
        await engine.sync_now()
        club_id = remote.rows("clubs")[0]["id"]
        bob_id = next(p["id"] for p in remote.rows("participants") if p["first_name"] == "Bob")

        await store.delete_participant(bob_id)
        await sync_again(engine, monotonic)

        assert remote.calls_of("delete", "participants") == [("delete", "participants", {"id": bob_id})]
        assert [p["first_name"] for p in remote.rows("participants")] == ["Ada"]
        assert [p.first_name for p in await store.get_participants(club_id)] == ["Ada"]

    async def test_new_remote_row_with_server_clock_behind(self, store, sessions, sync_config, monotonic):
        """A row added elsewhere after the last cycle is downloaded, never mistaken for a local delete."""
        engine, remote = self._engine(store, sessions, sync_config, monotonic, offset=-60)
        seeded = seed_remote_club(remote, USER_ID)
        await store.merge_remote(EntityType.CLUB, [remote.tables["clubs"][seeded["club"]]])
        await engine.sync_now()

        carl = remote.seed("participants", club_id=seeded["club"], first_name="Carl", last_name="M")
        await sync_again(engine, monotonic)

        assert remote.calls_of("delete") == []
        assert carl["id"] in {p["id"] for p in remote.rows("participants")}
        assert carl["id"] in {p.id for p in await store.get_participants(seeded["club"])}

    async def test_nothing_seen_keeps_previous_watermark(self, engine, store):
        await store.set_last_sync("2024-03-01T08:00:00+00:00")

        assert await engine.sync_now() is True

        assert await store.get_last_sync() == "2024-03-01T08:00:00+00:00"


class TestClubDeletes:
    """Tombstones for clubs deleted on this device."""

    async def test_owner_deletes_club_remotely(self, engine, store, remote, monotonic):
        await create_chess_club(store)
        await engine.sync_now()
        club_id = remote.rows("clubs")[0]["id"]

        await store.delete_club(club_id)
        await sync_again(engine, monotonic)

        for table in ("clubs", "sessions", "participants", "participant_sessions", "attendance"):
            assert remote.rows(table) == []
        assert await store.get_pending_deletes() == []
        assert await store.get_clubs() == []

    async def test_member_deletes_club_locally_only(self, engine, store, remote, monotonic):
        seeded = seed_remote_club(remote, OTHER_USER_ID)
        await store.merge_remote(EntityType.CLUB, [remote.tables["clubs"][seeded["club"]]])
        await engine.sync_now()

        await store.delete_club(seeded["club"])
        await sync_again(engine, monotonic)

        assert len(remote.rows("clubs")) == 1
        assert await store.get_pending_deletes() == []
        assert await store.get_clubs() == []

    async def test_failed_delete_keeps_tombstone(self, engine, store, remote, monotonic):
        """A club whose remote delete failed is neither resurrected nor forgotten."""
        await create_chess_club(store)
        await engine.sync_now()
        club_id = remote.rows("clubs")[0]["id"]

        await store.delete_club(club_id)
        remote.fail("participant_sessions", "delete")
        await sync_again(engine, monotonic)

        assert await store.get_clubs() == []
        assert [p["id"] for p in await store.get_pending_deletes()] == [club_id]
        assert not engine.last_result.success

        remote.failures.clear()
        await sync_again(engine, monotonic)
        assert remote.rows("clubs") == []
        assert await store.get_pending_deletes() == []


class TestMerge:
    """Download and conflict handling."""

    async def test_new_device_downloads_owned_clubs(self, engine, store, remote):
        seeded = seed_remote_club(remote, USER_ID)
        remote.seed("participant_sessions", participant_id=seeded["ada"], session_id=seeded["session"])
        remote.seed(
            "attendance",
            session_id=seeded["session"],
            participant_id=seeded["ada"],
            date="2024-03-01",
            status="present",
        )

        await engine.sync_now()

        participants = {p.id: p for p in await store.get_participants_with_sessions(seeded["club"])}
        assert participants[seeded["ada"]].preferred_session_ids == [seeded["session"]]
        assert len(await store.get_attendance(seeded["session"], "2024-03-01")) == 1
        assert engine.last_result.downloaded == 6

    async def test_newer_remote_edit_wins(self, engine, store, remote, monotonic, ticker):
        seeded = seed_remote_club(remote, USER_ID)
        await engine.sync_now()

        remote.tables["participants"][seeded["ada"]].update(first_name="Adeline", updated_at=ticker())
        await sync_again(engine, monotonic)

        participants = {p.id: p for p in await store.get_participants(seeded["club"])}
        assert participants[seeded["ada"]].first_name == "Adeline"
        assert remote.calls_of("update", "participants") == []

    async def test_older_local_edit_does_not_overwrite(self, engine, store, remote, monotonic, ticker):
        """An edit made remotely after the local one survives and is downloaded."""
        seeded = seed_remote_club(remote, USER_ID)
        await engine.sync_now()

        ada = next(
            p for p in await store.get_participants(seeded["club"]) if p.id == seeded["ada"]
        )
        ada.last_name = "Local"
        await store.save_participant(ada)
        remote.tables["participants"][seeded["ada"]].update(last_name="Remote", updated_at=ticker())

        await sync_again(engine, monotonic)

        assert remote.tables["participants"][seeded["ada"]]["last_name"] == "Remote"
        participants = {p.id: p for p in await store.get_participants(seeded["club"])}
        assert participants[seeded["ada"]].last_name == "Remote"

    async def test_newer_local_edit_is_uploaded(self, engine, store, remote, monotonic, ticker):
        seeded = seed_remote_club(remote, USER_ID)
        await engine.sync_now()

        remote.tables["participants"][seeded["ada"]].update(last_name="Remote", updated_at=ticker())
        ada = next(
            p for p in await store.get_participants(seeded["club"]) if p.id == seeded["ada"]
        )
        ada.last_name = "Local"
        await store.save_participant(ada)

        await sync_again(engine, monotonic)

        assert remote.tables["participants"][seeded["ada"]]["last_name"] == "Local"
        participants = {p.id: p for p in await store.get_participants(seeded["club"])}
        assert participants[seeded["ada"]].last_name == "Local"


class TestCycleControl:
    """Guard, debounce and authorization."""

    async def test_debounce(self, engine, store, monotonic):
        assert await engine.sync_now() is True
        assert await engine.sync_now() is False

        monotonic.advance(4.9)
        assert await engine.sync_now() is False

        monotonic.advance(0.2)
        assert await engine.sync_now() is True

    async def test_overlapping_request_is_skipped(self, engine):
        results = await asyncio.gather(engine.sync_now(), engine.sync_now())

        assert sorted(results) == [False, True]
        assert engine.state == SyncPhase.IDLE
        assert not engine.is_syncing

    async def test_signed_out_is_a_silent_noop(self, engine, store, remote, auth):
        auth.session = None
        await create_chess_club(store)

        assert await engine.sync_now() is False

        status = await engine.get_sync_status()
        assert status.error is None
        assert status.last_sync is None
        assert remote.calls == []
        assert engine.last_result is None
        assert (await store.get_clubs())[0].id == CHESS_ID

    async def test_unreadable_club_list_aborts_cycle(self, engine, store, remote):
        remote.fail("clubs", "select")
        statuses: list[SyncStatus] = []
        engine.on_sync_status_change(statuses.append)

        assert await engine.sync_now() is False

        assert [s.is_syncing for s in statuses] == [True, False]
        assert "Remote select on clubs failed" in statuses[-1].error
        assert (await engine.get_sync_status()).error == statuses[-1].error
        assert await store.get_last_sync() is None

    async def test_error_cleared_by_next_good_cycle(self, engine, remote, monotonic):
        remote.fail("clubs", "select")
        await engine.sync_now()
        remote.failures.clear()

        await sync_again(engine, monotonic)

        assert (await engine.get_sync_status()).error is None

    async def test_record_failure_does_not_stop_cycle(self, engine, store, remote, monotonic, kv):
        """One failing insert is reported; the rest of the cycle proceeds and retries later."""
        await create_chess_club(store)
        remote.fail("participants", "insert")

        assert await engine.sync_now() is True

        result = engine.last_result
        assert not result.success
        assert any("participants" in e for e in result.errors)
        assert len(remote.rows("sessions")) == 1
        assert await store.get_last_sync() is not None

        remote.failures.clear()
        await sync_again(engine, monotonic)

        assert len(remote.rows("participants")) == 2
        assert engine.last_result.success
        assert local_ids_in(kv) == []

    async def test_duration_uses_engine_clock(self, store, remote, sync_config, monotonic):
        class SlowAuth(FakeAuthProvider):
            async def get_session(self):
                monotonic.advance(1.5)
                return await super().get_session()

        engine = ReconciliationEngine(
            store, remote, SessionCache(SlowAuth(make_session())), sync_config, clock=monotonic
        )

        assert await engine.sync_now() is True
        assert engine.last_result.duration_ms == 1500

    async def test_remote_timeout(self, store, sessions, monotonic, ticker, tmp_path):
        class SlowRemote(FakeRemoteStore):
            async def select(self, *args, **kwargs):
                await asyncio.sleep(1)
                return []

        engine = ReconciliationEngine(
            store,
            SlowRemote(ticker),
            sessions,
            SyncConfig(data_dir=tmp_path, remote_timeout=0.05),
            clock=monotonic,
        )

        assert await engine.sync_now() is False
        assert "timed out" in (await engine.get_sync_status()).error


class TestStatusListeners:
    async def test_listeners_see_start_and_end(self, engine, store):
        statuses: list[SyncStatus] = []
        engine.on_sync_status_change(statuses.append)

        await engine.sync_now()

        assert [s.is_syncing for s in statuses] == [True, False]
        assert statuses[0].last_sync is None
        assert statuses[1].last_sync == await store.get_last_sync()
        assert statuses[1].error is None

    async def test_unsubscribe(self, engine, monotonic):
        statuses: list[SyncStatus] = []
        unsubscribe = engine.on_sync_status_change(statuses.append)
        await engine.sync_now()

        unsubscribe()
        await sync_again(engine, monotonic)

        assert len(statuses) == 2

    async def test_failing_listener_is_isolated(self, engine):
        def broken(status: SyncStatus) -> None:
            raise RuntimeError("listener bug")

        received: list[SyncStatus] = []
        engine.on_sync_status_change(broken)
        engine.on_sync_status_change(received.append)

        assert await engine.sync_now() is True
        assert len(received) == 2


class TestAutoSync:
    async def test_first_cycle_runs_immediately(self, store, remote, sessions, monotonic, tmp_path):
        engine = ReconciliationEngine(
            store,
            remote,
            sessions,
            SyncConfig(data_dir=tmp_path, auto_sync_interval=3600),
            clock=monotonic,
        )
        await create_chess_club(store)

        await engine.start_auto_sync()
        for _ in range(100):
            if engine.last_result is not None:
                break
            await asyncio.sleep(0.01)
        await engine.stop_auto_sync()

        assert engine.last_result is not None
        assert len(remote.rows("clubs")) == 1

    async def test_stop_waits_for_running_cycle(self, store, remote, monotonic, tmp_path):
        class GatedAuth(FakeAuthProvider):
            def __init__(self) -> None:
                super().__init__(make_session())
                self.gate = asyncio.Event()

            async def get_session(self):
                await self.gate.wait()
                return await super().get_session()

        auth = GatedAuth()
        engine = ReconciliationEngine(
            store,
            remote,
            SessionCache(auth),
            SyncConfig(data_dir=tmp_path, auto_sync_interval=3600),
            clock=monotonic,
        )

        await engine.start_auto_sync()
        for _ in range(100):
            if engine.is_syncing:
                break
            await asyncio.sleep(0.01)
        assert engine.is_syncing

        stopper = asyncio.create_task(engine.stop_auto_sync())
        await asyncio.sleep(0.01)
        assert not stopper.done()

        auth.gate.set()
        await asyncio.wait_for(stopper, 2)

        assert not engine.is_syncing
        assert engine.last_result is not None

    async def test_start_twice_is_harmless(self, engine):
        await engine.start_auto_sync()
        await engine.start_auto_sync()
        await engine.stop_auto_sync()
        await engine.stop_auto_sync()

        assert not engine.is_syncing


@pytest.mark.parametrize("owner_id", [USER_ID, OTHER_USER_ID])
async def test_club_update_pushed_only_by_owner(engine, store, remote, monotonic, owner_id):
    seeded = seed_remote_club(remote, owner_id)
    await store.merge_remote(EntityType.CLUB, [remote.tables["clubs"][seeded["club"]]])
    await engine.sync_now()

    club = await store.get_club(seeded["club"])
    club.description = "Fridays"
    await store.save_club(club)
    await sync_again(engine, monotonic)

    pushed = remote.tables["clubs"][seeded["club"]]["description"] == "Fridays"
    assert pushed is (owner_id == USER_ID)
