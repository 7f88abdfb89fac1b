"""
Local store: the durable per-device record of every entity.

The UI reads only from here and writes here first; nothing in this module
touches the network. Layout on top of a KeyValueStorage:

    @presence_app:clubs                 JSON array of Club records
    @presence_app:sessions              JSON array of Session records
    @presence_app:participants          JSON array of Participant records
    @presence_app:participant_sessions  JSON array of enrollment rows
    @presence_app:attendance            JSON array of AttendanceRecord rows
    @presence_app:user                  cached user object
    @presence_app:pending_deletes       promoted Clubs deleted locally
    @presence_app:migrated:<old key>    legacy-key migration flags
    last_sync_timestamp                 watermark of the last sync cycle

Every operation reads all the collections it needs in one storage call and
writes all the collections it changed in one atomic storage call, so a
reader never observes a half-applied cascade or promotion.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from ..conflict import is_newer, merge_record
from ..exceptions import StorageError, ValidationError
from ..ids import is_local_id, new_local_id
from ..models import (
    REFERENCES,
    AttendanceRecord,
    Club,
    EntityType,
    Participant,
    ParticipantSession,
    Session,
    logical_key,
    utc_now_iso,
)
from .kv import KeyValueStorage

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "@presence_app:"

COLLECTION_KEYS: dict[EntityType, str] = {
    EntityType.CLUB: f"{STORAGE_PREFIX}clubs",
    EntityType.SESSION: f"{STORAGE_PREFIX}sessions",
    EntityType.PARTICIPANT: f"{STORAGE_PREFIX}participants",
    EntityType.PARTICIPANT_SESSION: f"{STORAGE_PREFIX}participant_sessions",
    EntityType.ATTENDANCE: f"{STORAGE_PREFIX}attendance",
}
USER_KEY = f"{STORAGE_PREFIX}user"
PENDING_DELETES_KEY = f"{STORAGE_PREFIX}pending_deletes"
LAST_SYNC_KEY = "last_sync_timestamp"
MIGRATION_FLAG_PREFIX = f"{STORAGE_PREFIX}migrated:"

# Deprecated unprefixed keys written by early app versions
LEGACY_KEYS: dict[str, str] = {
    "clubs": COLLECTION_KEYS[EntityType.CLUB],
    "sessions": COLLECTION_KEYS[EntityType.SESSION],
    "participants": COLLECTION_KEYS[EntityType.PARTICIPANT],
    "participant_sessions": COLLECTION_KEYS[EntityType.PARTICIPANT_SESSION],
    "attendance": COLLECTION_KEYS[EntityType.ATTENDANCE],
    "user": USER_KEY,
}

ALL_ENTITIES = tuple(EntityType)

Rows = list[dict[str, Any]]


class LocalStore:
    """Per-device entity store with optimistic local CRUD.

    Saving a record without an id mints a temporary id (see ids.py); the
    reconciliation engine later promotes it to a remote id through
    promote(). Deletes cascade locally and unconditionally.

    Args:
        storage: Key-value backend
        clock: Returns the current time as an ISO 8601 string
        id_factory: Mints temporary ids
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Callable[[], str] = utc_now_iso,
        id_factory: Callable[[], str] = new_local_id,
    ) -> None:
        self.storage = storage
        self._clock = clock
        self._new_id = id_factory
        self._lock = asyncio.Lock()
        self._migrated = False

    # =========================================================================
    # Raw collection access
    # =========================================================================

    async def _read(self, *entities: EntityType, extra: Iterable[str] = ()) -> dict[Any, Any]:
        """Read collections (and optional raw keys) in a single storage call."""
        keys = [COLLECTION_KEYS[e] for e in entities] + list(extra)
        raw = await self.storage.get_many(keys)
        result: dict[Any, Any] = {}
        for entity in entities:
            result[entity] = _decode_rows(COLLECTION_KEYS[entity], raw[COLLECTION_KEYS[entity]])
        for key in extra:
            result[key] = raw[key]
        return result

    async def _write(
        self,
        collections: dict[EntityType, Rows],
        extra: dict[str, str] | None = None,
        remove: list[str] | None = None,
    ) -> None:
        items = {COLLECTION_KEYS[e]: json.dumps(rows) for e, rows in collections.items()}
        items.update(extra or {})
        await self.storage.set_many(items, remove=remove)

    async def _ready(self) -> None:
        if not self._migrated:
            await self.migrate_legacy_keys()

    # =========================================================================
    # Migration
    # =========================================================================

    async def migrate_legacy_keys(self) -> list[str]:
        """Move records from deprecated storage keys to their current keys.

        Idempotent: a migrated key is removed and flagged, so later runs
        find nothing to do. Runs under the write lock, and reads call it
        lazily, so it is safe to race with first reads.

        Returns:
            Legacy keys that held data and were migrated by this call
        """
        async with self._lock:
            if self._migrated:
                return []

            flags = [f"{MIGRATION_FLAG_PREFIX}{old}" for old in LEGACY_KEYS]
            raw = await self.storage.get_many(
                list(LEGACY_KEYS) + list(LEGACY_KEYS.values()) + flags
            )

            items: dict[str, str] = {}
            remove: list[str] = []
            migrated: list[str] = []
            for old_key, new_key in LEGACY_KEYS.items():
                flag = f"{MIGRATION_FLAG_PREFIX}{old_key}"
                old_value = raw[old_key]
                if raw[flag] and old_value is None:
                    continue
                if old_value is not None:
                    items[new_key] = _merge_legacy_value(new_key, raw[new_key], old_value)
                    remove.append(old_key)
                    migrated.append(old_key)
                    logger.info(f"Migrated {old_key} → {new_key}")
                items[flag] = self._clock()

            await self.storage.set_many(items, remove=remove)
            self._migrated = True
            return migrated

    # =========================================================================
    # Clubs
    # =========================================================================

    async def get_clubs(self) -> list[Club]:
        await self._ready()
        rows = (await self._read(EntityType.CLUB))[EntityType.CLUB]
        return [Club.from_dict(row) for row in rows]

    async def get_club(self, club_id: str) -> Club | None:
        for club in await self.get_clubs():
            if club.id == club_id:
                return club
        return None

    async def save_club(self, club: Club) -> Club:
        """Insert or replace a club. Returns the stored club with its id."""
        if not club.name or not club.name.strip():
            raise ValidationError("name", "Club name is required")
        row = await self._save(EntityType.CLUB, club.to_dict())
        return Club.from_dict(row)

    async def delete_club(self, club_id: str) -> bool:
        """Delete a club and everything attached to it.

        Cascades to the club's sessions and participants, their enrollment
        rows, and every attendance record touching them. A club that was
        already promoted is remembered in the pending-deletes list so the
        engine can remove it remotely on the next cycle.
        """
        await self._ready()
        async with self._lock:
            data = await self._read(*ALL_ENTITIES, extra=[PENDING_DELETES_KEY])
            club = _find(data[EntityType.CLUB], club_id)
            if club is None:
                return False

            session_ids = {s["id"] for s in data[EntityType.SESSION] if s.get("club_id") == club_id}
            participant_ids = {
                p["id"] for p in data[EntityType.PARTICIPANT] if p.get("club_id") == club_id
            }
            updated = {
                EntityType.CLUB: [c for c in data[EntityType.CLUB] if c["id"] != club_id],
                EntityType.SESSION: [
                    s for s in data[EntityType.SESSION] if s.get("club_id") != club_id
                ],
                EntityType.PARTICIPANT: [
                    p for p in data[EntityType.PARTICIPANT] if p.get("club_id") != club_id
                ],
                EntityType.PARTICIPANT_SESSION: [
                    ps
                    for ps in data[EntityType.PARTICIPANT_SESSION]
                    if ps.get("participant_id") not in participant_ids
                    and ps.get("session_id") not in session_ids
                ],
                EntityType.ATTENDANCE: [
                    a
                    for a in data[EntityType.ATTENDANCE]
                    if a.get("session_id") not in session_ids
                    and a.get("participant_id") not in participant_ids
                ],
            }

            extra: dict[str, str] = {}
            if not is_local_id(club_id):
                pending = _decode_rows(PENDING_DELETES_KEY, data[PENDING_DELETES_KEY])
                pending.append(
                    {
                        "entity": EntityType.CLUB.value,
                        "id": club_id,
                        "owner_id": club.get("owner_id"),
                        "deleted_at": self._clock(),
                    }
                )
                extra[PENDING_DELETES_KEY] = json.dumps(pending)

            await self._write(updated, extra)
            logger.info(
                f"Deleted club {club_id} with {len(session_ids)} sessions "
                f"and {len(participant_ids)} participants"
            )
            return True

    async def reset_club_stats(self, club_id: str, today: str | None = None) -> Club | None:
        """Start a new statistics period for a club.

        Stamps stats_reset_date on the club and drops the club's attendance
        history locally. The club update is uploaded on the next sync.
        """
        await self._ready()
        reset_date = today or datetime.now(UTC).date().isoformat()
        async with self._lock:
            data = await self._read(*ALL_ENTITIES)
            club = _find(data[EntityType.CLUB], club_id)
            if club is None:
                return None

            club.update(stats_reset_date=reset_date, updated_at=self._clock())
            session_ids = {s["id"] for s in data[EntityType.SESSION] if s.get("club_id") == club_id}
            participant_ids = {
                p["id"] for p in data[EntityType.PARTICIPANT] if p.get("club_id") == club_id
            }
            attendance = [
                a
                for a in data[EntityType.ATTENDANCE]
                if a.get("session_id") not in session_ids
                and a.get("participant_id") not in participant_ids
            ]
            await self._write(
                {EntityType.CLUB: data[EntityType.CLUB], EntityType.ATTENDANCE: attendance}
            )
            return Club.from_dict(club)

    # =========================================================================
    # Sessions
    # =========================================================================

    async def get_sessions(self, club_id: str) -> list[Session]:
        await self._ready()
        rows = (await self._read(EntityType.SESSION))[EntityType.SESSION]
        return [Session.from_dict(row) for row in rows if row.get("club_id") == club_id]

    async def save_session(self, session: Session) -> Session:
        row = await self._save(EntityType.SESSION, session.to_dict(), parent=EntityType.CLUB)
        return Session.from_dict(row)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session, its enrollment rows and its attendance."""
        return await self._delete_with_dependents(EntityType.SESSION, session_id)

    # =========================================================================
    # Participants
    # =========================================================================

    async def get_participants(self, club_id: str) -> list[Participant]:
        await self._ready()
        rows = (await self._read(EntityType.PARTICIPANT))[EntityType.PARTICIPANT]
        return [Participant.from_dict(row) for row in rows if row.get("club_id") == club_id]

    async def get_participants_with_sessions(self, club_id: str) -> list[Participant]:
        """Participants of a club with preferred_session_ids filled in."""
        await self._ready()
        data = await self._read(EntityType.PARTICIPANT, EntityType.PARTICIPANT_SESSION)
        by_participant: dict[str, list[str]] = {}
        for ps in data[EntityType.PARTICIPANT_SESSION]:
            by_participant.setdefault(ps["participant_id"], []).append(ps["session_id"])

        participants = []
        for row in data[EntityType.PARTICIPANT]:
            if row.get("club_id") != club_id:
                continue
            participant = Participant.from_dict(row)
            participant.preferred_session_ids = by_participant.get(row["id"], [])
            participants.append(participant)
        return participants

    async def save_participant(self, participant: Participant) -> Participant:
        if not participant.first_name and not participant.last_name:
            raise ValidationError("first_name", "Participant name is required")
        row = await self._save(
            EntityType.PARTICIPANT, participant.to_dict(), parent=EntityType.CLUB
        )
        return Participant.from_dict(row)

    async def delete_participant(self, participant_id: str) -> bool:
        """Delete a participant, their enrollment rows and their attendance."""
        return await self._delete_with_dependents(EntityType.PARTICIPANT, participant_id)

    # =========================================================================
    # Enrollment (ParticipantSession)
    # =========================================================================

    async def get_participant_sessions(self, participant_id: str) -> list[str]:
        """Session ids the participant is enrolled in."""
        await self._ready()
        rows = (await self._read(EntityType.PARTICIPANT_SESSION))[EntityType.PARTICIPANT_SESSION]
        return [ps["session_id"] for ps in rows if ps.get("participant_id") == participant_id]

    async def save_participant_sessions(
        self, participant_id: str, session_ids: list[str]
    ) -> list[ParticipantSession]:
        """Replace the participant's enrollment set.

        Rows for sessions that stay in the set keep their ids (and so their
        remote identity); duplicates in session_ids collapse to one row.
        """
        await self._ready()
        async with self._lock:
            rows = (await self._read(EntityType.PARTICIPANT_SESSION))[
                EntityType.PARTICIPANT_SESSION
            ]
            existing = {
                ps["session_id"]: ps for ps in rows if ps.get("participant_id") == participant_id
            }
            kept = [ps for ps in rows if ps.get("participant_id") != participant_id]

            now = self._clock()
            enrolled: Rows = []
            for session_id in dict.fromkeys(session_ids):
                row = existing.get(session_id)
                if row is None:
                    row = {
                        "id": self._new_id(),
                        "participant_id": participant_id,
                        "session_id": session_id,
                        "created_at": now,
                        "updated_at": now,
                    }
                enrolled.append(row)

            await self._write({EntityType.PARTICIPANT_SESSION: kept + enrolled})
            return [ParticipantSession.from_dict(row) for row in enrolled]

    # =========================================================================
    # Attendance
    # =========================================================================

    async def get_attendance(self, session_id: str, date: str) -> list[AttendanceRecord]:
        await self._ready()
        rows = (await self._read(EntityType.ATTENDANCE))[EntityType.ATTENDANCE]
        return [
            AttendanceRecord.from_dict(a)
            for a in rows
            if a.get("session_id") == session_id and a.get("date") == date
        ]

    async def get_all_attendance(self) -> list[AttendanceRecord]:
        await self._ready()
        rows = (await self._read(EntityType.ATTENDANCE))[EntityType.ATTENDANCE]
        return [AttendanceRecord.from_dict(a) for a in rows]

    async def save_attendance_batch(
        self, records: list[AttendanceRecord]
    ) -> list[AttendanceRecord]:
        """Store one attendance sheet for a (session_id, date).

        Every existing record for the batch's (session_id, date) is replaced,
        so submitting the same sheet twice leaves a single copy. Records
        without an id get a fresh temporary id.

        Raises:
            ValidationError: If the batch mixes sessions or dates
        """
        if not records:
            return []

        session_id = records[0].session_id
        date = records[0].date
        for record in records:
            if record.session_id != session_id or record.date != date:
                raise ValidationError(
                    "session_id", "Attendance batch must share one session and date"
                )

        await self._ready()
        async with self._lock:
            rows = (await self._read(EntityType.ATTENDANCE))[EntityType.ATTENDANCE]
            kept = [
                a for a in rows if not (a.get("session_id") == session_id and a.get("date") == date)
            ]

            now = self._clock()
            batch: dict[tuple[str, ...], dict[str, Any]] = {}
            for record in records:
                row = record.to_dict()
                row["id"] = row.get("id") or self._new_id()
                row["created_at"] = row.get("created_at") or now
                row["updated_at"] = now
                # One record per (participant, session, date); last one wins
                batch[logical_key(EntityType.ATTENDANCE, row)] = row

            await self._write({EntityType.ATTENDANCE: kept + list(batch.values())})
            logger.debug(f"Saved {len(batch)} attendance records for {session_id} on {date}")
            return [AttendanceRecord.from_dict(row) for row in batch.values()]

    # =========================================================================
    # User
    # =========================================================================

    async def get_user(self) -> dict[str, Any] | None:
        await self._ready()
        raw = await self.storage.get_item(USER_KEY)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError("parse_json", USER_KEY, e) from e

    async def set_user(self, user: dict[str, Any]) -> None:
        await self.storage.set_item(USER_KEY, json.dumps(user))

    async def clear_all(self) -> None:
        """Remove every collection, the user, tombstones and the sync watermark."""
        async with self._lock:
            await self.storage.remove_many(
                list(COLLECTION_KEYS.values()) + [USER_KEY, PENDING_DELETES_KEY, LAST_SYNC_KEY]
            )

    # =========================================================================
    # Reconciliation support
    # =========================================================================

    async def snapshot(self) -> dict[EntityType, Rows]:
        """All collections, read in one storage call."""
        await self._ready()
        return await self._read(*ALL_ENTITIES)

    async def get_last_sync(self) -> str | None:
        return await self.storage.get_item(LAST_SYNC_KEY)

    async def set_last_sync(self, timestamp: str) -> None:
        await self.storage.set_item(LAST_SYNC_KEY, timestamp)

    async def get_pending_deletes(self) -> Rows:
        raw = await self.storage.get_item(PENDING_DELETES_KEY)
        return _decode_rows(PENDING_DELETES_KEY, raw)

    async def clear_pending_delete(self, entity: EntityType, record_id: str) -> None:
        async with self._lock:
            pending = await self.get_pending_deletes()
            remaining = [
                p for p in pending if not (p.get("entity") == entity.value and p.get("id") == record_id)
            ]
            await self.storage.set_item(PENDING_DELETES_KEY, json.dumps(remaining))

    async def promote(
        self,
        entity: EntityType,
        old_id: str,
        remote_row: dict[str, Any],
        uploaded_row: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Adopt the remote identity of a record after a successful upload.

        The record's id becomes the remote id and every foreign key pointing
        at old_id is rewritten in the same atomic write. Server-maintained
        fields (created_at, updated_at, owner_id) are adopted unless the
        record was edited locally since uploaded_row was taken, in which case
        the newer local edit keeps its timestamp and is uploaded again later.

        Also used with old_id equal to the remote id to adopt server
        timestamps after an update.

        Returns:
            The stored record, or None if it was deleted locally meanwhile
        """
        new_id = remote_row["id"]
        dependents = [dep for dep, _fk in REFERENCES[entity]]

        async with self._lock:
            data = await self._read(entity, *dependents)
            rows: Rows = data[entity]
            current = _find(rows, old_id)
            if current is None:
                logger.warning(f"Cannot promote {entity.value} {old_id}: deleted locally")
                return None

            promoted = {**current, "id": new_id}
            edited_since = uploaded_row is not None and current.get("updated_at") != uploaded_row.get(
                "updated_at"
            )
            for column in ("created_at", "updated_at", "owner_id"):
                if column == "updated_at" and edited_since:
                    continue
                if remote_row.get(column) is not None:
                    promoted[column] = remote_row[column]

            updated_rows = [r for r in rows if r["id"] not in (old_id, new_id)]
            updated_rows.append(promoted)
            changes: dict[EntityType, Rows] = {entity: updated_rows}

            if old_id != new_id:
                for dep, fk in REFERENCES[entity]:
                    dep_rows = data[dep]
                    for row in dep_rows:
                        if row.get(fk) == old_id:
                            row[fk] = new_id
                    changes[dep] = _dedupe_by_key(dep, dep_rows)
                logger.debug(f"Promoted {entity.value} {old_id} → {new_id}")

            await self._write(changes)
            return promoted

    async def merge_remote(
        self,
        entity: EntityType,
        remote_rows: Rows,
        skip_ids: set[str] | frozenset[str] = frozenset(),
    ) -> int:
        """Merge downloaded records into a collection.

        Unknown records are inserted; known ones are overwritten only when
        the remote copy is strictly newer. Join records (enrollments,
        attendance) are also matched on their natural key, so a local
        record still holding a temporary id adopts the remote id instead of
        becoming a duplicate. Records whose id is in skip_ids are ignored.

        Returns:
            Number of records inserted or overwritten
        """
        async with self._lock:
            rows: Rows = (await self._read(entity))[entity]
            by_id = {row["id"]: index for index, row in enumerate(rows)}
            by_key: dict[tuple[str, ...], int] = {}
            for index, row in enumerate(rows):
                key = logical_key(entity, row)
                if key is not None:
                    by_key[key] = index

            applied = 0
            for remote in remote_rows:
                remote_id = remote.get("id")
                if not remote_id or remote_id in skip_ids:
                    continue

                index = by_id.get(remote_id)
                if index is None:
                    key = logical_key(entity, remote)
                    index = by_key.get(key) if key is not None else None
                    if index is not None and not is_local_id(rows[index]["id"]):
                        # Same natural key under another remote id: keep ours
                        logger.debug(
                            f"Ignoring duplicate {entity.value} {remote_id} for key {key}"
                        )
                        continue

                if index is None:
                    rows.append(dict(remote))
                    index = len(rows) - 1
                    by_id[remote_id] = index
                    key = logical_key(entity, remote)
                    if key is not None:
                        by_key[key] = index
                    applied += 1
                    continue

                local = rows[index]
                merged = merge_record(local, remote)
                if local["id"] != remote_id:
                    # Temporary id matched by natural key: adopt the remote id
                    merged = {**merged, "id": remote_id}
                if merged is not local:
                    rows[index] = merged
                    by_id[remote_id] = index
                    applied += 1

            if applied:
                await self._write({entity: rows})
            return applied

    # =========================================================================
    # Internals
    # =========================================================================

    async def _save(
        self,
        entity: EntityType,
        row: dict[str, Any],
        parent: EntityType | None = None,
    ) -> dict[str, Any]:
        """Insert or replace a row, minting a temporary id when needed."""
        await self._ready()
        async with self._lock:
            needed = (entity,) if parent is None else (entity, parent)
            data = await self._read(*needed)
            rows: Rows = data[entity]

            if parent is not None:
                parent_id = row.get("club_id")
                if _find(data[parent], parent_id) is None:
                    raise ValidationError("club_id", "Unknown club", parent_id)

            now = self._clock()
            row["updated_at"] = now
            index = next((i for i, r in enumerate(rows) if row.get("id") and r["id"] == row["id"]), None)
            if index is not None:
                row["created_at"] = row.get("created_at") or rows[index].get("created_at") or now
                rows[index] = row
            else:
                row["id"] = row.get("id") or self._new_id()
                row["created_at"] = row.get("created_at") or now
                rows.append(row)

            await self._write({entity: rows})
            return row

    async def _delete_with_dependents(self, entity: EntityType, record_id: str) -> bool:
        await self._ready()
        dependents = [(dep, fk) for dep, fk in REFERENCES[entity]]
        async with self._lock:
            data = await self._read(entity, *[dep for dep, _fk in dependents])
            if _find(data[entity], record_id) is None:
                return False

            changes: dict[EntityType, Rows] = {
                entity: [r for r in data[entity] if r["id"] != record_id]
            }
            for dep, fk in dependents:
                changes[dep] = [r for r in data[dep] if r.get(fk) != record_id]

            await self._write(changes)
            logger.debug(f"Deleted {entity.value} {record_id}")
            return True


def _decode_rows(key: str, raw: str | None) -> Rows:
    if raw is None:
        return []
    try:
        rows = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError("parse_json", key, e) from e
    if not isinstance(rows, list):
        raise StorageError("parse_json", key, TypeError("Expected a JSON array"))
    return [row for row in rows if isinstance(row, dict)]


def _find(rows: Rows, record_id: str | None) -> dict[str, Any] | None:
    if not record_id:
        return None
    return next((row for row in rows if row.get("id") == record_id), None)


def _dedupe_by_key(entity: EntityType, rows: Rows) -> Rows:
    """Collapse join rows that share a natural key after a promotion.

    Prefers the row holding a remote id, then the newer row.
    """
    chosen: dict[tuple[str, ...], dict[str, Any]] = {}
    order: list[tuple[str, ...]] = []
    for row in rows:
        key = logical_key(entity, row)
        if key is None:
            return rows
        current = chosen.get(key)
        if current is None:
            chosen[key] = row
            order.append(key)
            continue
        if is_local_id(current["id"]) and not is_local_id(row["id"]):
            chosen[key] = row
        elif is_local_id(current["id"]) == is_local_id(row["id"]) and is_newer(row, current):
            chosen[key] = row
    return [chosen[key] for key in order]


def _merge_legacy_value(new_key: str, current: str | None, legacy: str) -> str:
    """Combine a legacy value with whatever already lives under the new key.

    Collections are unioned by id (current records win); scalar values
    only move when the new key is empty.
    """
    if current is None:
        return legacy
    try:
        current_value = json.loads(current)
        legacy_value = json.loads(legacy)
    except json.JSONDecodeError as e:
        raise StorageError("migrate", new_key, e) from e
    if isinstance(current_value, list) and isinstance(legacy_value, list):
        known = {row.get("id") for row in current_value if isinstance(row, dict)}
        extra = [row for row in legacy_value if isinstance(row, dict) and row.get("id") not in known]
        return json.dumps(current_value + extra)
    return current
