"""
Upload half of a sync cycle.

Three passes, all before any download:

1. New clubs: every club still holding a temporary id is matched to an
   existing remote club of the same name and owner, or inserted. Its
   sessions and participants are inserted right after, so their club_id is
   already remote.
2. Pending deletes: promoted clubs deleted on this device are removed
   remotely (owner only, full cascade).
3. Held clubs: sessions and participants are diffed by id, enrollments and
   attendance by natural key. The local set is pushed; remote-only rows are
   deleted only by the club owner.

Every row this device writes remotely lands in the cycle's skip set.
"""

from __future__ import annotations

from typing import Any

from ..conflict import Winner, resolve_conflict
from ..ids import is_local_id, remote_ids
from ..local.store import LocalStore
from ..models import EntityType, logical_key, remote_payload
from .context import CycleContext, GuardedRemote

CLUB = EntityType.CLUB
SESSION = EntityType.SESSION
PARTICIPANT = EntityType.PARTICIPANT
PARTICIPANT_SESSION = EntityType.PARTICIPANT_SESSION
ATTENDANCE = EntityType.ATTENDANCE


class Uploader:
    """Pushes local state to the remote store for one cycle."""

    def __init__(self, store: LocalStore, remote: GuardedRemote) -> None:
        self.store = store
        self.remote = remote

    # =========================================================================
    # New clubs
    # =========================================================================

    async def upload_new_clubs(self, ctx: CycleContext) -> None:
        snapshot = await self.store.snapshot()
        for club in snapshot[CLUB]:
            if not is_local_id(club["id"]):
                continue
            try:
                await self._promote_new_club(ctx, club)
            except Exception as e:
                ctx.record_error(f"Failed to upload club {club.get('name')!r}: {e}")

    async def _promote_new_club(self, ctx: CycleContext, club: dict[str, Any]) -> None:
        log = ctx.for_club(club["id"])
        existing = await self.remote.select(
            CLUB.table, {"name": club["name"], "owner_id": ctx.user_id}, limit=1
        )

        if existing:
            server_club = existing[0]
            log.info(f"Club {club['name']!r} already exists remotely as {server_club['id']}")
            identity = {"id": server_club["id"], "owner_id": server_club.get("owner_id")}
            promoted = await self.store.promote(CLUB, club["id"], identity)
        else:
            payload = remote_payload(CLUB, club)
            payload["owner_id"] = ctx.user_id
            server_club = await self.remote.insert(CLUB.table, payload)
            ctx.uploaded += 1
            ctx.skip_ids.add(server_club["id"])
            promoted = await self.store.promote(CLUB, club["id"], server_club, uploaded_row=club)
            log.info(f"Club {club['name']!r} uploaded as {server_club['id']}")

        if promoted is None:
            return

        snapshot = await self.store.snapshot()
        for entity in (SESSION, PARTICIPANT):
            for row in snapshot[entity]:
                if row.get("club_id") != server_club["id"] or not is_local_id(row["id"]):
                    continue
                try:
                    await self._insert_row(ctx, entity, row)
                except Exception as e:
                    ctx.record_error(f"Failed to upload {entity.value} {row['id']}: {e}")

    # =========================================================================
    # Pending deletes
    # =========================================================================

    async def process_pending_deletes(self, ctx: CycleContext) -> set[str]:
        """Remove locally deleted clubs remotely.

        Returns:
            Club ids whose remote delete failed and must stay excluded from
            download until a later cycle succeeds
        """
        remaining: set[str] = set()
        for tombstone in await self.store.get_pending_deletes():
            club_id = tombstone.get("id")
            if tombstone.get("entity") != CLUB.value or not club_id:
                continue
            log = ctx.for_club(club_id)
            try:
                rows = await self.remote.select(CLUB.table, {"id": club_id}, limit=1)
                if rows and rows[0].get("owner_id") == ctx.user_id:
                    await self._delete_club_remotely(ctx, club_id)
                    log.info(f"Deleted club {club_id} remotely")
                elif rows:
                    log.info(f"Not the owner of club {club_id}, removed locally only")
                await self.store.clear_pending_delete(CLUB, club_id)
            except Exception as e:
                remaining.add(club_id)
                ctx.record_error(f"Failed to delete club {club_id} remotely: {e}")
        return remaining

    async def _delete_club_remotely(self, ctx: CycleContext, club_id: str) -> None:
        sessions = await self.remote.select(SESSION.table, {"club_id": club_id}, columns="id")
        participants = await self.remote.select(
            PARTICIPANT.table, {"club_id": club_id}, columns="id"
        )
        session_ids = [s["id"] for s in sessions]
        participant_ids = [p["id"] for p in participants]

        await self.remote.delete(PARTICIPANT_SESSION.table, {"participant_id": participant_ids})
        await self.remote.delete(PARTICIPANT_SESSION.table, {"session_id": session_ids})
        await self.remote.delete(ATTENDANCE.table, {"session_id": session_ids})
        await self.remote.delete(ATTENDANCE.table, {"participant_id": participant_ids})
        await self.remote.delete(PARTICIPANT.table, {"club_id": club_id})
        await self.remote.delete(SESSION.table, {"club_id": club_id})
        await self.remote.delete(CLUB.table, {"id": club_id})
        ctx.deleted += 1

    # =========================================================================
    # Held clubs
    # =========================================================================

    async def upload_club(self, ctx: CycleContext, club_id: str) -> None:
        """Push one locally held, promoted club and everything under it."""
        log = ctx.for_club(club_id)
        snapshot = await self.store.snapshot()
        club = next((c for c in snapshot[CLUB] if c["id"] == club_id), None)
        if club is None:
            return

        rows = await self.remote.select(CLUB.table, {"id": club_id}, limit=1)
        if not rows:
            log.warning(f"Club {club_id} is not visible remotely, skipping upload")
            return

        remote_club = rows[0]
        is_owner = remote_club.get("owner_id") == ctx.user_id
        # Deletes need a complete local view: clubs adopted this cycle have none yet
        can_delete = is_owner and club_id in ctx.known_club_ids

        if is_owner:
            try:
                await self._push_update(ctx, CLUB, club, remote_club)
            except Exception as e:
                ctx.record_error(f"Failed to update club {club_id}: {e}")

        remote_children: dict[EntityType, list[dict[str, Any]]] = {}
        for entity in (SESSION, PARTICIPANT):
            remote_children[entity] = await self._sync_children(
                ctx, entity, club_id, snapshot[entity], can_delete
            )

        # Re-read: children promoted above rewrote the join rows
        snapshot = await self.store.snapshot()
        for entity in (PARTICIPANT_SESSION, ATTENDANCE):
            await self._sync_links(ctx, entity, club_id, snapshot, remote_children, can_delete)

    async def _sync_children(
        self,
        ctx: CycleContext,
        entity: EntityType,
        club_id: str,
        all_rows: list[dict[str, Any]],
        can_delete: bool,
    ) -> list[dict[str, Any]]:
        """Reconcile sessions or participants of a club by id."""
        local_rows = [r for r in all_rows if r.get("club_id") == club_id]
        remote_rows = await self.remote.select(entity.table, {"club_id": club_id})
        remote_by_id = {r["id"]: r for r in remote_rows}
        local_ids = {r["id"] for r in local_rows}

        if can_delete:
            for remote_id, remote_row in remote_by_id.items():
                if remote_id in local_ids or not ctx.deletable(remote_row):
                    continue
                await self._delete_row(ctx, entity, remote_id)

        for local in local_rows:
            try:
                if is_local_id(local["id"]):
                    await self._insert_row(ctx, entity, local)
                elif local["id"] in remote_by_id:
                    await self._push_update(ctx, entity, local, remote_by_id[local["id"]])
                else:
                    await self._restore_row(ctx, entity, local)
            except Exception as e:
                ctx.record_error(f"Failed to upload {entity.value} {local['id']}: {e}")

        return remote_rows

    async def _sync_links(
        self,
        ctx: CycleContext,
        entity: EntityType,
        club_id: str,
        snapshot: dict[EntityType, list[dict[str, Any]]],
        remote_children: dict[EntityType, list[dict[str, Any]]],
        can_delete: bool,
    ) -> None:
        """Reconcile enrollments or attendance of a club by natural key."""
        session_ids = {s["id"] for s in snapshot[SESSION] if s.get("club_id") == club_id}
        participant_ids = {p["id"] for p in snapshot[PARTICIPANT] if p.get("club_id") == club_id}
        local_rows = [
            r
            for r in snapshot[entity]
            if r.get("session_id") in session_ids or r.get("participant_id") in participant_ids
        ]

        if entity == PARTICIPANT_SESSION:
            column, parents = "participant_id", PARTICIPANT
            known = participant_ids
        else:
            column, parents = "session_id", SESSION
            known = session_ids
        parent_ids = set(remote_ids(list(known))) | {r["id"] for r in remote_children[parents]}
        remote_rows = (
            await self.remote.select(entity.table, {column: sorted(parent_ids)})
            if parent_ids
            else []
        )

        local_by_key = {logical_key(entity, r): r for r in local_rows}
        remote_by_key = {logical_key(entity, r): r for r in remote_rows}

        if can_delete:
            for key, remote_row in remote_by_key.items():
                if key in local_by_key or not ctx.deletable(remote_row):
                    continue
                await self._delete_row(ctx, entity, remote_row["id"])

        for key, local in local_by_key.items():
            if is_local_id(local.get("participant_id")) or is_local_id(local.get("session_id")):
                # Parent not promoted yet; retried on a later cycle
                continue
            try:
                remote_row = remote_by_key.get(key)
                if remote_row is None:
                    await self._insert_row(ctx, entity, local)
                    continue
                if local["id"] != remote_row["id"]:
                    adopted = await self.store.promote(entity, local["id"], {"id": remote_row["id"]})
                    if adopted is None:
                        continue
                    local = adopted
                if entity == ATTENDANCE and local.get("status") != remote_row.get("status"):
                    await self._push_update(ctx, entity, local, remote_row)
            except Exception as e:
                ctx.record_error(f"Failed to upload {entity.value} {local['id']}: {e}")

    # =========================================================================
    # Row operations
    # =========================================================================

    async def _insert_row(
        self, ctx: CycleContext, entity: EntityType, row: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Insert a row remotely and promote it (and its dependents) locally."""
        server_row = await self.remote.insert(entity.table, remote_payload(entity, row))
        ctx.uploaded += 1
        ctx.skip_ids.add(server_row["id"])
        return await self.store.promote(entity, row["id"], server_row, uploaded_row=row)

    async def _restore_row(self, ctx: CycleContext, entity: EntityType, row: dict[str, Any]) -> None:
        """Re-create a promoted row that no longer exists remotely."""
        server_row = await self.remote.upsert(
            entity.table, {"id": row["id"], **remote_payload(entity, row)}
        )
        ctx.uploaded += 1
        ctx.skip_ids.add(server_row["id"])
        await self.store.promote(entity, row["id"], server_row, uploaded_row=row)

    async def _push_update(
        self,
        ctx: CycleContext,
        entity: EntityType,
        local: dict[str, Any],
        remote_row: dict[str, Any],
    ) -> bool:
        """Overwrite a remote row with the local copy unless remote wins."""
        if resolve_conflict(local, remote_row) is Winner.REMOTE:
            return False

        payload = remote_payload(entity, local)
        if all(remote_row.get(column) == value for column, value in payload.items()):
            return False

        server_row = await self.remote.update(entity.table, local["id"], payload)
        if server_row is None:
            ctx.log.warning(f"{entity.value} {local['id']} vanished remotely during update")
            return False
        ctx.uploaded += 1
        ctx.skip_ids.add(local["id"])
        await self.store.promote(entity, local["id"], server_row, uploaded_row=local)
        return True

    async def _delete_row(self, ctx: CycleContext, entity: EntityType, row_id: str) -> None:
        try:
            if await self.remote.delete(entity.table, {"id": row_id}):
                ctx.deleted += 1
                ctx.log.info(f"Deleted {entity.value} {row_id} remotely")
        except Exception as e:
            ctx.record_error(f"Failed to delete {entity.value} {row_id}: {e}")
