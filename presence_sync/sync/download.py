"""
Download half of a sync cycle.

Fetches a club and everything under it that changed since the previous
cycle and merges it into the local store. Clubs new to this device are
fetched in full. Rows in the cycle's skip set are left out of the merge.
"""

from __future__ import annotations

from typing import Any

from ..local.store import LocalStore
from ..models import EntityType
from .context import CycleContext, GuardedRemote


class Downloader:
    """Pulls remote changes into the local store for one cycle."""

    def __init__(self, store: LocalStore, remote: GuardedRemote) -> None:
        self.store = store
        self.remote = remote

    async def download_club(self, ctx: CycleContext, club_id: str) -> int:
        """Merge remote changes of one club.

        Returns:
            Number of local records inserted or overwritten
        """
        log = ctx.for_club(club_id)
        since = ctx.last_sync if club_id in ctx.known_club_ids else None

        clubs = await self.remote.select(EntityType.CLUB.table, {"id": club_id}, since=since)
        sessions = await self.remote.select(
            EntityType.SESSION.table, {"club_id": club_id}, since=since
        )
        participants = await self.remote.select(
            EntityType.PARTICIPANT.table, {"club_id": club_id}, since=since
        )

        # Join rows are selected by parent, and unchanged parents count too
        session_ids = await self._parent_ids(EntityType.SESSION, club_id, sessions, since)
        participant_ids = await self._parent_ids(EntityType.PARTICIPANT, club_id, participants, since)

        enrollments = (
            await self.remote.select(
                EntityType.PARTICIPANT_SESSION.table,
                {"participant_id": participant_ids},
                since=since,
            )
            if participant_ids
            else []
        )
        attendance = (
            await self.remote.select(
                EntityType.ATTENDANCE.table, {"session_id": session_ids}, since=since
            )
            if session_ids
            else []
        )

        applied = 0
        # Parents before children
        for entity, rows in (
            (EntityType.CLUB, clubs),
            (EntityType.SESSION, sessions),
            (EntityType.PARTICIPANT, participants),
            (EntityType.PARTICIPANT_SESSION, enrollments),
            (EntityType.ATTENDANCE, attendance),
        ):
            if rows:
                applied += await self.store.merge_remote(entity, rows, ctx.skip_ids)

        if applied:
            log.info(f"Merged {applied} remote changes for club {club_id}")
        else:
            log.debug(f"No remote changes for club {club_id}")
        ctx.downloaded += applied
        return applied

    async def _parent_ids(
        self,
        entity: EntityType,
        club_id: str,
        changed: list[dict[str, Any]],
        since: str | None,
    ) -> list[str]:
        if since is None:
            return sorted(row["id"] for row in changed)
        rows = await self.remote.select(entity.table, {"club_id": club_id}, columns="id")
        return sorted(row["id"] for row in rows)
