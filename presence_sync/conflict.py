"""
Timestamp-based conflict resolution.

Conflicts are resolved per whole record, never per field. Every merge path
(upload conflict checks and download merges) goes through the functions in
this module so that "newer" means the same thing everywhere.

- A record's timestamp is its ``updated_at``, falling back to ``created_at``.
- Upload: local overwrites remote only when local is strictly newer
  (remote wins ties, see resolve_conflict).
- Download: remote overwrites local only when remote is strictly newer
  (local wins ties, see should_apply_remote).
- A record without any timestamp cannot be compared; uploads then proceed
  unconditionally.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Winner(Enum):
    """Which copy of a record survives a conflict."""

    LOCAL = "local"
    REMOTE = "remote"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp (``Z`` suffix allowed).

    Naive values are taken as UTC. Returns None for missing or malformed
    input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def record_timestamp(row: dict[str, Any]) -> datetime | None:
    """The timestamp a record is ordered by: updated_at, else created_at."""
    return parse_timestamp(row.get("updated_at")) or parse_timestamp(row.get("created_at"))


def is_newer(candidate: dict[str, Any], reference: dict[str, Any]) -> bool | None:
    """The single "newer-than" comparator.

    Returns:
        True if candidate is strictly newer than reference, False if it is
        not, None if either side lacks a usable timestamp.
    """
    candidate_ts = record_timestamp(candidate)
    reference_ts = record_timestamp(reference)
    if candidate_ts is None or reference_ts is None:
        return None
    return candidate_ts > reference_ts


def resolve_conflict(local: dict[str, Any], remote: dict[str, Any]) -> Winner:
    """Decide an update conflict before overwriting a remote record.

    The remote copy wins unless the local copy is strictly newer, so an
    edit made by another device is never clobbered by an older local one.
    Without timestamps the local copy wins (always upload).
    """
    local_newer = is_newer(local, remote)
    if local_newer is None or local_newer:
        return Winner.LOCAL
    return Winner.REMOTE


def should_apply_remote(local: dict[str, Any] | None, remote: dict[str, Any]) -> bool:
    """Decide whether a downloaded record overwrites the local copy.

    Unknown locally: always apply. Otherwise only when remote is strictly
    newer; ties and incomparable records keep local.
    """
    if local is None:
        return True
    return bool(is_newer(remote, local))


def merge_record(local: dict[str, Any] | None, remote: dict[str, Any]) -> dict[str, Any]:
    """Result of merging a downloaded record into the local copy.

    Local-only fields the server does not know about are preserved when the
    remote copy wins.
    """
    if local is None:
        return dict(remote)
    if should_apply_remote(local, remote):
        return {**local, **remote}
    return local
