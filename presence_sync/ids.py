"""Record identifier utilities.

Centralizes the identifier format so callers never test string prefixes
directly.

Temporary ids: local-{epoch_ms}-{random9}, minted on the device for records
the remote store has never confirmed.
Remote ids: whatever the remote store assigned (UUIDs for Supabase).

Persisted records keep the plain string form; code that needs to decide
"has this been promoted?" goes through parse_record_id() and gets a
LocalId or RemoteId back.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass

LOCAL_ID_PREFIX = "local-"

_RANDOM_ALPHABET = string.ascii_lowercase + string.digits
_RANDOM_LENGTH = 9


@dataclass(frozen=True)
class LocalId:
    """Identifier of a record never confirmed by the remote store."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RemoteId:
    """Identifier issued by the remote store."""

    value: str

    def __str__(self) -> str:
        return self.value


RecordId = LocalId | RemoteId


def new_local_id(now_ms: int | None = None) -> str:
    """Mint a globally unique temporary identifier (time + random)."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(_RANDOM_LENGTH))
    return f"{LOCAL_ID_PREFIX}{now_ms}-{suffix}"


def parse_record_id(raw: str) -> RecordId:
    """Classify a stored identifier.

    Raises ValueError on empty input.
    """
    if not raw:
        raise ValueError("Empty record id")
    if raw.startswith(LOCAL_ID_PREFIX):
        return LocalId(raw)
    return RemoteId(raw)


def is_local_id(raw: str | None) -> bool:
    """True for temporary ids, and for missing ids (nothing to reference remotely)."""
    if not raw:
        return True
    return isinstance(parse_record_id(raw), LocalId)


def remote_ids(raw_ids: list[str]) -> list[str]:
    """Filter a list of stored ids down to the promoted ones."""
    return [raw for raw in raw_ids if not is_local_id(raw)]
