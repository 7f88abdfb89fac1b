"""
Entity types for club attendance.

Every entity is a JSON-serializable record identified by an opaque string
id. Local storage and the remote store both exchange plain dicts; these
dataclasses are the typed view the CRUD surface hands to callers.

Relationships:
- Session and Participant belong to exactly one Club (club_id)
- ParticipantSession links a Participant to a Session it regularly attends
- AttendanceRecord marks one Participant present/absent at one Session date
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class EntityType(Enum):
    """Entity collections. The value is the remote table name."""

    CLUB = "clubs"
    SESSION = "sessions"
    PARTICIPANT = "participants"
    PARTICIPANT_SESSION = "participant_sessions"
    ATTENDANCE = "attendance"

    @property
    def table(self) -> str:
        return self.value


class AttendanceStatus(Enum):
    """Attendance outcome for one participant at one session date."""

    PRESENT = "present"
    ABSENT = "absent"


# Columns sent to the remote store per table. Anything else on a local
# record (preferred_session_ids, timestamps maintained by the server) stays
# on the device.
REMOTE_COLUMNS: dict[EntityType, tuple[str, ...]] = {
    EntityType.CLUB: ("name", "description", "owner_id", "stats_reset_date"),
    EntityType.SESSION: ("club_id", "day_of_week", "start_time", "end_time"),
    EntityType.PARTICIPANT: ("club_id", "first_name", "last_name", "is_long_term_sick"),
    EntityType.PARTICIPANT_SESSION: ("participant_id", "session_id"),
    EntityType.ATTENDANCE: ("session_id", "participant_id", "date", "status"),
}

# (dependent entity, foreign key column) rewritten when a parent is promoted
REFERENCES: dict[EntityType, tuple[tuple[EntityType, str], ...]] = {
    EntityType.CLUB: (
        (EntityType.SESSION, "club_id"),
        (EntityType.PARTICIPANT, "club_id"),
    ),
    EntityType.SESSION: (
        (EntityType.PARTICIPANT_SESSION, "session_id"),
        (EntityType.ATTENDANCE, "session_id"),
    ),
    EntityType.PARTICIPANT: (
        (EntityType.PARTICIPANT_SESSION, "participant_id"),
        (EntityType.ATTENDANCE, "participant_id"),
    ),
    EntityType.PARTICIPANT_SESSION: (),
    EntityType.ATTENDANCE: (),
}


def utc_now_iso() -> str:
    """Current time as an ISO 8601 UTC string (the format stored on records)."""
    return datetime.now(UTC).isoformat()


def logical_key(entity: EntityType, row: dict[str, Any]) -> tuple[str, ...] | None:
    """Natural key used for de-duplication of join-style records.

    ParticipantSession: (participant_id, session_id)
    AttendanceRecord: (participant_id, session_id, date)
    Other entities are keyed by id only and return None.
    """
    if entity == EntityType.PARTICIPANT_SESSION:
        return (row.get("participant_id", ""), row.get("session_id", ""))
    if entity == EntityType.ATTENDANCE:
        return (row.get("participant_id", ""), row.get("session_id", ""), row.get("date", ""))
    return None


def remote_payload(entity: EntityType, row: dict[str, Any]) -> dict[str, Any]:
    """Project a local row onto the columns the remote table accepts."""
    payload = {column: row.get(column) for column in REMOTE_COLUMNS[entity]}
    if entity == EntityType.PARTICIPANT:
        payload["is_long_term_sick"] = bool(payload.get("is_long_term_sick"))
    if entity == EntityType.CLUB:
        if payload.get("description") is None:
            payload["description"] = ""
        if payload.get("owner_id") is None:
            # Never null out the owner of an existing club
            del payload["owner_id"]
    return payload


class _Record:
    """Dict conversion shared by all entity dataclasses."""

    _transient: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._transient:
                continue
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Deserialize from a dictionary, ignoring unknown columns."""
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Club(_Record):
    """A club. The owner is the authority for destructive operations."""

    name: str
    id: str | None = None
    description: str | None = None
    owner_id: str | None = None
    stats_reset_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session(_Record):
    """A recurring day/time slot of a club."""

    club_id: str
    day_of_week: str
    start_time: str
    end_time: str
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Participant(_Record):
    """A person enrolled in a club.

    preferred_session_ids is populated on read from enrollment rows and is
    never persisted on the participant itself.
    """

    club_id: str
    first_name: str
    last_name: str
    id: str | None = None
    is_long_term_sick: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    preferred_session_ids: list[str] | None = field(default=None, compare=False)

    _transient = ("preferred_session_ids",)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class ParticipantSession(_Record):
    """Enrollment: the participant regularly attends the session."""

    participant_id: str
    session_id: str
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class AttendanceRecord(_Record):
    """Presence of one participant at one session on one date."""

    session_id: str
    participant_id: str
    date: str
    status: AttendanceStatus = AttendanceStatus.PRESENT
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = AttendanceStatus(self.status)


MODEL_TYPES: dict[EntityType, type[_Record]] = {
    EntityType.CLUB: Club,
    EntityType.SESSION: Session,
    EntityType.PARTICIPANT: Participant,
    EntityType.PARTICIPANT_SESSION: ParticipantSession,
    EntityType.ATTENDANCE: AttendanceRecord,
}
