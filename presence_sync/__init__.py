"""
Presence Sync

Local-first storage and synchronization for club attendance tracking.

Provides:
- A local store that answers every read and write immediately
- A cached auth session accessor with single-flight refresh
- A reconciliation engine converging local data with Supabase

Usage:

    >>> from presence_sync import SyncConfig, create_sync_stack
    >>> async with await create_sync_stack(SyncConfig.from_environment()) as stack:
    ...     club = await stack.store.save_club(Club(name="Chess Club"))
    ...     await stack.engine.sync_now()

Offline use is fully supported: without a configured project (or while
signed out) the engine's cycles are no-ops and the local store keeps working.
"""

from .app import SyncStack, create_sync_stack
from .auth import AuthProvider, AuthSession, AuthUser, GoTrueAuthProvider, SessionCache
from .config import SyncConfig
from .conflict import Winner, resolve_conflict

# Exceptions
from .exceptions import (
    AuthError,
    InvalidRefreshTokenError,
    NotAuthenticatedError,
    PresenceSyncError,
    RemoteError,
    StorageError,
    ValidationError,
)
from .ids import LocalId, RecordId, RemoteId, is_local_id, new_local_id, parse_record_id
from .local import KeyValueStorage, LocalStore, MemoryKeyValueStorage, SQLiteKeyValueStorage
from .models import (
    AttendanceRecord,
    AttendanceStatus,
    Club,
    EntityType,
    Participant,
    ParticipantSession,
    Session,
)
from .remote import PostgrestRemoteStore, RemoteStore
from .sync import ReconciliationEngine, SyncPhase, SyncResult, SyncStatus

__version__ = "0.1.0"

__all__ = [
    # Composition
    "SyncStack",
    "create_sync_stack",
    "SyncConfig",
    # Models
    "AttendanceRecord",
    "AttendanceStatus",
    "Club",
    "EntityType",
    "Participant",
    "ParticipantSession",
    "Session",
    # Identifiers
    "LocalId",
    "RecordId",
    "RemoteId",
    "is_local_id",
    "new_local_id",
    "parse_record_id",
    # Local storage
    "KeyValueStorage",
    "LocalStore",
    "MemoryKeyValueStorage",
    "SQLiteKeyValueStorage",
    # Auth
    "AuthProvider",
    "AuthSession",
    "AuthUser",
    "GoTrueAuthProvider",
    "SessionCache",
    # Remote
    "PostgrestRemoteStore",
    "RemoteStore",
    # Sync
    "ReconciliationEngine",
    "SyncPhase",
    "SyncResult",
    "SyncStatus",
    "Winner",
    "resolve_conflict",
    # Exceptions
    "AuthError",
    "InvalidRefreshTokenError",
    "NotAuthenticatedError",
    "PresenceSyncError",
    "RemoteError",
    "StorageError",
    "ValidationError",
]
