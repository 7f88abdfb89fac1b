"""
Local-first storage for presence sync.

The UI reads and writes only through LocalStore; KeyValueStorage backends
decide where the bytes live.
"""

from .kv import KeyValueStorage, MemoryKeyValueStorage, SQLiteKeyValueStorage
from .store import LocalStore

__all__ = [
    "KeyValueStorage",
    "LocalStore",
    "MemoryKeyValueStorage",
    "SQLiteKeyValueStorage",
]
