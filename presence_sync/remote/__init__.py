"""
Remote store access for presence sync.
"""

from .base import Filters, RemoteStore
from .postgrest import PostgrestRemoteStore

__all__ = [
    "Filters",
    "PostgrestRemoteStore",
    "RemoteStore",
]
