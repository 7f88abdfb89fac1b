"""
Reconciliation between the local store and the shared remote store.
"""

from .engine import ReconciliationEngine, SyncPhase
from .status import StatusPublisher, SyncResult, SyncStatus

__all__ = [
    "ReconciliationEngine",
    "StatusPublisher",
    "SyncPhase",
    "SyncResult",
    "SyncStatus",
]
