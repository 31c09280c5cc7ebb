"""
Background sync module.

Drains queued operations when the network allows and reports the
results to every open foreground context.
"""

from .broadcaster import ForegroundContext, StatusBroadcaster
from .coordinator import DEFAULT_SYNC_TAG, SyncCoordinator, TriggerReason
from .network import NetworkState, NetworkStatusObserver
from .retry import RetryPolicy
from .status import (
    SYNC_COMPLETED,
    ForegroundSyncState,
    SyncCompletedMessage,
    SyncResult,
    SyncStatus,
)
from .wake import WakeRegistrar

__all__ = [
    "SyncCoordinator",
    "TriggerReason",
    "DEFAULT_SYNC_TAG",
    "StatusBroadcaster",
    "ForegroundContext",
    "NetworkStatusObserver",
    "NetworkState",
    "RetryPolicy",
    "SyncResult",
    "SyncStatus",
    "SyncCompletedMessage",
    "ForegroundSyncState",
    "SYNC_COMPLETED",
    "WakeRegistrar",
]
