"""
Solivrah Offline

Offline-first sync layer for the Solivrah habit app.

Provides:
- Versioned response cache with network-first and cache-first strategies
- Durable queue of user mutations made while offline
- Background sync that drains the queue when connectivity returns
- Status broadcasts to every open foreground context

Usage:

    >>> from solivrah_offline import OfflineConfig, OfflineRuntime
    >>> async with await OfflineRuntime.create(OfflineConfig.from_env()) as runtime:
    ...     tab = await runtime.connect_foreground()
    ...     tab.start_listening()
    ...
    ...     # Submitted directly when online, queued otherwise
    ...     result = await tab.perform("quest-completion", {"questId": "q1"})
    ...
    ...     # Later, when the network comes back
    ...     await runtime.observer.set_online(True)

Lower-level pieces:

    # Queue only
    from solivrah_offline.queue import PendingOperationStore

    # Cache only
    from solivrah_offline.cache import CacheStore, StrategySelector

    # Drain loop only
    from solivrah_offline.sync import SyncCoordinator, StatusBroadcaster
"""

from .cache import CacheStore, FetchRequest, FetchResponse, Strategy, StrategySelector
from .client import OfflineClient, PerformResult
from .config import OfflineConfig
from .exceptions import (
    CacheWriteError,
    ConfigurationError,
    OfflineSyncError,
    QueueRecordCorruption,
    ServerRejectionError,
    StorageConnectionError,
    StorageIOError,
    TransientNetworkError,
)
from .queue import OperationType, PendingOperation, PendingOperationStore
from .remote import CallableSubmitter, HttpFetcher, HttpOperationSubmitter, SubmitOutcome
from .runtime import OfflineRuntime
from .sync import (
    NetworkStatusObserver,
    RetryPolicy,
    StatusBroadcaster,
    SyncCompletedMessage,
    SyncCoordinator,
    SyncResult,
    SyncStatus,
    TriggerReason,
    WakeRegistrar,
)

__version__ = "0.1.0"

__all__ = [
    # Runtime
    "OfflineRuntime",
    "OfflineClient",
    "PerformResult",
    "OfflineConfig",
    # Cache
    "CacheStore",
    "StrategySelector",
    "Strategy",
    "FetchRequest",
    "FetchResponse",
    # Queue
    "PendingOperationStore",
    "PendingOperation",
    "OperationType",
    # Remote
    "SubmitOutcome",
    "CallableSubmitter",
    "HttpOperationSubmitter",
    "HttpFetcher",
    # Sync
    "SyncCoordinator",
    "TriggerReason",
    "RetryPolicy",
    "StatusBroadcaster",
    "NetworkStatusObserver",
    "WakeRegistrar",
    "SyncResult",
    "SyncStatus",
    "SyncCompletedMessage",
    # Exceptions
    "OfflineSyncError",
    "TransientNetworkError",
    "ServerRejectionError",
    "CacheWriteError",
    "QueueRecordCorruption",
    "StorageIOError",
    "StorageConnectionError",
    "ConfigurationError",
]
