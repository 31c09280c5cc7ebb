"""
Process-wide runtime for one execution context.

Everything the offline layer needs is built once here, explicitly, at
startup: there are no module-level caches or singletons. The background
context owns the cache, the coordinator, and the broadcaster; foreground
contexts attach through ``connect_foreground`` and talk to it only via
messages and the shared queue database.
"""

from __future__ import annotations

from typing import Any

from .cache.store import CacheStore
from .cache.strategy import StrategySelector
from .cache.types import FetchRequest, FetchResponse
from .client import OfflineClient
from .config import OfflineConfig
from .logging_utils import get_context_logger
from .queue.store import PendingOperationStore
from .remote.fetcher import Fetcher, HttpFetcher
from .remote.submitter import HttpOperationSubmitter, OperationSubmitter
from .sync.broadcaster import StatusBroadcaster
from .sync.coordinator import SyncCoordinator, TriggerReason
from .sync.network import NetworkState, NetworkStatusObserver
from .sync.wake import WakeRegistrar

logger = get_context_logger(__name__)


class OfflineRuntime:
    """Background execution context: cache, queue, sync, and broadcasts.

    Example:
        >>> async with await OfflineRuntime.create(OfflineConfig.from_env()) as runtime:
        ...     tab = await runtime.connect_foreground()
        ...     await tab.perform("mood-update", {"mood": "calm"})
        ...     response = await runtime.handle_fetch(FetchRequest(url=f"{runtime.config.base_url}/"))
    """

    def __init__(
        self,
        config: OfflineConfig,
        store: PendingOperationStore,
        cache_store: CacheStore,
        fetcher: Fetcher,
        submitter: OperationSubmitter,
        observer: NetworkStatusObserver,
        broadcaster: StatusBroadcaster,
        *,
        wake_supported: bool = True,
        owned: list[Any] | None = None,
    ):
        self.config = config
        self.store = store
        self.cache_store = cache_store
        self.fetcher = fetcher
        self.submitter = submitter
        self.observer = observer
        self.broadcaster = broadcaster

        self.selector = StrategySelector.from_config(config, cache_store, fetcher)
        self.coordinator = SyncCoordinator(
            store,
            submitter,
            broadcaster,
            retry=config.retry,
            sync_tag=config.sync_tag,
            submit_timeout=config.submit_timeout,
        )
        self.wake = WakeRegistrar(self.coordinator.handle_wake, supported=wake_supported)
        # Collaborators created by ``create`` and closed with the runtime
        self._owned = owned or []
        self._clients: list[OfflineClient] = []
        self._remove_listener: Any = None
        self._started = False

    @classmethod
    async def create(
        cls,
        config: OfflineConfig | None = None,
        *,
        submitter: OperationSubmitter | None = None,
        fetcher: Fetcher | None = None,
        initial_online: bool = True,
        wake_supported: bool = True,
    ) -> OfflineRuntime:
        """Build a runtime and open its queue store.

        Args:
            config: Configuration (defaults to ``OfflineConfig.from_env()``)
            submitter: Remote submit contract (defaults to HTTP)
            fetcher: Network fetch contract (defaults to HTTP)
            initial_online: Starting network state
            wake_supported: Whether background wakes are available
        """
        if config is None:
            config = OfflineConfig.from_env()

        owned: list[Any] = []
        if fetcher is None:
            fetcher = HttpFetcher(timeout=config.submit_timeout)
            owned.append(fetcher)
        if submitter is None:
            submitter = HttpOperationSubmitter(
                config.base_url, config.endpoints, timeout=config.submit_timeout
            )
            owned.append(submitter)

        store = await PendingOperationStore.create(config.queue_path)
        return cls(
            config,
            store,
            CacheStore(config.cache_dir),
            fetcher,
            submitter,
            NetworkStatusObserver(
                initial_online=initial_online,
                probe_url=config.connectivity_url or config.base_url,
                probe_timeout=config.connectivity_timeout,
            ),
            StatusBroadcaster(),
            wake_supported=wake_supported,
            owned=owned,
        )

    async def start(self, *, install: bool = True, poll: bool = False) -> None:
        """Install and activate the cache, then start syncing.

        Args:
            install: Seed the cache with critical assets first
            poll: Probe connectivity every ``config.poll_interval`` seconds
        """
        if self._started:
            return

        if install:
            await self.selector.install()
        await self.selector.activate()

        self._remove_listener = self.observer.add_listener(self._on_network_transition)
        await self.coordinator.start()
        if poll:
            self.observer.start_polling(self.config.poll_interval)

        self._started = True

    async def _on_network_transition(self, previous: NetworkState, current: NetworkState) -> None:
        if previous is NetworkState.OFFLINE and current is NetworkState.ONLINE:
            self.coordinator.trigger(TriggerReason.ONLINE)

    async def handle_fetch(self, request: FetchRequest) -> FetchResponse:
        """Route a request through the strategy selector."""
        return await self.selector.handle(request)

    def request_sync(self) -> bool:
        """Foreground request for a drain, made right after an enqueue."""
        return self.coordinator.trigger(TriggerReason.FOREGROUND)

    async def register_background_sync(self, delay: float = 0.0) -> bool:
        """Schedule a background wake for queued work if the host supports it."""
        return await self.wake.register(self.config.sync_tag, delay)

    async def connect_foreground(self, context_id: str | None = None) -> OfflineClient:
        """Attach a foreground context.

        File-backed queues get a dedicated connection per context, as
        separate tabs would have.
        """
        context = await self.broadcaster.connect(context_id)
        if str(self.config.queue_path) == ":memory:":
            store, owns_store = self.store, False
        else:
            store, owns_store = await PendingOperationStore.create(self.config.queue_path), True

        client = OfflineClient(
            context,
            store,
            self.observer,
            self.submitter,
            self.request_sync,
            broadcaster=self.broadcaster,
            owns_store=owns_store,
        )
        await client.load()
        self._clients.append(client)
        return client

    async def close(self) -> None:
        for client in self._clients:
            await client.close()
        self._clients.clear()

        await self.wake.cancel_all()
        await self.coordinator.stop()
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        await self.observer.close()

        for collaborator in self._owned:
            await collaborator.close()

        await self.store.close()
        self._started = False
        logger.info("Offline runtime closed")

    async def __aenter__(self) -> OfflineRuntime:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
