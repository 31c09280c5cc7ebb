"""
Foreground facade.

What a tab/window uses to perform mutations: submit directly while
online, fall back to the durable queue otherwise, and keep a local
``SyncStatus`` up to date from the background's broadcasts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .exceptions import OfflineSyncError
from .logging_utils import get_context_logger
from .queue.store import PendingOperationStore
from .queue.types import OperationType
from .remote.submitter import OperationSubmitter
from .sync.broadcaster import ForegroundContext, StatusBroadcaster
from .sync.network import NetworkStatusObserver
from .sync.status import SYNC_COMPLETED, ForegroundSyncState, SyncStatus


@dataclass
class PerformResult:
    """What happened to a mutation submitted through ``OfflineClient.perform``."""

    submitted: bool
    operation_id: str | None = None

    @property
    def queued(self) -> bool:
        return self.operation_id is not None


class OfflineClient:
    """One foreground context's view of the offline layer.

    Example:
        >>> client = await runtime.connect_foreground()
        >>> result = await client.perform("quest-completion", {"questId": "q1"})
        >>> result.submitted or result.queued
        True
        >>> client.status.pending_count
        1
    """

    def __init__(
        self,
        context: ForegroundContext,
        store: PendingOperationStore,
        observer: NetworkStatusObserver,
        submitter: OperationSubmitter,
        request_sync: Callable[[], bool],
        broadcaster: StatusBroadcaster | None = None,
        owns_store: bool = False,
    ):
        """Initialize the client.

        Args:
            context: This context's message channel from the broadcaster
            store: Queue store connection used by this context
            observer: Network status as seen by this context
            submitter: Remote submit contract for direct calls
            request_sync: Asks the background context for a drain
            broadcaster: Used to disconnect on close
            owns_store: Close ``store`` together with the client
        """
        self.context = context
        self.store = store
        self.observer = observer
        self.submitter = submitter
        self._request_sync = request_sync
        self._broadcaster = broadcaster
        self._owns_store = owns_store
        self.state = ForegroundSyncState(store)
        self._listen_task: asyncio.Task[None] | None = None
        self.log = get_context_logger(__name__, context.context_id)

    @property
    def context_id(self) -> str:
        return self.context.context_id

    @property
    def status(self) -> SyncStatus:
        return self.state.status

    @property
    def is_online(self) -> bool:
        return self.observer.is_online

    async def load(self) -> SyncStatus:
        """Recompute local status from the store."""
        return await self.state.load()

    async def perform(self, operation_type: OperationType | str, payload: Any) -> PerformResult:
        """Submit a mutation, queueing it if that is not possible right now."""
        op_type = OperationType(operation_type)

        if self.is_online:
            try:
                outcome = await self.submitter.submit(op_type, payload)
                if outcome.success:
                    return PerformResult(submitted=True)
                self.log.info(f"Direct {op_type.value} rejected, queueing: {outcome.error}")
            except OfflineSyncError as e:
                self.log.info(f"Direct {op_type.value} failed, queueing: {e}")
            except Exception as e:
                # Any failure queues the mutation
                self.log.warning(
                    f"Direct {op_type.value} raised {type(e).__name__}, queueing: {e}",
                    exc_info=True,
                )

        operation_id = await self.save_offline_operation(op_type, payload)
        return PerformResult(submitted=False, operation_id=operation_id)

    async def save_offline_operation(self, operation_type: OperationType | str, payload: Any) -> str:
        """Queue a mutation and, when online, ask for an immediate sync.

        Raises:
            ValueError: Unknown operation type or non-JSON payload
            StorageIOError: The record could not be persisted
        """
        operation_id = await self.store.enqueue(operation_type, payload)
        self.state.record_enqueue()
        if self.is_online:
            self.request_sync()
        return operation_id

    def request_sync(self) -> bool:
        """Ask the background context for a drain (fire and forget)."""
        try:
            return self._request_sync()
        except Exception:
            self.log.exception("Sync request failed")
            return False

    def sync_offline_operations(self) -> bool:
        """Start a sync if online and none is running."""
        if not self.is_online or self.status.is_syncing:
            return False
        self.state.mark_syncing()
        return self.request_sync()

    async def process_messages(self) -> int:
        """Apply every message that has already arrived.

        Returns:
            Number of ``SYNC_COMPLETED`` messages applied
        """
        applied = 0
        for message in self.context.pending_messages():
            if await self._handle_message(message):
                applied += 1
        return applied

    async def _handle_message(self, message: dict[str, Any]) -> bool:
        if message.get("type") != SYNC_COMPLETED:
            self.log.debug(f"Ignoring message of type {message.get('type')!r}")
            return False
        try:
            await self.state.apply(message)
        except (OfflineSyncError, KeyError, ValueError) as e:
            self.log.warning(f"Could not apply sync message: {e}")
            return False
        return True

    def start_listening(self) -> None:
        """Apply broadcasts as they arrive, in the background."""
        if self._listen_task is not None:
            return

        async def listen_loop() -> None:
            while True:
                try:
                    message = await self.context.receive()
                    await self._handle_message(message)
                except asyncio.CancelledError:
                    break

        self._listen_task = asyncio.create_task(listen_loop())

    async def stop_listening(self) -> None:
        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

    async def close(self) -> None:
        await self.stop_listening()
        if self._broadcaster is not None:
            await self._broadcaster.disconnect(self.context_id)
        if self._owns_store:
            await self.store.close()
