"""
Sync coordinator.

Drains the pending operation store against the remote API. Runs as an
actor: triggers are posted to a mailbox and a single task consumes them,
so at most one drain is ever in flight. Triggers that arrive while a
drain is running are dropped, not queued.

Within a drain every operation is submitted independently and
concurrently. Each one is removed from the store as soon as its own
acknowledgement arrives; failures stay queued with backoff bookkeeping
and are dead-lettered after the retry ceiling.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

from ..exceptions import OfflineSyncError, ServerRejectionError, TransientNetworkError
from ..logging_utils import get_context_logger
from ..queue.store import PendingOperationStore
from ..queue.types import DeliveryState, PendingOperation
from ..remote.submitter import OperationSubmitter
from .broadcaster import StatusBroadcaster
from .retry import RetryPolicy
from .status import SyncCompletedMessage, SyncResult, SyncStatus

logger = get_context_logger(__name__)

DEFAULT_SYNC_TAG = "offline-quest-completion"


class TriggerReason(Enum):
    """What asked for a drain."""

    ONLINE = "online"  # offline -> online transition
    WAKE = "wake"  # background wake for the sync tag
    FOREGROUND = "foreground"  # foreground request right after an enqueue
    MANUAL = "manual"  # operator or test


class SyncCoordinator:
    """Drives the pending operation queue to empty.

    Example:
        >>> coordinator = SyncCoordinator(store, submitter, broadcaster)
        >>> await coordinator.start()
        >>> coordinator.trigger(TriggerReason.ONLINE)
        True
        >>> await coordinator.wait_idle()
        >>> await coordinator.stop()
    """

    def __init__(
        self,
        store: PendingOperationStore,
        submitter: OperationSubmitter,
        broadcaster: StatusBroadcaster,
        *,
        retry: RetryPolicy | None = None,
        sync_tag: str = DEFAULT_SYNC_TAG,
        submit_timeout: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the coordinator.

        Args:
            store: Queue to drain
            submitter: Remote submit contract
            broadcaster: Channel to the foreground contexts
            retry: Backoff and dead-letter policy
            sync_tag: Background-wake tag this coordinator answers to
            submit_timeout: Seconds before a single submission is abandoned
            clock: Epoch-seconds clock used for backoff windows
        """
        self.store = store
        self.submitter = submitter
        self.broadcaster = broadcaster
        self.retry = retry or RetryPolicy()
        self.sync_tag = sync_tag
        self.submit_timeout = submit_timeout
        self._clock = clock

        self.status = SyncStatus()
        self._draining = False
        self._acknowledged: set[str] = set()
        self._mailbox: asyncio.Queue[TriggerReason] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_syncing(self) -> bool:
        return self._draining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Recompute status from the store and start the actor task."""
        if self.running:
            return
        try:
            self.status.pending_count = await self.store.count()
        except OfflineSyncError as e:
            logger.error(f"Could not read pending count at startup: {e}")
        self._task = asyncio.create_task(self._actor_loop())
        logger.info(f"Sync coordinator started with {self.status.pending_count} pending operation(s)")

    async def stop(self) -> None:
        """Stop the actor task. A drain in progress is cancelled."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        # Triggers accepted but never consumed
        self._mailbox = asyncio.Queue()
        self._draining = False
        self.status.is_syncing = False
        logger.info("Sync coordinator stopped")

    def trigger(self, reason: TriggerReason = TriggerReason.MANUAL) -> bool:
        """Ask the actor for a drain.

        Returns:
            False if a drain is already running (the trigger is dropped)
        """
        if self._draining:
            logger.debug(f"Drain already running, ignoring {reason.value} trigger")
            return False
        if not self.running:
            logger.warning(f"Sync coordinator not started, ignoring {reason.value} trigger")
            return False
        self._draining = True
        self.status.is_syncing = True
        self._mailbox.put_nowait(reason)
        return True

    async def wait_idle(self) -> None:
        """Wait until every accepted trigger has been processed."""
        await self._mailbox.join()

    async def handle_wake(self, tag: str) -> list[SyncResult] | None:
        """Background-wake entry point; unknown tags are ignored."""
        if tag != self.sync_tag:
            logger.debug(f"Ignoring wake for unknown tag {tag}")
            return None
        return await self.sync_now(TriggerReason.WAKE)

    async def sync_now(self, reason: TriggerReason = TriggerReason.MANUAL) -> list[SyncResult] | None:
        """Run a drain inline.

        Returns:
            Per-operation results, or None if a drain was already running
        """
        if self._draining:
            logger.debug(f"Drain already running, ignoring {reason.value} request")
            return None
        self._draining = True
        return await self._drain(reason)

    async def _actor_loop(self) -> None:
        while True:
            reason = await self._mailbox.get()
            try:
                await self._drain(reason)
            except Exception:
                # _drain never raises; this guards the loop itself
                logger.exception("Sync actor iteration failed")
            finally:
                self._mailbox.task_done()

    async def _drain(self, reason: TriggerReason) -> list[SyncResult]:
        """One drain. Caller must have set ``_draining``."""
        started = self._clock()
        self.status.is_syncing = True
        self.status.last_sync_attempt = datetime.now(UTC)
        results: list[SyncResult] = []

        try:
            await self._flush_acknowledged()

            operations = await self.store.list()
            states = await self.store.delivery_states()
            eligible = [
                op
                for op in operations
                if op.id not in self._acknowledged
                and states.get(op.id, DeliveryState(op.id)).next_attempt_at <= started
            ]
            deferred = len(operations) - len(eligible)
            logger.info(
                f"Drain started ({reason.value}): {len(eligible)} to submit, {deferred} backing off"
            )

            results = list(
                await asyncio.gather(
                    *(self._submit_one(op, states.get(op.id, DeliveryState(op.id))) for op in eligible)
                )
            )
        except Exception:
            logger.exception("Drain aborted before all submissions were attempted")
        finally:
            if any(r.success for r in results):
                self.status.last_successful_sync = datetime.now(UTC)
            try:
                self.status.pending_count = await self.store.count()
            except OfflineSyncError as e:
                logger.error(f"Could not refresh pending count: {e}")
            self.status.is_syncing = False
            self._draining = False

        succeeded = sum(r.success for r in results)
        logger.info(
            f"Drain finished: {succeeded}/{len(results)} succeeded, "
            f"{self.status.pending_count} pending, {int((self._clock() - started) * 1000)}ms"
        )

        try:
            await self.broadcaster.broadcast(SyncCompletedMessage(results=results))
        except Exception:
            logger.exception("Failed to broadcast sync results")

        return results

    async def _submit_one(self, operation: PendingOperation, state: DeliveryState) -> SyncResult:
        """Submit one operation; never raises."""
        try:
            if self.submit_timeout is not None:
                outcome = await asyncio.wait_for(
                    self.submitter.submit(operation.operation_type, operation.payload),
                    self.submit_timeout,
                )
            else:
                outcome = await self.submitter.submit(operation.operation_type, operation.payload)
        except ServerRejectionError as e:
            error = f"Server rejected: HTTP {e.status}"
        except TransientNetworkError as e:
            error = e.message
        except asyncio.TimeoutError:
            error = f"Submission timed out after {self.submit_timeout}s"
        except Exception as e:
            logger.exception(f"Unexpected error submitting {operation.id}")
            error = str(e) or type(e).__name__
        else:
            if outcome.success:
                await self._acknowledge(operation.id)
                return SyncResult(operation_id=operation.id, success=True)
            error = outcome.error or "Server rejected"

        logger.warning(
            f"Operation {operation.id} failed: {error}",
            extra={"operation_id": operation.id, "operation_type": operation.operation_type.value},
        )
        await self._record_failure(operation, state, error)
        return SyncResult(operation_id=operation.id, success=False, error=error)

    async def _acknowledge(self, operation_id: str) -> None:
        """Remove an acknowledged operation right away.

        If the removal fails the ID is remembered, never resubmitted, and
        removed again before the next drain.
        """
        self._acknowledged.add(operation_id)
        try:
            await self.store.remove(operation_id)
        except OfflineSyncError as e:
            logger.error(f"Acknowledged operation {operation_id} could not be removed yet: {e}")
            return
        self._acknowledged.discard(operation_id)

    async def _flush_acknowledged(self) -> None:
        for operation_id in list(self._acknowledged):
            try:
                await self.store.remove(operation_id)
            except OfflineSyncError as e:
                logger.error(f"Still cannot remove acknowledged operation {operation_id}: {e}")
                continue
            self._acknowledged.discard(operation_id)

    async def _record_failure(self, operation: PendingOperation, state: DeliveryState, error: str) -> None:
        next_attempt_at = self.retry.next_attempt_at(state.attempts + 1, self._clock())
        try:
            attempts = await self.store.record_failure(operation.id, error, next_attempt_at)
            if attempts and self.retry.exhausted(attempts):
                await self.store.dead_letter(
                    operation.id, f"Gave up after {attempts} attempts: {error}"
                )
        except OfflineSyncError as e:
            logger.error(f"Could not record failure for {operation.id}: {e}")
