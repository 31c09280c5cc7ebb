"""
Sync results, the status snapshot, and the foreground's view of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..queue.store import PendingOperationStore

logger = logging.getLogger(__name__)

SYNC_COMPLETED = "SYNC_COMPLETED"


@dataclass
class SyncResult:
    """Outcome of submitting one operation during a drain."""

    operation_id: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.operation_id, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncResult:
        return cls(
            operation_id=data["id"],
            success=bool(data["success"]),
            error=data.get("error"),
        )


@dataclass
class SyncCompletedMessage:
    """Envelope sent from the background context to every open foreground."""

    results: list[SyncResult] = field(default_factory=list)
    type: str = SYNC_COMPLETED

    @property
    def any_succeeded(self) -> bool:
        return any(r.success for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "results": [r.to_dict() for r in self.results]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncCompletedMessage:
        if data.get("type") != SYNC_COMPLETED:
            raise ValueError(f"Not a {SYNC_COMPLETED} message: {data.get('type')!r}")
        return cls(results=[SyncResult.from_dict(r) for r in data.get("results", [])])


@dataclass
class SyncStatus:
    """Aggregate sync state shown as badges and banners."""

    is_syncing: bool = False
    last_sync_attempt: datetime | None = None
    last_successful_sync: datetime | None = None
    pending_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_syncing": self.is_syncing,
            "last_sync_attempt": self.last_sync_attempt.isoformat() if self.last_sync_attempt else None,
            "last_successful_sync": (
                self.last_successful_sync.isoformat() if self.last_successful_sync else None
            ),
            "pending_count": self.pending_count,
        }


class ForegroundSyncState:
    """A foreground context's local copy of ``SyncStatus``.

    Never shared with the background context; it is rebuilt from the
    queue store on load and after every ``SYNC_COMPLETED`` message.
    """

    def __init__(self, store: PendingOperationStore):
        self.store = store
        self.status = SyncStatus()

    async def load(self) -> SyncStatus:
        """Recompute from the store (process start or page load)."""
        self.status.pending_count = await self.store.count()
        return self.status

    def record_enqueue(self) -> None:
        self.status.pending_count += 1

    def mark_syncing(self) -> None:
        self.status.is_syncing = True
        self.status.last_sync_attempt = datetime.now(UTC)

    async def apply(self, message: SyncCompletedMessage | dict[str, Any]) -> SyncStatus:
        """Update local state from a ``SYNC_COMPLETED`` message."""
        if isinstance(message, dict):
            message = SyncCompletedMessage.from_dict(message)

        now = datetime.now(UTC)
        self.status.is_syncing = False
        self.status.last_sync_attempt = now
        if message.any_succeeded:
            self.status.last_successful_sync = now
        self.status.pending_count = await self.store.count()
        logger.debug(
            f"Sync completed: {sum(r.success for r in message.results)}/{len(message.results)} "
            f"succeeded, {self.status.pending_count} pending"
        )
        return self.status
