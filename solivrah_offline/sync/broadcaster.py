"""
Status broadcaster.

Delivers drain results from the background context to every foreground
context that is open at the time of the broadcast. Contexts only ever
receive copies of plain dict messages through their own queue; nothing
is shared between them.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .status import SyncCompletedMessage

logger = logging.getLogger(__name__)


@dataclass
class ForegroundContext:
    """A connected foreground context (tab, window, CLI session)."""

    context_id: str
    connected_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    # Queue for incoming messages
    message_queue: asyncio.Queue[dict[str, Any]] = field(default_factory=lambda: asyncio.Queue())

    async def receive(self, timeout: float | None = None) -> dict[str, Any]:
        """Wait for the next message.

        Raises:
            TimeoutError: If nothing arrives within ``timeout`` seconds
        """
        return await asyncio.wait_for(self.message_queue.get(), timeout)

    def pending_messages(self) -> list[dict[str, Any]]:
        """Take every message that has already arrived, without waiting."""
        messages = []
        while not self.message_queue.empty():
            messages.append(self.message_queue.get_nowait())
        return messages


class StatusBroadcaster:
    """Registry of open foreground contexts.

    Example:
        >>> broadcaster = StatusBroadcaster()
        >>> tab = await broadcaster.connect()
        >>> await broadcaster.broadcast(SyncCompletedMessage(results))
        1
        >>> await tab.receive()
        {'type': 'SYNC_COMPLETED', 'results': [...]}
    """

    def __init__(self) -> None:
        self._contexts: dict[str, ForegroundContext] = {}
        self._lock = asyncio.Lock()

    async def connect(self, context_id: str | None = None) -> ForegroundContext:
        """Register a foreground context.

        Args:
            context_id: Stable identifier; generated if omitted

        Returns:
            The registered context
        """
        async with self._lock:
            context = ForegroundContext(context_id=context_id or str(uuid.uuid4()))
            self._contexts[context.context_id] = context
            logger.info(f"Foreground context connected: {context.context_id}")
            return context

    async def disconnect(self, context_id: str) -> None:
        """Unregister a context; messages queued for it are dropped."""
        async with self._lock:
            if context_id in self._contexts:
                del self._contexts[context_id]
                logger.info(f"Foreground context disconnected: {context_id}")

    async def broadcast(self, message: SyncCompletedMessage | dict[str, Any]) -> int:
        """Deliver one copy of a message to each currently open context.

        Returns:
            Number of contexts the message was delivered to
        """
        payload = message.to_dict() if isinstance(message, SyncCompletedMessage) else message

        async with self._lock:
            for context in self._contexts.values():
                await context.message_queue.put(copy.deepcopy(payload))
            delivered = len(self._contexts)

        logger.debug(f"Broadcast {payload.get('type')} to {delivered} context(s)")
        return delivered

    def get_connected_contexts(self) -> list[dict[str, Any]]:
        """Get list of connected contexts."""
        return [
            {"context_id": context.context_id, "connected_at": context.connected_at}
            for context in self._contexts.values()
        ]
