"""
Background wake registration.

Schedules a one-shot wake-up for a tag so queued work gets drained even
when no foreground context asks for it. Registering a tag that is
already pending is coalesced into the existing wake.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class WakeRegistrar:
    """Schedules background wake events for known tags."""

    def __init__(
        self,
        handler: Callable[[str], Awaitable[Any]],
        supported: bool = True,
    ):
        """Initialize the registrar.

        Args:
            handler: Called with the tag when a wake fires
            supported: Whether the host can run background wakes at all
        """
        self.handler = handler
        self._supported = supported
        self._pending: dict[str, asyncio.Task[None]] = {}

    def is_supported(self) -> bool:
        return self._supported

    @property
    def pending_tags(self) -> list[str]:
        return sorted(tag for tag, task in self._pending.items() if not task.done())

    async def register(self, tag: str, delay: float = 0.0) -> bool:
        """Schedule a wake for ``tag`` after ``delay`` seconds.

        Returns:
            False if background wakes are unsupported; sync then only
            happens through explicit triggers
        """
        if not self._supported:
            logger.debug(f"Background wake unsupported, not registering {tag}")
            return False

        existing = self._pending.get(tag)
        if existing is not None and not existing.done():
            return True

        async def fire() -> None:
            try:
                await asyncio.sleep(delay)
                await self.handler(tag)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Background wake handler failed for {tag}")
            finally:
                self._pending.pop(tag, None)

        self._pending[tag] = asyncio.create_task(fire())
        logger.debug(f"Registered background wake {tag} in {delay:.1f}s")
        return True

    async def cancel_all(self) -> None:
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
