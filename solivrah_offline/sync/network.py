"""
Network status observer.

A two-state machine (online/offline). Transitions come either from the
host platform calling ``set_online`` or from periodic HTTP probes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

import aiohttp

logger = logging.getLogger(__name__)


class NetworkState(Enum):
    """Connectivity as seen by this context."""

    ONLINE = "online"
    OFFLINE = "offline"


TransitionListener = Callable[[NetworkState, NetworkState], Awaitable[None] | None]


class NetworkStatusObserver:
    """Tracks connectivity and notifies listeners on transitions.

    Listeners receive ``(previous, current)``. Only real transitions are
    reported; setting the current state again is a no-op.
    """

    def __init__(
        self,
        initial_online: bool = True,
        probe_url: str | None = None,
        probe_timeout: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the observer.

        Args:
            initial_online: Starting state
            probe_url: URL used by ``probe()``; probing is disabled if None
            probe_timeout: Seconds before a probe counts as offline
            session: Session to reuse for probes
        """
        self._state = NetworkState.ONLINE if initial_online else NetworkState.OFFLINE
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._session = session
        self._owns_session = session is None
        self._listeners: list[TransitionListener] = []
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> NetworkState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is NetworkState.ONLINE

    def add_listener(self, listener: TransitionListener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def set_online(self, online: bool) -> bool:
        """Move to the given state.

        Returns:
            True if this was a transition
        """
        new_state = NetworkState.ONLINE if online else NetworkState.OFFLINE
        previous = self._state
        if new_state is previous:
            return False

        self._state = new_state
        logger.info(f"Network {previous.value} -> {new_state.value}")

        for listener in list(self._listeners):
            try:
                result = listener(previous, new_state)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Network transition listener failed")
        return True

    async def probe(self) -> bool:
        """Check connectivity with an HTTP HEAD and update the state.

        Any HTTP answer, even an error status, means the network is up.

        Returns:
            True if online
        """
        if self.probe_url is None:
            return self.is_online

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        try:
            async with self._session.head(
                self.probe_url,
                timeout=aiohttp.ClientTimeout(total=self.probe_timeout),
                allow_redirects=False,
            ):
                online = True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        await self.set_online(online)
        return online

    def start_polling(self, interval: float) -> None:
        """Probe every ``interval`` seconds in the background."""
        if self._poll_task is not None:
            return

        async def poll_loop() -> None:
            while True:
                try:
                    await self.probe()
                    await asyncio.sleep(interval)
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Connectivity polling failed")
                    await asyncio.sleep(interval)

        self._poll_task = asyncio.create_task(poll_loop())

    async def stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def close(self) -> None:
        await self.stop_polling()
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
