"""
Operation submit collaborator.

Delivers one queued operation to the backend. Only an explicit 2xx
answer counts as an acknowledgement; anything else raises so the sync
coordinator keeps the operation queued.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from ..exceptions import ServerRejectionError, TransientNetworkError
from ..queue.types import OperationType

logger = logging.getLogger(__name__)


@dataclass
class SubmitOutcome:
    """Answer from the backend for one operation."""

    success: bool
    status: int | None = None
    error: str | None = None


class OperationSubmitter(Protocol):
    """The ``submit(operationType, payload) -> ok|fail`` contract."""

    async def submit(self, operation_type: OperationType, payload: Any) -> SubmitOutcome:
        ...


class CallableSubmitter:
    """Adapts ``async fn(operation_type, payload) -> bool`` to ``OperationSubmitter``."""

    def __init__(self, fn: Callable[[OperationType, Any], Awaitable[bool]]):
        self.fn = fn

    async def submit(self, operation_type: OperationType, payload: Any) -> SubmitOutcome:
        ok = await self.fn(operation_type, payload)
        if ok is True:
            return SubmitOutcome(success=True)
        return SubmitOutcome(success=False, error="Server rejected")


class HttpOperationSubmitter:
    """POSTs each operation's payload as JSON to its endpoint.

    Example:
        >>> submitter = HttpOperationSubmitter(
        ...     "https://app.solivrah.com",
        ...     {"quest-completion": "/api/quests/complete"},
        ... )
        >>> await submitter.submit(OperationType.QUEST_COMPLETION, {"questId": "q1"})
        SubmitOutcome(success=True, status=200, error=None)
    """

    def __init__(
        self,
        base_url: str,
        endpoints: Mapping[str, str],
        *,
        timeout: float | None = 30.0,
        headers: Mapping[str, str] | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the submitter.

        Args:
            base_url: Origin prepended to relative endpoint paths
            endpoints: operationType value -> path or absolute URL
            timeout: Per-submission timeout in seconds (None = unbounded)
            headers: Extra headers sent with every submission
            session: Session to reuse; one is created lazily if omitted
        """
        self.base_url = base_url.rstrip("/")
        self.endpoints = dict(endpoints)
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._session = session
        self._owns_session = session is None

    def url_for(self, operation_type: OperationType) -> str:
        path = self.endpoints.get(operation_type.value)
        if path is None:
            raise KeyError(f"No endpoint configured for {operation_type.value}")
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def submit(self, operation_type: OperationType, payload: Any) -> SubmitOutcome:
        """Submit one operation.

        Raises:
            TransientNetworkError: No connectivity or timeout
            ServerRejectionError: Non-2xx answer
        """
        url = self.url_for(operation_type)
        session = await self._get_session()

        try:
            async with session.post(url, json=payload, headers=self.headers) as response:
                if 200 <= response.status < 300:
                    return SubmitOutcome(success=True, status=response.status)
                body = await response.text()
                raise ServerRejectionError(url, response.status, body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(url, e) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
