"""
Network fetch collaborator.

The strategy selector only needs ``fetch(request) -> response``; this
module provides that contract over aiohttp and maps transport failures
to ``TransientNetworkError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import aiohttp

from ..cache.types import FetchRequest, FetchResponse
from ..exceptions import TransientNetworkError

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    """Anything that can turn a request into a fully-read response."""

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        """Perform the request.

        Raises:
            TransientNetworkError: If the network cannot be reached
        """
        ...


class HttpFetcher:
    """``Fetcher`` backed by a shared aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        timeout: float | None = 30.0,
    ):
        """Initialize the fetcher.

        Args:
            session: Session to reuse; one is created lazily if omitted
            timeout: Total request timeout in seconds (None = unbounded)
        """
        self._session = session
        self._owns_session = session is None
        self.timeout = timeout

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        session = await self._get_session()
        kwargs: dict[str, Any] = {"headers": request.headers}
        if request.body is not None:
            kwargs["data"] = request.body

        try:
            async with session.request(request.method, request.url, **kwargs) as response:
                body = await response.read()
                return FetchResponse(
                    status=response.status,
                    body=body,
                    content_type=response.headers.get("Content-Type", ""),
                    headers=dict(response.headers),
                    url=str(response.url),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Fetch failed for {request.method} {request.url}: {e}")
            raise TransientNetworkError(request.url, e) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
