"""
Shared test configuration and fixtures.

Provides in-process fakes for the two network collaborators so tests
never touch a real backend:

1. FakeFetcher - serves canned responses, can be switched offline
2. FakeSubmitter - records submissions and answers per payload, with an
   optional gate to hold submissions in flight
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from solivrah_offline.cache.types import FetchRequest, FetchResponse, canonical_url
from solivrah_offline.exceptions import ServerRejectionError, TransientNetworkError
from solivrah_offline.queue.store import PendingOperationStore
from solivrah_offline.queue.types import OperationType
from solivrah_offline.remote.submitter import SubmitOutcome

logger = logging.getLogger(__name__)

BASE_URL = "http://app.test"


class FakeFetcher:
    """Fetcher serving canned responses keyed by canonical URL."""

    def __init__(self, routes: dict[str, FetchResponse] | None = None, online: bool = True):
        self.routes: dict[str, FetchResponse] = {}
        self.online = online
        self.calls: list[FetchRequest] = []
        for url, response in (routes or {}).items():
            self.route(url, response)

    def route(self, url: str, response: FetchResponse) -> None:
        self.routes[canonical_url(url)] = response

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        self.calls.append(request)
        if not self.online:
            raise TransientNetworkError(request.url, OSError("offline"))
        response = self.routes.get(canonical_url(request.url))
        if response is None:
            return FetchResponse(status=404, body=b"not found", url=request.url)
        return response.clone()


class FakeSubmitter:
    """Submitter that records calls and answers according to ``behavior``.

    ``behavior`` maps a payload to one of "ok", "reject", "transient",
    "http-500" or "crash". The default answers "ok" to everything.
    """

    def __init__(self, behavior: Callable[[Any], str] | None = None):
        self.behavior = behavior or (lambda payload: "ok")
        self.calls: list[tuple[OperationType, Any]] = []
        self.gate: asyncio.Event | None = None
        self.in_flight = asyncio.Event()

    def hold(self) -> asyncio.Event:
        """Block every submission until the returned event is set."""
        self.gate = asyncio.Event()
        return self.gate

    async def submit(self, operation_type: OperationType, payload: Any) -> SubmitOutcome:
        self.calls.append((operation_type, payload))
        self.in_flight.set()
        if self.gate is not None:
            await self.gate.wait()

        answer = self.behavior(payload)
        if answer == "ok":
            return SubmitOutcome(success=True, status=200)
        if answer == "reject":
            return SubmitOutcome(success=False, status=400, error="Server rejected")
        if answer == "transient":
            raise TransientNetworkError(f"{BASE_URL}/api", OSError("connection reset"))
        if answer == "http-500":
            raise ServerRejectionError(f"{BASE_URL}/api", 500, "boom")
        raise RuntimeError("submitter crashed")

    @property
    def submitted_payloads(self) -> list[Any]:
        return [payload for _, payload in self.calls]


@pytest.fixture
async def temp_dir() -> AsyncIterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def queue_path(temp_dir: Path) -> Path:
    return temp_dir / "offline_operations.db"


@pytest.fixture
async def store(queue_path: Path) -> AsyncIterator[PendingOperationStore]:
    """File-backed queue store, closed after the test."""
    store = await PendingOperationStore.create(queue_path)
    yield store
    await store.close()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def submitter() -> FakeSubmitter:
    return FakeSubmitter()
