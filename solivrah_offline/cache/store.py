"""
Persistent response cache.

Layout on disk::

    {root}/
        solivrah-cache-v1/          # one directory per versioned namespace
            {sha256(request_key)}.json
        solivrah-cache-v2/
            ...

Each entry file holds one ``CacheEntry``. Writes replace the file
atomically, so concurrent writes to the same key resolve to whichever
finished last and readers never observe a partial entry.
"""

from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path

from ..exceptions import CacheWriteError, StorageIOError
from ..file_ops import (
    ensure_directory,
    list_directories,
    list_json_files,
    read_json,
    remove_directory,
    remove_file,
    write_json_atomic,
)
from .types import CacheEntry, FetchRequest, FetchResponse

logger = logging.getLogger(__name__)


def _entry_filename(request_key: str) -> str:
    return hashlib.sha256(request_key.encode("utf-8")).hexdigest() + ".json"


class CacheNamespace:
    """One versioned cache namespace (the unit of deploy-time invalidation)."""

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = path

    def _entry_path(self, request_key: str) -> Path:
        return self.path / _entry_filename(request_key)

    async def read_entry(self, request_key: str) -> CacheEntry | None:
        """Read a raw entry; unreadable entries count as misses."""
        try:
            data = await read_json(self._entry_path(request_key))
            if data is None:
                return None
            entry = CacheEntry.from_dict(data)
        except (StorageIOError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache entry for {request_key}: {e}")
            return None
        if entry.request_key != request_key:
            # sha256 collision or a hand-edited file
            return None
        return entry

    async def match(self, request: FetchRequest) -> FetchResponse | None:
        """Return the cached response for this exact request, if any."""
        entry = await self.read_entry(request.cache_key)
        return entry.to_response() if entry else None

    async def put(self, request: FetchRequest, response: FetchResponse) -> CacheEntry:
        """Store a response snapshot, replacing any previous entry for the key.

        Raises:
            CacheWriteError: If the entry cannot be written
        """
        entry = CacheEntry(
            request_key=request.cache_key,
            body=response.body,
            content_type=response.content_type,
            stored_at=time.time(),
            status=response.status,
            headers=dict(response.headers),
            url=response.url or request.url,
        )
        try:
            await write_json_atomic(self._entry_path(entry.request_key), entry.to_dict())
        except StorageIOError as e:
            raise CacheWriteError(entry.request_key, e) from e
        return entry

    async def delete(self, request: FetchRequest) -> bool:
        return await remove_file(self._entry_path(request.cache_key))

    async def keys(self) -> list[str]:
        """Request keys of every readable entry."""
        keys = []
        for path in await list_json_files(self.path):
            try:
                data = await read_json(path)
            except StorageIOError as e:
                logger.warning(f"Skipping unreadable cache file {path.name}: {e}")
                continue
            if data and "request_key" in data:
                keys.append(data["request_key"])
        return sorted(keys)


class CacheStore:
    """Collection of cache namespaces under one root directory.

    Example:
        >>> store = CacheStore(Path("~/.solivrah/cache").expanduser())
        >>> cache = await store.open("solivrah-cache-v1")
        >>> await cache.put(request, response)
        >>> await cache.match(request)
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    async def open(self, name: str) -> CacheNamespace:
        """Open (creating if needed) a namespace."""
        if not name or "/" in name or name in (".", ".."):
            raise ValueError(f"Invalid cache namespace name: {name!r}")
        path = self.root / name
        await ensure_directory(path)
        return CacheNamespace(name, path)

    async def namespaces(self) -> list[str]:
        return await list_directories(self.root)

    async def has(self, name: str) -> bool:
        return name in await self.namespaces()

    async def delete_namespace(self, name: str) -> bool:
        """Delete a namespace and every entry in it."""
        removed = await remove_directory(self.root / name)
        if removed:
            logger.info(f"Removed cache namespace {name}")
        return removed

    async def match(self, request: FetchRequest) -> FetchResponse | None:
        """Search every namespace for a response to this request."""
        for name in await self.namespaces():
            response = await CacheNamespace(name, self.root / name).match(request)
            if response is not None:
                return response
        return None
