"""
Response strategy selection for read traffic.

Routes every request through one of three strategies:

- passthrough: mutations, API/auth/data paths, and foreign origins go
  straight to the network and are never cached
- network-first: HTML navigations prefer fresh content and fall back to
  the cached page, then to the cached app shell
- cache-first: static assets are served from cache and fetched (and
  stored) only on a miss

When both cache and network fail for an image, a placeholder image is
returned instead of an error.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from ..exceptions import CacheWriteError, OfflineSyncError, TransientNetworkError
from .store import CacheNamespace, CacheStore
from .types import FetchRequest, FetchResponse

if TYPE_CHECKING:
    from ..config import OfflineConfig
    from ..remote.fetcher import Fetcher

logger = logging.getLogger(__name__)

# Served when the placeholder asset itself was never cached
PLACEHOLDER_SVG = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="200" height="200" viewBox="0 0 200 200">'
    b'<rect width="200" height="200" fill="#e5e7eb"/>'
    b'<path d="M60 140l30-40 25 30 15-20 30 30z" fill="#9ca3af"/>'
    b'<circle cx="75" cy="70" r="12" fill="#9ca3af"/>'
    b"</svg>"
)


class Strategy(Enum):
    """How a request is served."""

    PASSTHROUGH = "passthrough"
    NETWORK_FIRST = "network_first"
    CACHE_FIRST = "cache_first"


class StrategySelector:
    """Intercepts GET traffic and serves it from/into the cache store.

    Example:
        >>> selector = StrategySelector.from_config(config, CacheStore(config.cache_dir), fetcher)
        >>> await selector.install()
        >>> await selector.activate()
        >>> response = await selector.handle(FetchRequest(url="http://localhost:5173/"))
    """

    def __init__(
        self,
        cache_store: CacheStore,
        fetcher: Fetcher,
        *,
        cache_name: str,
        base_url: str,
        excluded_prefixes: tuple[str, ...] = ("/api/", "/auth/", "/rest/"),
        cross_origin_allowlist: tuple[str, ...] = (),
        critical_assets: tuple[str, ...] = ("/",),
        placeholder_path: str = "/placeholder.svg",
        root_document: str = "/",
    ):
        self.cache_store = cache_store
        self.fetcher = fetcher
        self.cache_name = cache_name
        self.base_url = base_url.rstrip("/")
        self.excluded_prefixes = excluded_prefixes
        self.cross_origin_allowlist = cross_origin_allowlist
        self.critical_assets = critical_assets
        self.placeholder_path = placeholder_path
        self.root_document = root_document

        self._origin = _origin_of(self.base_url)
        self._cache: CacheNamespace | None = None
        self._controlling = False

    @classmethod
    def from_config(
        cls,
        config: OfflineConfig,
        cache_store: CacheStore,
        fetcher: Fetcher,
    ) -> StrategySelector:
        return cls(
            cache_store,
            fetcher,
            cache_name=config.cache_name,
            base_url=config.base_url,
            excluded_prefixes=config.excluded_prefixes,
            cross_origin_allowlist=config.cross_origin_allowlist,
            critical_assets=config.critical_assets,
            placeholder_path=config.placeholder_path,
            root_document=config.root_document,
        )

    @property
    def controlling(self) -> bool:
        """Whether open contexts are currently routed through this selector."""
        return self._controlling

    async def _namespace(self) -> CacheNamespace:
        if self._cache is None:
            self._cache = await self.cache_store.open(self.cache_name)
        return self._cache

    def _absolute(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return f"{self.base_url}{path_or_url}"

    async def install(self, critical_assets: tuple[str, ...] | list[str] | None = None) -> list[str]:
        """Seed the cache with the app shell and placeholder image.

        Best-effort: an asset that cannot be fetched or stored is logged
        and skipped.

        Returns:
            URLs that were cached
        """
        assets = list(critical_assets if critical_assets is not None else self.critical_assets)
        if self.placeholder_path not in assets:
            assets.append(self.placeholder_path)

        cache = await self._namespace()
        seeded = []
        for asset in assets:
            request = FetchRequest(url=self._absolute(asset))
            try:
                response = await self.fetcher.fetch(request)
                if not response.ok:
                    logger.warning(f"Skipping critical asset {asset}: HTTP {response.status}")
                    continue
                await cache.put(request, response)
                seeded.append(request.url)
            except OfflineSyncError as e:
                logger.error(f"Failed to cache critical asset {asset}: {e}")

        logger.info(f"Installed {len(seeded)}/{len(assets)} critical assets into {self.cache_name}")
        return seeded

    async def activate(self) -> list[str]:
        """Delete stale namespaces and take control of open contexts.

        Returns:
            Names of the namespaces that were deleted
        """
        removed = []
        for name in await self.cache_store.namespaces():
            if name != self.cache_name:
                logger.info(f"Removing old cache {name}")
                await self.cache_store.delete_namespace(name)
                removed.append(name)

        await self._namespace()
        self._controlling = True
        logger.info(f"Cache {self.cache_name} active and controlling open contexts")
        return removed

    def select(self, request: FetchRequest) -> Strategy:
        """Pick the strategy for a request."""
        if not self._controlling or request.method != "GET":
            return Strategy.PASSTHROUGH

        if not self._is_cacheable_origin(request.url):
            return Strategy.PASSTHROUGH

        path = request.path
        if any(path.startswith(prefix) for prefix in self.excluded_prefixes):
            return Strategy.PASSTHROUGH

        if request.is_navigation:
            return Strategy.NETWORK_FIRST
        return Strategy.CACHE_FIRST

    def _is_cacheable_origin(self, url: str) -> bool:
        if _origin_of(url) == self._origin:
            return True
        return any(marker in url for marker in self.cross_origin_allowlist)

    async def handle(self, request: FetchRequest) -> FetchResponse:
        """Serve a request according to its strategy.

        Raises:
            TransientNetworkError: When nothing can serve a non-image request
        """
        strategy = self.select(request)
        if strategy is Strategy.NETWORK_FIRST:
            return await self._network_first(request)
        if strategy is Strategy.CACHE_FIRST:
            return await self._cache_first(request)
        return await self.fetcher.fetch(request)

    async def _network_first(self, request: FetchRequest) -> FetchResponse:
        cache = await self._namespace()
        try:
            response = await self.fetcher.fetch(request)
        except TransientNetworkError as e:
            cached = await cache.match(request)
            if cached is not None:
                return cached
            shell = await cache.match(FetchRequest(url=self._absolute(self.root_document)))
            if shell is not None:
                logger.debug(f"Serving cached app shell for offline navigation to {request.url}")
                return shell
            return await self._offline_fallback(request, e)

        if response.ok:
            await self._store(cache, request, response.clone())
        return response

    async def _cache_first(self, request: FetchRequest) -> FetchResponse:
        cache = await self._namespace()
        cached = await cache.match(request)
        if cached is not None:
            return cached

        try:
            response = await self.fetcher.fetch(request)
        except TransientNetworkError as e:
            return await self._offline_fallback(request, e)

        if response.ok:
            await self._store(cache, request, response.clone())
        return response

    async def _store(self, cache: CacheNamespace, request: FetchRequest, response: FetchResponse) -> None:
        try:
            await cache.put(request, response)
        except CacheWriteError as e:
            logger.warning(f"Cache write failed, serving uncached response: {e}")

    async def _offline_fallback(self, request: FetchRequest, error: TransientNetworkError) -> FetchResponse:
        if request.destination != "image":
            raise error

        cache = await self._namespace()
        placeholder = await cache.match(FetchRequest(url=self._absolute(self.placeholder_path)))
        if placeholder is not None:
            return placeholder

        logger.debug(f"Serving bundled placeholder for {request.url}")
        return FetchResponse(
            status=200,
            body=PLACEHOLDER_SVG,
            content_type="image/svg+xml",
            headers={"Content-Type": "image/svg+xml"},
            url=self._absolute(self.placeholder_path),
            from_cache=True,
        )


def _origin_of(url: str) -> str:
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    port = parts.port
    scheme = parts.scheme.lower()
    if port is None or (scheme, port) in (("http", 80), ("https", 443)):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"
