"""
Tests for the strategy selector.

Network is simulated with FakeFetcher; the cache is real and lives in a
temporary directory.
"""

import pytest

from solivrah_offline.cache.store import CacheStore
from solivrah_offline.cache.strategy import PLACEHOLDER_SVG, Strategy, StrategySelector
from solivrah_offline.cache.types import FetchRequest, FetchResponse
from solivrah_offline.config import OfflineConfig
from solivrah_offline.exceptions import TransientNetworkError

from conftest import BASE_URL, FakeFetcher

HTML = {"Accept": "text/html"}


def html(body: bytes) -> FetchResponse:
    return FetchResponse(status=200, body=body, content_type="text/html")


@pytest.fixture
def cache_store(temp_dir):
    return CacheStore(temp_dir / "cache")


@pytest.fixture
def app_fetcher() -> FakeFetcher:
    return FakeFetcher(
        {
            f"{BASE_URL}/": html(b"<html>shell</html>"),
            f"{BASE_URL}/index.html": html(b"<html>shell</html>"),
            f"{BASE_URL}/placeholder.svg": FetchResponse(200, b"<svg>ph</svg>", "image/svg+xml"),
            f"{BASE_URL}/assets/index.js": FetchResponse(200, b"js-v1", "text/javascript"),
        }
    )


@pytest.fixture
async def selector(cache_store, app_fetcher) -> StrategySelector:
    selector = StrategySelector(
        cache_store,
        app_fetcher,
        cache_name="solivrah-cache-v1",
        base_url=BASE_URL,
        cross_origin_allowlist=("lovable-uploads", "supabase.co"),
        critical_assets=("/", "/index.html", "/assets/index.js"),
    )
    await selector.activate()
    return selector


class TestSelect:
    """Tests for strategy routing."""

    @pytest.mark.asyncio
    async def test_not_controlling_before_activate(self, cache_store, app_fetcher):
        selector = StrategySelector(cache_store, app_fetcher, cache_name="c-v1", base_url=BASE_URL)
        assert selector.controlling is False
        assert selector.select(FetchRequest(url=f"{BASE_URL}/", headers=HTML)) is Strategy.PASSTHROUGH

    @pytest.mark.asyncio
    async def test_routes(self, selector):
        cases = [
            (FetchRequest(url=f"{BASE_URL}/", headers=HTML), Strategy.NETWORK_FIRST),
            (FetchRequest(url=f"{BASE_URL}/quests", mode="navigate"), Strategy.NETWORK_FIRST),
            (FetchRequest(url=f"{BASE_URL}/assets/index.js"), Strategy.CACHE_FIRST),
            (FetchRequest(url=f"{BASE_URL}/api/quests"), Strategy.PASSTHROUGH),
            (FetchRequest(url=f"{BASE_URL}/auth/session"), Strategy.PASSTHROUGH),
            (FetchRequest(url=f"{BASE_URL}/rest/v1/profiles"), Strategy.PASSTHROUGH),
            (FetchRequest(url=f"{BASE_URL}/", method="POST"), Strategy.PASSTHROUGH),
            (FetchRequest(url="https://cdn.example.com/lib.js"), Strategy.PASSTHROUGH),
            (
                FetchRequest(url="https://cdn.example.com/lovable-uploads/hero.png", destination="image"),
                Strategy.CACHE_FIRST,
            ),
        ]
        for request, expected in cases:
            assert selector.select(request) is expected, request.url


class TestPassthrough:
    """Tests for requests that bypass the cache."""

    @pytest.mark.asyncio
    async def test_api_requests_are_never_cached(self, selector, app_fetcher, cache_store):
        app_fetcher.route(f"{BASE_URL}/api/quests", FetchResponse(200, b"[]", "application/json"))
        request = FetchRequest(url=f"{BASE_URL}/api/quests")

        assert (await selector.handle(request)).body == b"[]"
        app_fetcher.online = False
        with pytest.raises(TransientNetworkError):
            await selector.handle(request)

        cache = await cache_store.open("solivrah-cache-v1")
        assert await cache.keys() == []

    @pytest.mark.asyncio
    async def test_post_goes_to_network(self, selector, app_fetcher):
        await selector.handle(FetchRequest(url=f"{BASE_URL}/", method="POST", body=b"{}"))
        assert app_fetcher.calls[-1].method == "POST"


class TestNetworkFirst:
    """Tests for HTML navigations."""

    @pytest.mark.asyncio
    async def test_online_fetch_is_cached_for_offline(self, selector, app_fetcher):
        """A page seen online is served byte-identical once offline."""
        app_fetcher.route(f"{BASE_URL}/quests", html(b"<html>quests</html>"))
        request = FetchRequest(url=f"{BASE_URL}/quests", headers=HTML)

        online = await selector.handle(request)
        app_fetcher.online = False
        offline = await selector.handle(request)

        assert online.from_cache is False
        assert offline.from_cache is True
        assert offline.body == online.body == b"<html>quests</html>"

    @pytest.mark.asyncio
    async def test_fresh_content_wins_when_online(self, selector, app_fetcher):
        request = FetchRequest(url=f"{BASE_URL}/", headers=HTML)
        await selector.handle(request)

        app_fetcher.route(f"{BASE_URL}/", html(b"<html>v2</html>"))
        assert (await selector.handle(request)).body == b"<html>v2</html>"

    @pytest.mark.asyncio
    async def test_offline_uncached_page_falls_back_to_shell(self, selector, app_fetcher):
        await selector.install()
        app_fetcher.online = False

        response = await selector.handle(FetchRequest(url=f"{BASE_URL}/never-visited", headers=HTML))
        assert response.body == b"<html>shell</html>"

    @pytest.mark.asyncio
    async def test_offline_without_shell_raises(self, selector, app_fetcher):
        app_fetcher.online = False
        with pytest.raises(TransientNetworkError):
            await selector.handle(FetchRequest(url=f"{BASE_URL}/x", headers=HTML))

    @pytest.mark.asyncio
    async def test_error_responses_are_not_cached(self, selector, app_fetcher, cache_store):
        request = FetchRequest(url=f"{BASE_URL}/missing", headers=HTML)
        assert (await selector.handle(request)).status == 404

        cache = await cache_store.open("solivrah-cache-v1")
        assert await cache.match(request) is None


class TestCacheFirst:
    """Tests for static assets."""

    @pytest.mark.asyncio
    async def test_hit_skips_network(self, selector, app_fetcher):
        request = FetchRequest(url=f"{BASE_URL}/assets/index.js")
        await selector.handle(request)
        calls = len(app_fetcher.calls)

        app_fetcher.route(f"{BASE_URL}/assets/index.js", FetchResponse(200, b"js-v2"))
        response = await selector.handle(request)

        assert response.body == b"js-v1"
        assert len(app_fetcher.calls) == calls

    @pytest.mark.asyncio
    async def test_offline_miss_for_script_raises(self, selector, app_fetcher):
        app_fetcher.online = False
        with pytest.raises(TransientNetworkError):
            await selector.handle(FetchRequest(url=f"{BASE_URL}/assets/other.js", destination="script"))

    @pytest.mark.asyncio
    async def test_offline_image_gets_cached_placeholder(self, selector, app_fetcher):
        """A broken image degrades to the placeholder, not an error."""
        await selector.install()
        app_fetcher.online = False

        response = await selector.handle(
            FetchRequest(url=f"{BASE_URL}/images/avatar.png", destination="image")
        )
        assert response.status == 200
        assert response.body == b"<svg>ph</svg>"

    @pytest.mark.asyncio
    async def test_offline_image_without_cached_placeholder(self, selector, app_fetcher):
        app_fetcher.online = False
        response = await selector.handle(
            FetchRequest(url="https://x.supabase.co/storage/avatar.png", destination="image")
        )
        assert response.body == PLACEHOLDER_SVG
        assert response.content_type == "image/svg+xml"


class TestLifecycle:
    """Tests for install and activate."""

    @pytest.mark.asyncio
    async def test_install_seeds_critical_assets_and_placeholder(self, selector, cache_store):
        seeded = await selector.install()

        assert f"{BASE_URL}/placeholder.svg" in seeded
        cache = await cache_store.open("solivrah-cache-v1")
        assert "GET http://app.test/assets/index.js" in await cache.keys()

    @pytest.mark.asyncio
    async def test_install_is_best_effort(self, selector, app_fetcher):
        """Missing assets are skipped; the rest still get cached."""
        seeded = await selector.install(["/", "/does-not-exist.css"])
        assert seeded == [f"{BASE_URL}/", f"{BASE_URL}/placeholder.svg"]

    @pytest.mark.asyncio
    async def test_install_offline_caches_nothing(self, selector, app_fetcher):
        app_fetcher.online = False
        assert await selector.install() == []

    @pytest.mark.asyncio
    async def test_activate_removes_old_versions(self, cache_store, app_fetcher):
        v1 = StrategySelector(cache_store, app_fetcher, cache_name="solivrah-cache-v1", base_url=BASE_URL)
        await v1.activate()
        await v1.install(["/"])

        v2 = StrategySelector(cache_store, app_fetcher, cache_name="solivrah-cache-v2", base_url=BASE_URL)
        removed = await v2.activate()

        assert removed == ["solivrah-cache-v1"]
        assert await cache_store.namespaces() == ["solivrah-cache-v2"]
        assert await cache_store.match(FetchRequest(url=f"{BASE_URL}/")) is None

    @pytest.mark.asyncio
    async def test_from_config(self, cache_store, app_fetcher):
        config = OfflineConfig(base_url=BASE_URL, cache_version="7")
        selector = StrategySelector.from_config(config, cache_store, app_fetcher)
        assert selector.cache_name == "solivrah-cache-v7"
        assert selector.excluded_prefixes == ("/api/", "/auth/", "/rest/")
