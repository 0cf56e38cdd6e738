"""Tests for the tool cache and the in-process store."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from cart_assistant.utils.cache import ToolCache
from cart_assistant.utils.store import KeyValueStore, MemoryStore


class NoScanStore(KeyValueStore):
    """Store without prefix enumeration."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl=None):
        self.data[key] = value

    async def delete(self, key):
        return self.data.pop(key, None) is not None

    async def incr(self, key, ttl):
        self.data[key] = self.data.get(key, 0) + 1
        return self.data[key]

    async def expire(self, key, ttl):
        return key in self.data


class TestCacheKeys:
    def test_key_ignores_argument_order(self):
        first = ToolCache.key("search_products", {"query": "cacti", "limit": 5})
        second = ToolCache.key("search_products", {"limit": 5, "query": "cacti"})
        assert first == second
        assert first.startswith("catalog:search_products:")

    def test_different_arguments_differ(self):
        assert ToolCache.key("search_products", {"query": "cacti"}) != ToolCache.key(
            "search_products", {"query": "cats"}
        )

    def test_cart_keys_share_the_cart_prefix(self):
        key = ToolCache.key("view_cart", {}, scope="user-7", family="cart")
        assert key.startswith(ToolCache.cart_prefix("user-7"))
        assert not key.startswith(ToolCache.cart_prefix("user-70"))


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_prefix_invalidation_is_scoped(self, store):
        cache = ToolCache(store)
        mine = ToolCache.key("view_cart", {}, scope="user-7", family="cart")
        theirs = ToolCache.key("view_cart", {}, scope="user-8", family="cart")
        catalog = ToolCache.key("search_products", {"query": "cats"})
        for key in (mine, theirs, catalog):
            await cache.set(key, {"status": "success"}, ttl=30)

        assert await cache.invalidate_pattern(ToolCache.cart_prefix("user-7")) == 1

        assert await cache.get(mine) is None
        assert await cache.get(theirs) == {"status": "success"}
        assert await cache.get(catalog) == {"status": "success"}

    @pytest.mark.asyncio
    async def test_store_without_scan_reports_zero(self):
        cache = ToolCache(NoScanStore())
        key = ToolCache.key("view_cart", {}, scope="user-7", family="cart")
        await cache.set(key, {"status": "success"})

        assert await cache.invalidate_pattern(ToolCache.cart_prefix("user-7")) == 0
        assert await cache.get(key) == {"status": "success"}


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_read_error_is_a_miss(self):
        store = MagicMock()
        store.get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = ToolCache(store)

        assert await cache.get("catalog:x") is None
        stats = cache.get_cache_stats()
        assert stats["misses"] == 1
        assert stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_write_error_returns_false(self):
        store = MagicMock()
        store.set = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = ToolCache(store)

        assert await cache.set("catalog:x", {"a": 1}) is False

    @pytest.mark.asyncio
    async def test_disabled_cache(self, store):
        cache = ToolCache(store, enabled=False)
        assert await cache.set("catalog:x", {"a": 1}) is False
        assert await cache.get("catalog:x") is None


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_ttl(self, clock):
        store = MemoryStore(clock=clock)
        await store.set("a", {"n": 1}, ttl=10)
        await store.set("b", "forever")

        clock.advance(11)

        assert await store.get("a") is None
        assert await store.get("b") == "forever"

    @pytest.mark.asyncio
    async def test_incr_keeps_original_expiry(self, clock):
        store = MemoryStore(clock=clock)
        assert await store.incr("hits", ttl=10) == 1
        clock.advance(5)
        assert await store.incr("hits", ttl=10) == 2
        clock.advance(6)
        assert await store.incr("hits", ttl=10) == 1

    @pytest.mark.asyncio
    async def test_expire_missing_key(self, clock):
        store = MemoryStore(clock=clock)
        assert await store.expire("missing", 10) is False
