"""Tests for fixed-window rate limiting."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from cart_assistant.utils.rate_limiter import RateLimiter


@pytest.fixture
def limiter(store):
    return RateLimiter(store, limit=3, window=60)


@pytest.mark.asyncio
async def test_first_requests_pass_then_block(limiter):
    results = [await limiter.check_limit("ip:203.0.113.7") for _ in range(4)]
    assert results == [True, True, True, False]
    assert limiter.retry_after("ip:203.0.113.7") == 60


@pytest.mark.asyncio
async def test_window_resets(limiter, clock):
    for _ in range(4):
        await limiter.check_limit("user:7")

    clock.advance(61)

    assert await limiter.check_limit("user:7") is True


@pytest.mark.asyncio
async def test_identifiers_are_independent(limiter):
    for _ in range(3):
        await limiter.check_limit("user:7")

    assert await limiter.check_limit("user:7") is False
    assert await limiter.check_limit("user:8") is True


@pytest.mark.asyncio
async def test_raw_identifier_is_not_stored(limiter, store):
    await limiter.check_limit("ip:203.0.113.7")
    assert not any("203.0.113.7" in key for key in store._data)


@pytest.mark.asyncio
async def test_store_failure_allows():
    store = MagicMock()
    store.incr = AsyncMock(side_effect=ConnectionError("redis down"))
    limiter = RateLimiter(store, limit=1, window=60)

    assert await limiter.check_limit("user:7") is True
