"""Key/value stores backing sessions, rate limits, tool cache and proposals."""
import json
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis

from cart_assistant.analytics.logger import logger


class KeyValueStore(ABC):
    """Minimal async store contract with per-key TTL.

    Values are JSON-serialized. ``scan_delete`` is optional: stores that
    cannot enumerate keys by prefix set ``supports_prefix_scan = False``.
    """

    supports_prefix_scan = False

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def incr(self, key: str, ttl: int) -> int:
        """Atomically increment a counter; ``ttl`` is applied when the key is created."""

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        ...

    async def scan_delete(self, prefix: str) -> int:
        raise NotImplementedError(f"{type(self).__name__} cannot scan keys by prefix")

    async def close(self):
        pass


class MemoryStore(KeyValueStore):
    """In-process store for a single worker or for tests."""

    supports_prefix_scan = True

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _expires_at(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] is not None and entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        return json.loads(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._data[key] = (json.dumps(value, default=str), self._expires_at(ttl))

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def incr(self, key: str, ttl: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._data[key] = ("1", self._expires_at(ttl))
            return 1
        count = int(json.loads(entry[0])) + 1
        self._data[key] = (str(count), entry[1])
        return count

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._expires_at(ttl))
        return True

    async def scan_delete(self, prefix: str) -> int:
        matched = [key for key in self._data if key.startswith(prefix)]
        for key in matched:
            del self._data[key]
        return len(matched)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self):
        return len(self._data)


_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class RedisStore(KeyValueStore):
    """Redis-backed store shared by every worker."""

    supports_prefix_scan = True

    def __init__(self, redis_url: str, max_connections: int = 50):
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.redis_client: Optional[aioredis.Redis] = None
        self._connection_pool: Optional[aioredis.ConnectionPool] = None

    async def connect(self):
        """Initialize Redis connection; raises if the server is unreachable."""
        self._connection_pool = aioredis.ConnectionPool.from_url(
            self.redis_url,
            max_connections=self.max_connections,
            decode_responses=True
        )
        self.redis_client = aioredis.Redis(connection_pool=self._connection_pool)
        await self.redis_client.ping()
        logger.info("Redis store connected successfully")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            if self._connection_pool:
                await self._connection_pool.disconnect()
            self.redis_client = None
            logger.info("Redis store disconnected")

    async def get(self, key: str) -> Optional[Any]:
        value = await self.redis_client.get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        serialized = json.dumps(value, default=str)
        if ttl:
            await self.redis_client.setex(key, ttl, serialized)
        else:
            await self.redis_client.set(key, serialized)

    async def delete(self, key: str) -> bool:
        return await self.redis_client.delete(key) > 0

    async def incr(self, key: str, ttl: int) -> int:
        count = await self.redis_client.incr(key)
        if count == 1:
            await self.redis_client.expire(key, ttl)
        return count

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self.redis_client.expire(key, ttl))

    async def scan_delete(self, prefix: str) -> int:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        deleted = 0
        async for key in self.redis_client.scan_iter(match=pattern, count=100):
            deleted += await self.redis_client.delete(key)
        return deleted
