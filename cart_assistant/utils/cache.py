"""Tool result cache with prefix invalidation."""
import hashlib
import json
from typing import Any, Dict, Optional

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.store import KeyValueStore

CART_FAMILY = "cart"
CATALOG_FAMILY = "catalog"


class ToolCache:
    """Memoizes read-only tool results on top of a KeyValueStore.

    Keys look like ``<family>:[<scope>:]<tool>:<sha256 of canonical args>``,
    so every cached view of one cart shares the ``cart:<cart_id>:`` prefix and
    can be dropped in one ``invalidate_pattern`` call after a mutation.
    Read and write failures are logged and treated as a miss: the cache
    never fails a tool call.
    """

    def __init__(self, store: KeyValueStore, enabled: bool = True):
        self.store = store
        self.enabled = enabled
        # Cache statistics for monitoring
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "invalidations": 0,
            "errors": 0
        }

    @staticmethod
    def key(tool_name: str, args: Optional[Dict[str, Any]] = None, scope: Optional[str] = None,
            family: str = CATALOG_FAMILY) -> str:
        """Build a deterministic cache key for a tool call."""
        canonical = json.dumps(args or {}, sort_keys=True, separators=(",", ":"), default=str)
        digest = hashlib.sha256(f"{tool_name}|{canonical}".encode("utf-8")).hexdigest()
        parts = [family]
        if scope:
            parts.append(str(scope))
        parts.extend([tool_name, digest])
        return ":".join(parts)

    @staticmethod
    def cart_prefix(cart_id: str) -> str:
        return f"{CART_FAMILY}:{cart_id}:"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        if not self.enabled:
            self._stats["misses"] += 1
            return None

        try:
            value = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache get error for key {key}: {e}")
            self._stats["misses"] += 1
            self._stats["errors"] += 1
            return None

        if value is None:
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with optional TTL (in seconds)."""
        if not self.enabled:
            return False

        try:
            await self.store.set(key, value, ttl=ttl)
            self._stats["sets"] += 1
            return True
        except Exception as e:
            logger.warning(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key from cache."""
        try:
            return await self.store.delete(key)
        except Exception as e:
            logger.warning(f"Cache delete error for key {key}: {e}")
            return False

    async def invalidate_pattern(self, prefix: str) -> int:
        """Delete every entry whose key starts with ``prefix``.

        Returns the number of deleted entries, or 0 when the backing store
        cannot scan by prefix.
        """
        if not self.store.supports_prefix_scan:
            logger.warning(
                f"Cache store {type(self.store).__name__} cannot scan keys; "
                f"entries under '{prefix}' expire by TTL only"
            )
            return 0

        try:
            deleted = await self.store.scan_delete(prefix)
        except Exception as e:
            logger.warning(f"Cache invalidation error for prefix {prefix}: {e}")
            self._stats["errors"] += 1
            return 0

        self._stats["invalidations"] += 1
        if deleted:
            logger.info(f"Invalidated {deleted} cache entries under '{prefix}'")
        return deleted

    def get_cache_stats(self) -> Dict[str, Any]:
        """Hit rate and raw counters."""
        lookups = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / lookups if lookups else 0.0
        return {"hit_rate": round(hit_rate, 4), **self._stats}
