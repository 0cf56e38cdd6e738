"""Fixed-window request throttling per caller."""
import hashlib

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.store import KeyValueStore


class RateLimiter:
    """Allow ``limit`` requests per ``window`` seconds for each identifier.

    The first request of a window creates the counter with the window as its
    TTL; the counter disappears when the window ends. Store failures let the
    request through.
    """

    def __init__(self, store: KeyValueStore, limit: int = 10, window: int = 60):
        self.store = store
        self.limit = limit
        self.window = window

    def _key(self, identifier: str) -> str:
        digest = hashlib.sha256(str(identifier).encode("utf-8")).hexdigest()
        return f"ratelimit:{digest}"

    async def check_limit(self, identifier: str) -> bool:
        """Count this request; True while the caller is within its budget."""
        try:
            count = await self.store.incr(self._key(identifier), ttl=self.window)
        except Exception as e:
            logger.warning(f"Rate limiter store error, allowing request: {e}")
            return True

        if count > self.limit:
            logger.info(f"Rate limit exceeded ({count}/{self.limit} in {self.window}s)")
            return False
        return True

    def retry_after(self, identifier: str) -> int:
        """Seconds the caller should wait; always the full window length."""
        return self.window
