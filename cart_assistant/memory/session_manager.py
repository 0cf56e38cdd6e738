"""Chat session tokens bound to a user or a client IP."""

import re
import secrets
import time
from typing import Any, Callable, Dict, Optional

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.store import KeyValueStore, MemoryStore

SESSION_ID_PATTERN = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)


class SessionManager:
    """Create, validate, refresh and end chat sessions.

    A session id is 32 random bytes in hex. The stored record binds the
    session to the authenticated user id, or to the client IP for guests;
    a caller whose identity differs from the binding is rejected even while
    the session is alive. Expiry slides with every ``refresh``;
    ``max_lifetime`` caps the total age regardless of refreshes.
    """

    KEY_PREFIX = "session:"

    def __init__(
        self,
        store: KeyValueStore,
        timeout: int = 1800,
        max_lifetime: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.timeout = timeout
        self.max_lifetime = max_lifetime
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id.lower()}"

    @staticmethod
    def is_well_formed(session_id: Any) -> bool:
        return isinstance(session_id, str) and bool(SESSION_ID_PATTERN.match(session_id))

    async def create_session(self, user_id: Optional[int], client_ip: str) -> str:
        """Create a session bound to ``user_id`` (or ``client_ip`` for guests)."""
        session_id = secrets.token_hex(32)
        record = {
            "user_id": user_id,
            "ip": client_ip,
            "created_at": self._clock(),
        }
        await self.store.set(self._key(session_id), record, ttl=self.timeout)
        logger.info(f"Created session {session_id[:8]}... for {'user ' + str(user_id) if user_id else 'guest'}")
        return session_id

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        if not self.is_well_formed(session_id):
            return None
        return await self.store.get(self._key(session_id))

    async def validate(self, session_id: str, user_id: Optional[int], client_ip: str) -> bool:
        """True when the session is alive and belongs to the current caller."""
        if not self.is_well_formed(session_id):
            return False

        try:
            record = await self.store.get(self._key(session_id))
        except Exception as e:
            logger.error(f"Session store error during validation: {e}")
            return False

        if not record:
            return False

        if user_id:
            if record.get("user_id") != user_id:
                logger.warning(f"Session {session_id[:8]}... presented by a different user")
                return False
        elif record.get("user_id") or record.get("ip") != client_ip:
            logger.warning(f"Session {session_id[:8]}... presented from a different origin")
            return False

        if self.max_lifetime and self._clock() - record.get("created_at", 0) > self.max_lifetime:
            logger.info(f"Session {session_id[:8]}... reached its absolute lifetime")
            await self.store.delete(self._key(session_id))
            return False

        return True

    async def refresh(self, session_id: str) -> bool:
        """Push the sliding expiry ``timeout`` seconds into the future."""
        if not self.is_well_formed(session_id):
            return False
        return await self.store.expire(self._key(session_id), self.timeout)

    async def end(self, session_id: str) -> bool:
        if not self.is_well_formed(session_id):
            return False
        return await self.store.delete(self._key(session_id))

    def cleanup_expired(self) -> int:
        """Sweep expired sessions from an in-process store.

        Redis expires keys on its own, so there is nothing to do there.
        """
        if isinstance(self.store, MemoryStore):
            removed = self.store.purge_expired()
            if removed:
                logger.info(f"Swept {removed} expired store entries")
            return removed
        return 0
