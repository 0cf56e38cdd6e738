"""Per-request caller identity passed explicitly through the assistant."""

import hashlib
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    session_id: str
    client_ip: str
    user_id: Optional[int] = None
    user_agent: str = ""

    def __post_init__(self):
        # Session ids are hex; one canonical spelling keys the cart and history
        if isinstance(self.session_id, str):
            object.__setattr__(self, "session_id", self.session_id.lower())

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def rate_limit_identifier(self) -> str:
        return f"user:{self.user_id}" if self.is_authenticated else f"ip:{self.client_ip}"

    @property
    def owner_key(self) -> str:
        """Who may redeem proposals created during this request."""
        return f"user:{self.user_id}" if self.is_authenticated else f"session:{self.session_id}"

    @property
    def cart_id(self) -> str:
        return f"user-{self.user_id}" if self.is_authenticated else self.session_id

    @property
    def device(self) -> str:
        agent = (self.user_agent or "").lower()
        if "ipad" in agent or "tablet" in agent:
            return "tablet"
        if any(marker in agent for marker in ("mobile", "android", "iphone")):
            return "mobile"
        return "desktop"

    def analytics_user_id(self, salt: str) -> str:
        """Stable pseudonymous id: the user id, or a salted hash of the session."""
        if self.is_authenticated:
            return str(self.user_id)
        return hashlib.sha256(f"{self.session_id}|{salt}".encode("utf-8")).hexdigest()[:16]
