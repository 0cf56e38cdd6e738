"""Signed, short-lived cart proposals awaiting user confirmation."""

import hashlib
import hmac
import json
import secrets
import time
from typing import Any, Callable, Dict, List, Optional

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.store import KeyValueStore


def _canonical(items: List[Dict[str, Any]]) -> str:
    return json.dumps(items, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class ProposalManager:
    """Stage a batch of cart lines server-side until the user confirms it.

    A proposal is signed with HMAC-SHA256 over ``proposal_id + items`` and
    lives ``ttl`` seconds in the store. ``redeem`` hands the items back only
    to the owner and only if the signature still verifies, then deletes the
    proposal so it cannot be applied twice.
    """

    KEY_PREFIX = "proposal:"
    ID_PREFIX = "prop_"

    def __init__(
        self,
        store: KeyValueStore,
        secret: str,
        ttl: int = 600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self._secret = secret.encode("utf-8")
        self.ttl = ttl
        self._clock = clock

    def _key(self, proposal_id: str) -> str:
        return f"{self.KEY_PREFIX}{proposal_id}"

    def sign(self, proposal_id: str, items: List[Dict[str, Any]]) -> str:
        message = (proposal_id + _canonical(items)).encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def create(
        self,
        items: List[Dict[str, Any]],
        owner: str,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Store resolved ``items`` for ``owner`` and return the signed proposal."""
        proposal_id = f"{self.ID_PREFIX}{secrets.token_hex(8)}"
        expires_at = self._clock() + self.ttl
        proposal = {
            "items": items,
            "summary": {
                "total_items": sum(int(item.get("quantity", 1)) for item in items),
                "distinct_products": len({item.get("product_id") for item in items}),
                "expires_at": expires_at,
            },
            "errors": errors or [],
        }
        signature = self.sign(proposal_id, items)

        await self.store.set(
            self._key(proposal_id),
            {
                "proposal": proposal,
                "signature": signature,
                "owner": owner,
                "expires_at": expires_at,
            },
            ttl=self.ttl,
        )
        logger.info(f"Created proposal {proposal_id} with {len(items)} items")
        return {"proposal_id": proposal_id, "signature": signature, "proposal": proposal}

    async def redeem(self, proposal_id: str, owner: str) -> Optional[List[Dict[str, Any]]]:
        """Return the proposal's items and consume it, or None if it cannot be redeemed."""
        if not isinstance(proposal_id, str) or not proposal_id.startswith(self.ID_PREFIX):
            return None

        stored = await self.store.get(self._key(proposal_id))
        if not stored:
            logger.info(f"Proposal {proposal_id} not found or expired")
            return None

        if stored.get("expires_at", 0) <= self._clock():
            await self.delete(proposal_id)
            return None

        items = stored.get("proposal", {}).get("items", [])
        expected = self.sign(proposal_id, items)
        signature_ok = hmac.compare_digest(expected, str(stored.get("signature", "")))
        owner_ok = hmac.compare_digest(str(stored.get("owner", "")), str(owner))
        if not (signature_ok and owner_ok):
            logger.warning(
                f"Proposal {proposal_id} rejected (signature_ok={signature_ok}, owner_ok={owner_ok})"
            )
            return None

        await self.delete(proposal_id)
        return items

    async def delete(self, proposal_id: str) -> bool:
        return await self.store.delete(self._key(proposal_id))
