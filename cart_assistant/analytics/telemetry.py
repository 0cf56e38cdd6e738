"""Per-conversation usage ledger and its out-of-band delivery."""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx

from cart_assistant.analytics.logger import logger


@dataclass
class UsageLedger:
    """Token usage, cost inputs and transcript of one orchestration run."""

    conversation_id: str
    user_id: str
    user_context: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    breakdown: List[Dict[str, Any]] = field(default_factory=list)

    def add_user_message(self, text: str):
        self.history.append({"role": "user", "content": text, "timestamp": time.time()})

    def add_ai_response(self, text: str):
        self.history.append({"role": "assistant", "content": text, "timestamp": time.time()})

    def add_tool_execution(self, name: str, args: Dict[str, Any], result: Dict[str, Any]):
        self.history.append({
            "role": "tool",
            "name": name,
            "args": args,
            "result": result,
            "timestamp": time.time(),
        })

    def record_usage(self, kind: str, input_tokens: int, output_tokens: int):
        """Accumulate one LLM call; ``kind`` is ``initial`` or ``tool_response``."""
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.breakdown.append({
            "type": kind,
            "input": input_tokens,
            "output": output_tokens,
            "total": input_tokens + output_tokens,
        })

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def cost(self, input_per_million: float, output_per_million: float) -> float:
        input_cost = (self.input_tokens / 1_000_000) * input_per_million
        output_cost = (self.output_tokens / 1_000_000) * output_per_million
        return round(input_cost + output_cost, 8)

    @property
    def is_empty(self) -> bool:
        return not self.history and not self.breakdown

    def clear(self):
        self.history = []
        self.breakdown = []
        self.input_tokens = 0
        self.output_tokens = 0


class UsageTelemetry:
    """Ships ledgers to the analytics endpoint without blocking the caller.

    Delivery is best effort: a missing endpoint or secret skips the send,
    and transport errors are logged and dropped.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        secret: Optional[str] = None,
        input_per_million: float = 0.075,
        output_per_million: float = 0.30,
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.secret = secret
        self.input_per_million = input_per_million
        self.output_per_million = output_per_million
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint and self.secret)

    def build_payload(self, ledger: UsageLedger) -> Dict[str, Any]:
        return {
            "conversationId": ledger.conversation_id,
            "interactionId": str(uuid.uuid4()),
            "userId": ledger.user_id,
            "userContext": ledger.user_context,
            "history": list(ledger.history),
            "totalCost": ledger.cost(self.input_per_million, self.output_per_million),
            "tokens": {
                "input": ledger.input_tokens,
                "output": ledger.output_tokens,
                "total": ledger.total_tokens,
                "breakdown": list(ledger.breakdown),
            },
        }

    async def flush(self, ledger: UsageLedger) -> bool:
        """Schedule delivery of ``ledger`` and reset it. True if a send was scheduled."""
        if not self.enabled or ledger.is_empty:
            ledger.clear()
            return False

        payload = self.build_payload(ledger)
        ledger.clear()

        task = asyncio.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _send(self, payload: Dict[str, Any]):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await self._client.post(
                self.endpoint,
                json=payload,
                headers={"X-Analytics-Key": self.secret},
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                logger.warning(f"Analytics endpoint returned {response.status_code}")
        except Exception as e:
            logger.warning(f"Analytics delivery failed: {e}")

    async def drain(self):
        """Wait for every scheduled send to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self):
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
